"""Attribution reporting service.

WHAT:
    Owner-scoped reporting entry points:
    - generate_attribution_report: summary/source/campaign/day/funnel report
    - get_lead_journey: chronological touchpoints for a single lead
    - get_real_time_conversions: most recent conversions within N hours

WHY:
    Each call fetches the owner's leads once through the LeadStore and hands
    them to the pure engine in attribution_engine.py. Store failures during
    that fetch propagate to the caller; they are not downgraded to an empty report.

REFERENCES:
    - app/services/attribution_engine.py
    - app/services/lead_store.py
    - app/schemas.py (AttributionReport, LeadJourney, RealTimeConversions)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.deps import get_settings
from app.exceptions import LeadNotFoundError
from app.schemas import (
    AttributionReport,
    ConvertedLeadOut,
    LeadJourney,
    RealTimeConversions,
    TouchPoint,
)
from app.services import attribution_engine as engine
from app.services.lead_store import LeadStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored naive UTC -> aware UTC for output."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def customer_name(lead) -> Optional[str]:
    if lead.full_name:
        return lead.full_name
    name = " ".join(part for part in (lead.first_name, lead.last_name) if part)
    return name or None


def to_converted_lead_out(lead) -> ConvertedLeadOut:
    return ConvertedLeadOut(
        lead_id=str(lead.id),
        customer_name=customer_name(lead),
        order_value=engine.lead_revenue(lead),
        conversion_date=_utc(lead.conversion_date),
        source=lead.utm_source,
        medium=lead.utm_medium,
        campaign=lead.utm_campaign,
    )


def generate_attribution_report(
    store: LeadStore,
    owner_uid: str,
    date_from=None,
    date_to=None,
    now: Optional[datetime] = None,
) -> AttributionReport:
    """Build the attribution report for one owner.

    Args:
        date_from: ISO-8601 date/datetime (or datetime); defaults to now - window
        date_to: ISO-8601 date/datetime (or datetime); a date-only value covers the whole day
        now: Reference time for the default window (tests)

    Raises:
        InvalidDateRangeError: bounds cannot be parsed or are inverted
    """
    settings = get_settings()
    start, end = engine.parse_report_range(
        date_from,
        date_to,
        now=now,
        window_days=settings.ATTRIBUTION_WINDOW_DAYS,
    )

    leads = store.find_leads_in_range(owner_uid, start, end)
    report = engine.build_report(leads, start, end)

    logger.info(
        f"[ATTRIBUTION] Report for owner {owner_uid} ({start.date()} - {end.date()}): "
        f"{report.summary.total_leads} leads, {report.summary.converted_leads} conversions, "
        f"revenue {report.summary.total_revenue:.2f}"
    )
    return report


def get_lead_journey(store: LeadStore, owner_uid: str, lead_id: str) -> LeadJourney:
    """Reconstruct a lead's touchpoints, oldest first.

    Every touchpoint carries the lead's own UTM attribution, so the
    conversion path always collapses to a single "source/medium" hop.

    Raises:
        LeadNotFoundError: no lead with that id for this owner
    """
    lead = store.find_lead(owner_uid, lead_id)
    if lead is None:
        raise LeadNotFoundError(owner_uid, lead_id)

    source = engine.normalize_source(lead.utm_source)
    medium = engine.normalize_medium(lead.utm_medium)

    def touchpoint(timestamp: datetime, action: str) -> TouchPoint:
        return TouchPoint(
            timestamp=_utc(timestamp),
            source=source,
            medium=medium,
            campaign=lead.utm_campaign,
            action=action,
        )

    touchpoints: List[TouchPoint] = [touchpoint(lead.created_at, "lead_created")]
    for event in store.find_lead_events(owner_uid, lead.id):
        touchpoints.append(touchpoint(event.created_at, event.type or "activity"))

    converted = lead.conversion_date is not None
    if converted:
        touchpoints.append(touchpoint(lead.conversion_date, "conversion"))

    touchpoints.sort(key=lambda t: t.timestamp)

    conversion_path: List[str] = []
    for tp in touchpoints:
        hop = f"{tp.source}/{tp.medium}"
        if hop not in conversion_path:
            conversion_path.append(hop)

    extra = {}
    if converted:
        # Left unset otherwise so the fields are omitted with exclude_unset
        elapsed = (_utc(lead.conversion_date) - _utc(lead.created_at)).total_seconds()
        extra["time_to_conversion"] = int(elapsed // SECONDS_PER_DAY)
        extra["total_revenue"] = float(lead.order_value or 0)

    return LeadJourney(
        lead_id=str(lead.id),
        touchpoints=touchpoints,
        conversion_path=conversion_path,
        **extra,
    )


def get_real_time_conversions(
    store: LeadStore,
    owner_uid: str,
    hours_back: Optional[int] = None,
    now: Optional[datetime] = None,
) -> RealTimeConversions:
    """Conversions recorded in the last `hours_back` hours, newest first."""
    settings = get_settings()
    hours = hours_back if hours_back is not None else settings.REALTIME_CONVERSIONS_HOURS
    now = now or datetime.now(timezone.utc)
    since = _utc(now).replace(tzinfo=None) - timedelta(hours=hours)

    leads = store.find_recent_conversions(owner_uid, since, settings.REALTIME_CONVERSIONS_LIMIT)

    total_revenue = sum(engine.lead_revenue(lead) for lead in leads)
    count = len(leads)

    logger.info(f"[ATTRIBUTION] {count} conversions in the last {hours} hours for owner {owner_uid}")

    return RealTimeConversions(
        timeframe=f"Last {hours} hours",
        conversions=count,
        total_revenue=total_revenue,
        average_order_value=total_revenue / count if count > 0 else 0.0,
        recent_conversions=[to_converted_lead_out(lead) for lead in leads],
    )
