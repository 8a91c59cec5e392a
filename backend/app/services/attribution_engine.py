"""Attribution aggregation.

WHAT: Pure in-memory aggregation over already-fetched, owner-scoped leads:
      summary, by-source, by-campaign, daily timeframe and funnel.
WHY: Reports recompute from scratch on every request; keeping the math free
     of I/O makes it testable with plain objects.
REFERENCES:
  - app/services/attribution_tracking_service.py: Fetches leads and calls build_report()
  - app/schemas.py: AttributionReport and its parts
  - tests_unit/test_attribution_engine.py: Unit tests

Rules:
  - Missing UTM values are bucketed as source "direct", medium "organic",
    campaign "none" so no lead is lost from a grouping.
  - Missing order values count as 0.
  - Every rate is 0 when its denominator is 0.
  - Leads are bucketed per day by created_at; conversions by conversion_date.

Leads only need the attributes `status`, `utm_source`, `utm_medium`,
`utm_campaign`, `order_value`, `conversion_date` and `created_at`, so ORM rows
and `SimpleNamespace` objects both work.
"""

import enum
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from app.exceptions import InvalidDateRangeError
from app.models import LeadStatusEnum
from app.schemas import (
    AttributionByCampaign,
    AttributionBySource,
    AttributionReport,
    AttributionSummary,
    AttributionTimeframe,
    ChannelConversions,
    DateRange,
    FunnelStage,
)

DEFAULT_SOURCE = "direct"
DEFAULT_MEDIUM = "organic"
DEFAULT_CAMPAIGN = "none"

CONVERTED = LeadStatusEnum.converted.value

# Upper bound on a report range; one daily bucket is built per day
MAX_RANGE_DAYS = 3660

FUNNEL_STAGES = (
    ("Lead Generated", None),
    ("Contacted", {"CONTACTED", "QUALIFIED", "CONVERTED", "CLOSED"}),
    ("Qualified", {"QUALIFIED", "CONVERTED", "CLOSED"}),
    ("Converted", {"CONVERTED"}),
)


# =============================================================================
# FIELD HELPERS
# =============================================================================

def _status_value(status) -> Optional[str]:
    """Status as its plain string value ("CONVERTED"), for enum or str input."""
    if status is None:
        return None
    if isinstance(status, enum.Enum):
        return status.value
    return str(status)


def _is_converted(lead) -> bool:
    return _status_value(getattr(lead, "status", None)) == CONVERTED


def _to_float(value) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def as_naive_utc(value) -> Optional[datetime]:
    """Datetimes are compared as naive UTC; aware values are converted."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return None


def _rate(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _average(total: float, count: int) -> float:
    return total / count if count > 0 else 0.0


def normalize_source(value: Optional[str]) -> str:
    return value or DEFAULT_SOURCE


def normalize_medium(value: Optional[str]) -> str:
    return value or DEFAULT_MEDIUM


def normalize_campaign(value: Optional[str]) -> str:
    return value or DEFAULT_CAMPAIGN


def lead_revenue(lead) -> float:
    """Order value of a converted lead, 0 for anything else."""
    if not _is_converted(lead):
        return 0.0
    return _to_float(getattr(lead, "order_value", None))


# =============================================================================
# AGGREGATIONS
# =============================================================================

def summarize(leads: Iterable) -> AttributionSummary:
    leads = list(leads)
    total = len(leads)
    converted = [lead for lead in leads if _is_converted(lead)]
    revenue = sum(lead_revenue(lead) for lead in converted)

    return AttributionSummary(
        total_leads=total,
        converted_leads=len(converted),
        conversion_rate=_rate(len(converted), total),
        total_revenue=revenue,
        average_order_value=_average(revenue, len(converted)),
    )


def _group(leads: Iterable, key_fn) -> dict:
    """Bucket leads by key, preserving first-seen key order."""
    buckets: dict = {}
    for lead in leads:
        key = key_fn(lead)
        bucket = buckets.setdefault(key, {"leads": 0, "conversions": 0, "revenue": 0.0})
        bucket["leads"] += 1
        if _is_converted(lead):
            bucket["conversions"] += 1
            bucket["revenue"] += lead_revenue(lead)
    return buckets


def group_by_source(leads: Iterable) -> List[AttributionBySource]:
    buckets = _group(
        leads,
        lambda lead: (
            normalize_source(getattr(lead, "utm_source", None)),
            normalize_medium(getattr(lead, "utm_medium", None)),
        ),
    )
    return [
        AttributionBySource(
            source=source,
            medium=medium,
            leads=b["leads"],
            conversions=b["conversions"],
            conversion_rate=_rate(b["conversions"], b["leads"]),
            revenue=b["revenue"],
            average_order_value=_average(b["revenue"], b["conversions"]),
        )
        for (source, medium), b in buckets.items()
    ]


def group_by_campaign(leads: Iterable) -> List[AttributionByCampaign]:
    buckets = _group(
        leads,
        lambda lead: (
            normalize_campaign(getattr(lead, "utm_campaign", None)),
            normalize_source(getattr(lead, "utm_source", None)),
            normalize_medium(getattr(lead, "utm_medium", None)),
        ),
    )
    return [
        AttributionByCampaign(
            campaign=campaign,
            source=source,
            medium=medium,
            leads=b["leads"],
            conversions=b["conversions"],
            conversion_rate=_rate(b["conversions"], b["leads"]),
            revenue=b["revenue"],
            average_order_value=_average(b["revenue"], b["conversions"]),
        )
        for (campaign, source, medium), b in buckets.items()
    ]


def group_by_timeframe(leads: Iterable, date_from: datetime, date_to: datetime) -> List[AttributionTimeframe]:
    """Daily buckets for every calendar date in [date_from, date_to].

    Days without activity are still present. Dates outside the range are dropped.
    """
    start = as_naive_utc(date_from).date()
    end = as_naive_utc(date_to).date()

    days: dict = {}
    current = start
    while current <= end:
        days[current.isoformat()] = {"leads": 0, "conversions": 0, "revenue": 0.0}
        if current == date.max:
            break
        current += timedelta(days=1)

    for lead in leads:
        created_at = as_naive_utc(getattr(lead, "created_at", None))
        if created_at is not None:
            bucket = days.get(created_at.date().isoformat())
            if bucket is not None:
                bucket["leads"] += 1

        if not _is_converted(lead):
            continue
        conversion_date = as_naive_utc(getattr(lead, "conversion_date", None))
        if conversion_date is None:
            continue
        bucket = days.get(conversion_date.date().isoformat())
        if bucket is not None:
            bucket["conversions"] += 1
            bucket["revenue"] += lead_revenue(lead)

    return [
        AttributionTimeframe(date=day, leads=b["leads"], conversions=b["conversions"], revenue=b["revenue"])
        for day, b in days.items()
    ]


def funnel_analysis(leads: Iterable) -> List[FunnelStage]:
    statuses = [_status_value(getattr(lead, "status", None)) for lead in leads]
    total = len(statuses)

    stages = []
    for name, members in FUNNEL_STAGES:
        if members is None:
            # First stage is every lead by definition
            stages.append(FunnelStage(stage=name, leads=total, conversion_rate=100.0, drop_off_rate=0.0))
            continue
        count = sum(1 for status in statuses if status in members)
        stages.append(
            FunnelStage(
                stage=name,
                leads=count,
                conversion_rate=_rate(count, total),
                drop_off_rate=_rate(total - count, total),
            )
        )
    return stages


def group_conversions_by_channel(leads: Iterable) -> List[ChannelConversions]:
    """Converted leads grouped by (source, medium, campaign)."""
    buckets: dict = {}
    for lead in leads:
        if not _is_converted(lead):
            continue
        key = (
            normalize_source(getattr(lead, "utm_source", None)),
            normalize_medium(getattr(lead, "utm_medium", None)),
            normalize_campaign(getattr(lead, "utm_campaign", None)),
        )
        bucket = buckets.setdefault(key, {"conversions": 0, "revenue": 0.0})
        bucket["conversions"] += 1
        bucket["revenue"] += lead_revenue(lead)

    return [
        ChannelConversions(source=source, medium=medium, campaign=campaign, **b)
        for (source, medium, campaign), b in buckets.items()
    ]


# =============================================================================
# DATE WINDOW
# =============================================================================

def default_date_window(now: datetime, days: int = 30) -> Tuple[datetime, datetime]:
    """Inclusive window [now - days, now]."""
    now = as_naive_utc(now)
    return now - timedelta(days=days), now


def parse_date_bound(value, end_of_day: bool) -> datetime:
    if isinstance(value, datetime):
        return as_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)

    text = str(value).strip()
    try:
        if len(text) == 10:
            parsed_date = date.fromisoformat(text)
            return datetime.combine(parsed_date, time.max if end_of_day else time.min)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_naive_utc(datetime.fromisoformat(text))
    except ValueError as e:
        raise InvalidDateRangeError(f"Invalid date: {value}", value=str(value)) from e


def parse_report_range(
    date_from=None,
    date_to=None,
    now: Optional[datetime] = None,
    window_days: int = 30,
) -> Tuple[datetime, datetime]:
    """Resolve caller-supplied bounds into a naive-UTC (from, to) pair.

    A date-only `to` covers the whole day. With no bounds the window is the
    last `window_days` ending at `now`. With one bound the other is anchored
    on it: `to` alone reaches back `window_days`, `from` alone runs to `now`
    (or to `from` itself when it lies in the future).

    Raises:
        InvalidDateRangeError: unparseable date, from after to, or a range
            wider than MAX_RANGE_DAYS
    """
    now = as_naive_utc(now) if now is not None else datetime.now(timezone.utc).replace(tzinfo=None)

    start = parse_date_bound(date_from, end_of_day=False) if date_from else None
    end = parse_date_bound(date_to, end_of_day=True) if date_to else None

    if start is None and end is None:
        start, end = default_date_window(now, window_days)
    elif start is None:
        try:
            start = end - timedelta(days=window_days)
        except OverflowError:
            start = datetime.min
    elif end is None:
        end = max(now, start)

    if start > end:
        raise InvalidDateRangeError(f"Invalid date range: from {start.isoformat()} is after to {end.isoformat()}")
    if (end - start).days >= MAX_RANGE_DAYS:
        raise InvalidDateRangeError(f"Invalid date range: more than {MAX_RANGE_DAYS} days requested")
    return start, end


# =============================================================================
# REPORT
# =============================================================================

def build_report(leads: Iterable, date_from: datetime, date_to: datetime) -> AttributionReport:
    """Full attribution report over leads already filtered to [date_from, date_to]."""
    leads = list(leads)
    return AttributionReport(
        success=True,
        date_range=DateRange(
            from_=as_naive_utc(date_from).replace(tzinfo=timezone.utc),
            to=as_naive_utc(date_to).replace(tzinfo=timezone.utc),
        ),
        summary=summarize(leads),
        by_source=group_by_source(leads),
        by_campaign=group_by_campaign(leads),
        by_timeframe=group_by_timeframe(leads, date_from, date_to),
        funnel_analysis=funnel_analysis(leads),
    )
