"""Shopify order-to-lead conversion service.

WHAT:
    - Reconciles Shopify orders against not-yet-converted leads and marks
      matched leads CONVERTED with the order value and date
    - Pulls orders from the Admin API and reconciles them (sync)
    - Reports conversion totals and per-channel attribution

WHY:
    - A lead is converted at most once: matching skips CONVERTED leads.
    - One bad order must not abort the batch; it becomes an `error` detail.
    - Orders themselves are not persisted; the conversion lives on the lead.

REFERENCES:
    - app/services/identity_resolver.py (email, then phone)
    - app/services/shopify_client.py (API client)
    - app/services/lead_import_service.py (same batch pattern)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Union

from app.exceptions import InvalidDateRangeError
from app.models import LeadStatusEnum, utcnow
from app.schemas import ConversionTracking, ShopifyOrderData
from app.services import attribution_engine as engine
from app.services.attribution_tracking_service import to_converted_lead_out
from app.services.identity_resolver import resolve_lead
from app.services.lead_store import LeadStore
from app.telemetry.sentry import capture_exception

logger = logging.getLogger(__name__)

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")

RECENT_CONVERSIONS_LIMIT = 10


# =============================================================================
# RESULT SCHEMAS
# =============================================================================

@dataclass
class ConversionDetail:
    """Outcome for one order in a batch."""
    status: str  # converted | no-match | error
    order_id: Optional[str] = None
    order_name: Optional[str] = None
    lead_id: Optional[str] = None
    revenue: float = 0.0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status,
            "orderId": self.order_id,
            "orderName": self.order_name,
            "message": self.message,
        }
        if self.lead_id is not None:
            data["leadId"] = self.lead_id
        if self.status == "converted":
            data["revenue"] = self.revenue
        return data


@dataclass
class ConversionResult:
    """Response from an order reconciliation batch."""
    success: bool = False
    orders: int = 0
    conversions: int = 0
    revenue: Decimal = field(default_factory=lambda: Decimal("0"))
    errors: int = 0
    details: List[ConversionDetail] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "orders": self.orders,
            "conversions": self.conversions,
            "revenue": float(self.revenue),
            "errors": self.errors,
            "details": [d.to_dict() for d in self.details],
        }


# =============================================================================
# HELPERS
# =============================================================================

def extract_utm_from_order(order: ShopifyOrderData) -> Dict[str, Optional[str]]:
    """Read UTM tags from the order's note attributes.

    Attribute names are matched case-insensitively; the first occurrence of
    each name wins. Missing names map to None.
    """
    utms: Dict[str, Optional[str]] = {key: None for key in UTM_KEYS}
    for attribute in order.note_attributes:
        name = (attribute.name or "").strip().lower()
        if name in utms and utms[name] is None:
            utms[name] = attribute.value
    return utms


def _parse_total(total_price: str) -> Decimal:
    try:
        total = Decimal(str(total_price).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid total_price: {total_price!r}") from e
    if not total.is_finite():
        raise ValueError(f"Invalid total_price: {total_price!r}")
    return total


def _conversion_note(order: ShopifyOrderData) -> str:
    return (
        f"Converted to customer with Shopify order {order.name or order.id}\n"
        f"Total: {order.currency or ''} {order.total_price}".rstrip()
    )


def _order_identity(order: ShopifyOrderData):
    customer = order.customer
    email = (customer.email if customer else None) or order.email
    phone = customer.phone if customer else None
    return email, phone


# =============================================================================
# RECONCILIATION
# =============================================================================

def _process_order(store: LeadStore, owner_uid: str, order: ShopifyOrderData) -> ConversionDetail:
    total = _parse_total(order.total_price)
    email, phone = _order_identity(order)

    lead = resolve_lead(store, owner_uid, email=email, phone=phone, exclude_converted=True)
    if lead is None:
        return ConversionDetail(
            status="no-match",
            order_id=order.id,
            order_name=order.name,
            message="No matching lead found",
        )

    note = _conversion_note(order)
    update: Dict[str, Any] = {
        "status": LeadStatusEnum.converted,
        "order_value": total,
        "conversion_date": engine.as_naive_utc(order.created_at),
        "notes": f"{lead.notes}\n\n{note}" if lead.notes else note,
        "updated_at": utcnow(),
    }
    # Order UTMs only fill attribution the lead does not already carry
    for key, value in extract_utm_from_order(order).items():
        if value and hasattr(lead, key) and not getattr(lead, key):
            update[key] = value

    lead = store.update_lead(lead.id, update)

    return ConversionDetail(
        status="converted",
        order_id=order.id,
        order_name=order.name,
        lead_id=str(lead.id),
        revenue=float(total),
        message="Lead converted successfully",
    )


def _order_id(item) -> Optional[str]:
    """Order id for logging, None when the item is not an order."""
    if isinstance(item, dict):
        value = item.get("id")
    else:
        value = getattr(item, "id", None)
    return str(value) if value is not None else None


def process_shopify_orders(
    store: LeadStore,
    owner_uid: str,
    orders: Iterable[Union[ShopifyOrderData, Dict[str, Any]]],
) -> ConversionResult:
    """Reconcile Shopify orders with the owner's leads, in input order.

    Args:
        store: Lead store bound to the caller's session
        owner_uid: Owner all leads are scoped to
        orders: Orders (models or raw dicts in Shopify's REST/webhook shape)

    Returns:
        ConversionResult; `orders` counts every order that did not error,
        `conversions` only the matched ones.
    """
    items = list(orders)
    logger.info(f"[SHOPIFY_CONVERSION] Processing {len(items)} Shopify orders (owner={owner_uid})")

    result = ConversionResult()

    for item in items:
        order_id = _order_id(item)
        try:
            order = item if isinstance(item, ShopifyOrderData) else ShopifyOrderData.model_validate(item)
            detail = _process_order(store, owner_uid, order)
        except Exception as e:
            logger.error(f"[SHOPIFY_CONVERSION] Error processing order {order_id}: {e}")
            capture_exception(e, extra={"owner_uid": owner_uid, "order_id": order_id})
            detail = ConversionDetail(
                status="error",
                order_id=order_id,
                message=str(e) or "Unknown error occurred",
            )

        result.details.append(detail)
        if detail.status == "error":
            result.errors += 1
            continue

        result.orders += 1
        if detail.status == "converted":
            result.conversions += 1
            result.revenue += Decimal(str(detail.revenue))

    result.success = result.errors < len(items)

    logger.info(
        f"[SHOPIFY_CONVERSION] Processed {result.orders} orders: {result.conversions} conversions, "
        f"revenue {result.revenue}, {result.errors} errors"
    )
    return result


async def sync_shopify_orders(
    store: LeadStore,
    owner_uid: str,
    client,
    since: Optional[datetime] = None,
) -> ConversionResult:
    """Pull orders from Shopify and reconcile them.

    Client failures (ShopifyAPIError) abort the sync and propagate.

    Only the fetch is awaited; reconciliation runs the synchronous store on
    the calling loop, so run it from its own loop (asyncio.run), not from a
    loop that serves other work.

    Args:
        client: ShopifyClient (or anything with `async get_all_orders(since=None)`)
        since: Only orders created after this datetime
    """
    logger.info(f"[SHOPIFY_CONVERSION] Starting Shopify order sync for owner: {owner_uid}")
    orders = await client.get_all_orders(since=since)
    return process_shopify_orders(store, owner_uid, orders)


# =============================================================================
# CONVERSION TRACKING
# =============================================================================

def get_conversion_tracking(
    store: LeadStore,
    owner_uid: str,
    date_from=None,
    date_to=None,
) -> ConversionTracking:
    """Conversion totals and per-channel attribution.

    Totals count leads created in the range; the channel breakdown and the
    recent list use conversions whose conversion date is in the range. A
    missing bound leaves that side open.

    Raises:
        InvalidDateRangeError: bounds cannot be parsed or are inverted
    """
    start = engine.parse_date_bound(date_from, end_of_day=False) if date_from else None
    end = engine.parse_date_bound(date_to, end_of_day=True) if date_to else None
    if start is not None and end is not None and start > end:
        raise InvalidDateRangeError(
            f"Invalid date range: from {start.isoformat()} is after to {end.isoformat()}"
        )

    total_leads = store.count_leads(owner_uid, start, end)
    converted = store.find_converted_leads(owner_uid, start, end, date_field="created_at")
    total_revenue = sum(engine.lead_revenue(lead) for lead in converted)

    conversions = store.find_converted_leads(owner_uid, start, end, date_field="conversion_date")

    logger.info(
        f"[SHOPIFY_CONVERSION] Tracking for owner {owner_uid}: {len(converted)}/{total_leads} converted, "
        f"revenue {total_revenue:.2f}"
    )

    return ConversionTracking(
        total_leads=total_leads,
        converted_leads=len(converted),
        conversion_rate=len(converted) / total_leads * 100 if total_leads > 0 else 0.0,
        total_revenue=total_revenue,
        attribution=engine.group_conversions_by_channel(conversions),
        recent_conversions=[to_converted_lead_out(lead) for lead in conversions[:RECENT_CONVERSIONS_LIMIT]],
    )
