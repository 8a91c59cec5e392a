"""Lead identity resolution.

WHAT:
    Decides whether an inbound identity (Meta lead form, Shopify order)
    refers to a lead that already exists for the same owner.

HOW:
    First match wins, in this order:
    1. (owner, external id)        exact
    2. (owner, email)              case-insensitive
    3. (owner, phone)              exact string equality

    Phone numbers are compared as-is: "+972-50-1234567" and "+972501234567"
    do not match. Order reconciliation passes `exclude_converted=True` so a
    converted lead is never matched to a second order.

REFERENCES:
    - app/services/lead_store.py (lookups)
    - app/services/lead_import_service.py, app/services/shopify_conversion_service.py (callers)
"""

import logging
from typing import Optional

from app.models import Lead
from app.services.lead_store import LeadStore

logger = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def resolve_lead(
    store: LeadStore,
    owner_uid: str,
    external_id: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    exclude_converted: bool = False,
) -> Optional[Lead]:
    """Find the existing lead for an identity, or None.

    Never raises for a non-match. Blank identifiers count as absent, so an
    identity with no external id, email or phone resolves to None without
    touching the store.

    `exclude_converted` only applies to the email and phone lookups; the
    external id identifies a specific lead-form submission.
    """
    external_id = _clean(external_id)
    email = _clean(email)
    phone = _clean(phone)

    if not (external_id or email or phone):
        return None

    if external_id:
        lead = store.find_lead_by_external_id(owner_uid, external_id)
        if lead is not None:
            logger.debug(f"[IDENTITY] Matched lead {lead.id} by external id")
            return lead

    if email:
        lead = store.find_lead_by_email(owner_uid, email, exclude_converted=exclude_converted)
        if lead is not None:
            logger.debug(f"[IDENTITY] Matched lead {lead.id} by email")
            return lead

    if phone:
        lead = store.find_lead_by_phone(owner_uid, phone, exclude_converted=exclude_converted)
        if lead is not None:
            logger.debug(f"[IDENTITY] Matched lead {lead.id} by phone")
            return lead

    return None
