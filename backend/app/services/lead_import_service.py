"""Meta Lead Ads import service.

WHAT:
    Converts Meta lead-form submissions into leads:
    - Parses answered form fields into contact fields
    - Resolves the submission against existing leads (external id, email, phone)
    - Creates new leads or updates the matched one
    - Pulls submissions from the Graph API and imports them (sync)

WHY:
    - Re-importing the same submission must update, never duplicate.
    - One bad submission must not abort the rest of the batch; it becomes
      an `error` detail in the result.

REFERENCES:
    - app/services/identity_resolver.py (matching order)
    - app/services/meta_leads_client.py (Graph API access)
    - app/services/shopify_conversion_service.py (similar batch pattern)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from app.models import Lead, LeadScoreEnum, LeadSourceEnum, LeadStatusEnum, utcnow
from app.schemas import LeadAttribution, MetaLeadFormData
from app.services.identity_resolver import resolve_lead
from app.services.lead_store import LeadStore
from app.telemetry.sentry import capture_exception

logger = logging.getLogger(__name__)

PAID_SOCIAL_MEDIUM = "paid-social"


# =============================================================================
# RESULT SCHEMAS
# =============================================================================

@dataclass
class ImportDetail:
    """Outcome for one submission in an import batch."""
    status: str  # imported | updated | duplicate | error
    external_id: Optional[str] = None
    lead_id: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = {"status": self.status, "message": self.message}
        if self.lead_id is not None:
            data["leadId"] = self.lead_id
        if self.external_id is not None:
            data["externalId"] = self.external_id
        return data


@dataclass
class ImportResult:
    """Response from a lead import batch."""
    success: bool = False
    imported: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: int = 0
    details: List[ImportDetail] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "imported": self.imported,
            "updated": self.updated,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "details": [d.to_dict() for d in self.details],
        }


# =============================================================================
# PARSING
# =============================================================================

def _parse_budget(value: Optional[str]) -> Optional[float]:
    """Parse a budget answer; anything non-numeric becomes None."""
    if value is None:
        return None
    try:
        budget = float(str(value).strip())
    except ValueError:
        return None
    if budget != budget or budget in (float("inf"), float("-inf")):
        return None
    return budget


def parse_meta_lead_form(lead_form: MetaLeadFormData) -> Dict[str, Any]:
    """Map answered form fields onto lead contact fields.

    Field names are matched case-insensitively. Only the first value of each
    field is used. Unknown fields are ignored.
    """
    data: Dict[str, Any] = {}

    for form_field in lead_form.field_data:
        if not form_field.values:
            continue
        value = form_field.values[0]

        name = form_field.name.lower()
        if name == "full_name":
            data["full_name"] = value
            name_parts = value.split(" ")
            data["first_name"] = name_parts[0]
            data["last_name"] = " ".join(name_parts[1:])
        elif name == "first_name":
            data["first_name"] = value
        elif name == "last_name":
            data["last_name"] = value
        elif name == "email":
            data["email"] = value
        elif name in ("phone_number", "phone"):
            data["phone"] = value
        elif name == "city":
            data["city"] = value
        elif name == "budget":
            data["budget"] = _parse_budget(value)

    return data


def _attribution_fields(lead_form: MetaLeadFormData) -> Dict[str, Any]:
    return {
        "source_name": lead_form.campaign_name,
        "utm_source": lead_form.platform,
        "utm_medium": PAID_SOCIAL_MEDIUM,
        "utm_campaign": lead_form.campaign_name,
        "utm_term": lead_form.adset_name,
    }


def _build_new_lead(owner_uid: str, lead_form: MetaLeadFormData, lead_data: Dict[str, Any]) -> Dict[str, Any]:
    source = LeadSourceEnum.instagram if lead_form.platform == "instagram" else LeadSourceEnum.facebook
    data = {
        "owner_uid": owner_uid,
        "external_id": lead_form.leadgen_id,
        "full_name": lead_data.get("full_name"),
        "first_name": lead_data.get("first_name"),
        "last_name": lead_data.get("last_name"),
        "phone": lead_data.get("phone"),
        "email": lead_data.get("email"),
        "city": lead_data.get("city"),
        "budget": lead_data.get("budget"),
        "source": source.value,
        "status": LeadStatusEnum.new,
        "score": LeadScoreEnum.warm,
        "notes": (
            "Imported from Meta Lead Ads\n"
            f"Campaign: {lead_form.campaign_name}\n"
            f"Adset: {lead_form.adset_name}\n"
            f"Ad: {lead_form.ad_name}"
        ),
    }
    data.update(_attribution_fields(lead_form))
    return data


def _build_lead_update(lead_form: MetaLeadFormData, lead_data: Dict[str, Any]) -> Dict[str, Any]:
    # Fields missing from this submission keep their stored values
    update = {key: value for key, value in lead_data.items() if value is not None}
    update.update({k: v for k, v in _attribution_fields(lead_form).items() if v is not None})
    update["updated_at"] = utcnow()
    return update


# =============================================================================
# IMPORT
# =============================================================================

def _import_one(store: LeadStore, owner_uid: str, lead_form: MetaLeadFormData) -> ImportDetail:
    lead_data = parse_meta_lead_form(lead_form)

    existing = resolve_lead(
        store,
        owner_uid,
        external_id=lead_form.leadgen_id,
        email=lead_data.get("email"),
        phone=lead_data.get("phone"),
    )

    if existing is not None:
        lead = store.update_lead(existing.id, _build_lead_update(lead_form, lead_data))
        return ImportDetail(
            status="updated",
            external_id=lead_form.leadgen_id,
            lead_id=str(lead.id),
            message="Lead updated successfully",
        )

    lead = store.create_lead(_build_new_lead(owner_uid, lead_form, lead_data))
    return ImportDetail(
        status="imported",
        external_id=lead_form.leadgen_id,
        lead_id=str(lead.id),
        message="Lead imported successfully",
    )


def _submission_id(item) -> Optional[str]:
    """Leadgen id for logging, None when the item is not a submission."""
    if isinstance(item, dict):
        value = item.get("leadgen_id")
    else:
        value = getattr(item, "leadgen_id", None)
    return str(value) if value is not None else None


def import_meta_leads(
    store: LeadStore,
    owner_uid: str,
    form_data: Iterable[Union[MetaLeadFormData, Dict[str, Any]]],
) -> ImportResult:
    """Import Meta lead-form submissions for one owner.

    WHAT: Creates or updates one lead per submission, strictly in input order
    WHY: Later submissions in the batch must see leads created by earlier ones

    Args:
        store: Lead store bound to the caller's session
        owner_uid: Owner all leads are scoped to
        form_data: Submissions (models or raw dicts in Meta's shape)

    Returns:
        ImportResult; `success` is True iff at least one submission did not error.
    """
    items = list(form_data)
    logger.info(f"[LEAD_IMPORT] Starting Meta leads import for {len(items)} leads (owner={owner_uid})")

    result = ImportResult()

    for item in items:
        external_id = _submission_id(item)
        try:
            lead_form = item if isinstance(item, MetaLeadFormData) else MetaLeadFormData.model_validate(item)
            detail = _import_one(store, owner_uid, lead_form)
        except Exception as e:
            logger.error(f"[LEAD_IMPORT] Error processing lead {external_id}: {e}")
            capture_exception(e, extra={"owner_uid": owner_uid, "leadgen_id": external_id})
            detail = ImportDetail(
                status="error",
                external_id=external_id,
                message=str(e) or "Unknown error occurred",
            )

        result.details.append(detail)
        if detail.status == "imported":
            result.imported += 1
        elif detail.status == "updated":
            result.updated += 1
        elif detail.status == "duplicate":
            result.duplicates += 1
        else:
            result.errors += 1

    result.success = result.errors < len(items)

    logger.info(
        f"[LEAD_IMPORT] Meta leads import completed: {result.imported} imported, "
        f"{result.updated} updated, {result.errors} errors"
    )
    return result


def sync_meta_form_leads(
    store: LeadStore,
    owner_uid: str,
    client,
    form_ids: Iterable[str],
    since: Optional[int] = None,
) -> ImportResult:
    """Pull submissions for the given lead forms and import them.

    Client failures (auth, permissions) abort the sync and propagate; only
    per-submission failures are downgraded to error details.

    Args:
        client: MetaLeadsClient (or anything with `get_form_leads(form_id, since=None)`)
        form_ids: Meta lead form ids to pull
        since: Optional unix timestamp; only submissions created after it
    """
    logger.info(f"[LEAD_IMPORT] Starting Meta lead sync for owner: {owner_uid}")

    submissions: List[Dict[str, Any]] = []
    for form_id in form_ids:
        submissions.extend(client.get_form_leads(form_id, since=since))

    return import_meta_leads(store, owner_uid, submissions)


# =============================================================================
# ATTRIBUTION LOOKUP
# =============================================================================

def get_campaign_attribution(store: LeadStore, owner_uid: str, lead_id: str) -> Optional[LeadAttribution]:
    """Return the stored campaign attribution for one lead, or None."""
    lead: Optional[Lead] = store.find_lead(owner_uid, lead_id)
    if lead is None:
        return None

    return LeadAttribution(
        lead_id=str(lead.id),
        source=lead.source,
        source_name=lead.source_name,
        utm_source=lead.utm_source,
        utm_medium=lead.utm_medium,
        utm_campaign=lead.utm_campaign,
        utm_term=lead.utm_term,
        created_at=lead.created_at,
    )
