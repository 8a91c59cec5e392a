"""Owner-scoped lead persistence.

WHAT:
    `LeadStore` is the narrow data-access interface the ingestion,
    conversion and reporting services depend on. `SqlLeadStore` implements
    it over a SQLAlchemy session.

WHY:
    - Services never issue raw queries; they call these operations.
    - One session is created by the caller and passed in, instead of each
      service managing its own connection.
    - Every read filters by `owner_uid`; every write stamps it.

REFERENCES:
    - app/models.py (Lead, LeadEvent)
    - app/database.py (session factory)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.exceptions import LeadStoreError
from app.models import Lead, LeadEvent, LeadStatusEnum, utcnow

logger = logging.getLogger(__name__)


class LeadStore(Protocol):
    """Data-access operations used by the lead services."""

    def find_lead_by_external_id(self, owner_uid: str, external_id: str) -> Optional[Lead]: ...

    def find_lead_by_email(
        self, owner_uid: str, email: str, exclude_converted: bool = False
    ) -> Optional[Lead]: ...

    def find_lead_by_phone(
        self, owner_uid: str, phone: str, exclude_converted: bool = False
    ) -> Optional[Lead]: ...

    def create_lead(self, data: Dict[str, Any]) -> Lead: ...

    def update_lead(self, lead_id: UUID, data: Dict[str, Any]) -> Lead: ...

    def find_leads_in_range(self, owner_uid: str, date_from: datetime, date_to: datetime) -> List[Lead]: ...

    def find_lead(self, owner_uid: str, lead_id: str) -> Optional[Lead]: ...

    def find_lead_events(self, owner_uid: str, lead_id: UUID) -> List[LeadEvent]: ...

    def add_lead_event(
        self, owner_uid: str, lead_id: UUID, event_type: str, created_at: Optional[datetime] = None
    ) -> LeadEvent: ...

    def find_recent_conversions(self, owner_uid: str, since: datetime, limit: int) -> List[Lead]: ...

    def find_converted_leads(
        self,
        owner_uid: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        date_field: str = "created_at",
    ) -> List[Lead]: ...

    def count_leads(
        self, owner_uid: str, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None
    ) -> int: ...


def _coerce_uuid(value) -> Optional[UUID]:
    """Parse a lead id; ids that are not UUIDs can never match a row."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


class SqlLeadStore:
    """SQLAlchemy implementation of `LeadStore`.

    Writes commit immediately so a later item in the same batch sees the
    rows created by earlier items. On failure the session is rolled back
    and a `LeadStoreError` is raised with the driver's message.
    """

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Identity lookups
    # -------------------------------------------------------------------------

    def find_lead_by_external_id(self, owner_uid: str, external_id: str) -> Optional[Lead]:
        return (
            self.db.query(Lead)
            .filter(Lead.owner_uid == owner_uid, Lead.external_id == external_id)
            .first()
        )

    def find_lead_by_email(
        self, owner_uid: str, email: str, exclude_converted: bool = False
    ) -> Optional[Lead]:
        query = self.db.query(Lead).filter(
            Lead.owner_uid == owner_uid,
            func.lower(Lead.email) == email.lower(),
        )
        if exclude_converted:
            query = query.filter(Lead.status != LeadStatusEnum.converted)
        return query.order_by(Lead.created_at).first()

    def find_lead_by_phone(
        self, owner_uid: str, phone: str, exclude_converted: bool = False
    ) -> Optional[Lead]:
        query = self.db.query(Lead).filter(
            Lead.owner_uid == owner_uid,
            Lead.phone == phone,
        )
        if exclude_converted:
            query = query.filter(Lead.status != LeadStatusEnum.converted)
        return query.order_by(Lead.created_at).first()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_lead(self, data: Dict[str, Any]) -> Lead:
        if not data.get("owner_uid"):
            raise LeadStoreError("owner_uid is required to create a lead")

        lead = Lead(**data)
        try:
            self.db.add(lead)
            self.db.commit()
            self.db.refresh(lead)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[LEAD_STORE] Failed to create lead for owner {data.get('owner_uid')}: {e}")
            raise LeadStoreError(str(e.orig) if getattr(e, "orig", None) else str(e)) from e
        return lead

    def update_lead(self, lead_id: UUID, data: Dict[str, Any]) -> Lead:
        parsed = _coerce_uuid(lead_id)
        lead = self.db.get(Lead, parsed) if parsed is not None else None
        if lead is None:
            raise LeadStoreError(f"Lead {lead_id} does not exist")

        for key, value in data.items():
            if key in ("id", "owner_uid"):
                continue
            setattr(lead, key, value)
        lead.updated_at = data.get("updated_at") or utcnow()

        try:
            self.db.commit()
            self.db.refresh(lead)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[LEAD_STORE] Failed to update lead {lead_id}: {e}")
            raise LeadStoreError(str(e.orig) if getattr(e, "orig", None) else str(e)) from e
        return lead

    def add_lead_event(
        self, owner_uid: str, lead_id: UUID, event_type: str, created_at: Optional[datetime] = None
    ) -> LeadEvent:
        event = LeadEvent(
            lead_id=_coerce_uuid(lead_id),
            owner_uid=owner_uid,
            type=event_type,
            created_at=created_at or utcnow(),
        )
        try:
            self.db.add(event)
            self.db.commit()
            self.db.refresh(event)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[LEAD_STORE] Failed to add event to lead {lead_id}: {e}")
            raise LeadStoreError(str(e)) from e
        return event

    # -------------------------------------------------------------------------
    # Reporting reads
    # -------------------------------------------------------------------------

    def find_leads_in_range(self, owner_uid: str, date_from: datetime, date_to: datetime) -> List[Lead]:
        return (
            self.db.query(Lead)
            .filter(
                Lead.owner_uid == owner_uid,
                Lead.created_at >= date_from,
                Lead.created_at <= date_to,
            )
            .order_by(Lead.created_at)
            .all()
        )

    def find_lead(self, owner_uid: str, lead_id: str) -> Optional[Lead]:
        parsed = _coerce_uuid(lead_id)
        if parsed is None:
            return None
        return (
            self.db.query(Lead)
            .filter(Lead.owner_uid == owner_uid, Lead.id == parsed)
            .first()
        )

    def find_lead_events(self, owner_uid: str, lead_id: UUID) -> List[LeadEvent]:
        return (
            self.db.query(LeadEvent)
            .filter(LeadEvent.owner_uid == owner_uid, LeadEvent.lead_id == _coerce_uuid(lead_id))
            .order_by(LeadEvent.created_at)
            .all()
        )

    def find_recent_conversions(self, owner_uid: str, since: datetime, limit: int) -> List[Lead]:
        return (
            self.db.query(Lead)
            .filter(
                Lead.owner_uid == owner_uid,
                Lead.status == LeadStatusEnum.converted,
                Lead.conversion_date >= since,
            )
            .order_by(Lead.conversion_date.desc())
            .limit(limit)
            .all()
        )

    def find_converted_leads(
        self,
        owner_uid: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        date_field: str = "created_at",
    ) -> List[Lead]:
        column = Lead.conversion_date if date_field == "conversion_date" else Lead.created_at
        query = self.db.query(Lead).filter(
            Lead.owner_uid == owner_uid,
            Lead.status == LeadStatusEnum.converted,
        )
        if date_from is not None:
            query = query.filter(column >= date_from)
        if date_to is not None:
            query = query.filter(column <= date_to)
        return query.order_by(Lead.conversion_date.desc()).all()

    def count_leads(
        self, owner_uid: str, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None
    ) -> int:
        query = self.db.query(func.count(Lead.id)).filter(Lead.owner_uid == owner_uid)
        if date_from is not None:
            query = query.filter(Lead.created_at >= date_from)
        if date_to is not None:
            query = query.filter(Lead.created_at <= date_to)
        return query.scalar() or 0
