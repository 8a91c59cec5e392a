"""SQLAlchemy ORM models and enums.

This module defines the lead schema using UUID primary keys. Every row
carries an `owner_uid` so all reads and writes can be scoped to a single
tenant. Orders reconciled against leads are not persisted separately; a
conversion is recorded on the lead itself (status, order value, date).
"""

import uuid
from datetime import datetime, timezone
import enum

from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Numeric, Text, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (all datetimes are stored as naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums ---------------------------------------------------------

class LeadStatusEnum(str, enum.Enum):
    """Lead lifecycle status.

    Ordered by funnel depth: NEW -> CONTACTED -> QUALIFIED -> CONVERTED.
    CLOSED is a terminal state reached after qualification without a sale.
    """
    new = "NEW"
    contacted = "CONTACTED"
    qualified = "QUALIFIED"
    converted = "CONVERTED"
    closed = "CLOSED"


class LeadScoreEnum(str, enum.Enum):
    hot = "HOT"
    warm = "WARM"
    cold = "COLD"


class LeadSourceEnum(str, enum.Enum):
    facebook = "FACEBOOK"
    instagram = "INSTAGRAM"
    shopify = "SHOPIFY"
    manual = "MANUAL"
    other = "OTHER"


# Core models ----------------------------------------------------

class Lead(Base):
    """Lead represents a prospective customer captured from an ad platform.

    A lead belongs to exactly one owner (`owner_uid`). Leads are created on
    import from Meta Lead Ads and flipped to CONVERTED when a matching
    Shopify order is found.

    UTM fields are fixed per lead (not per interaction); reporting falls back
    to "direct" / "organic" / "none" when they are missing.
    """
    __tablename__ = "ecommerce_leads"
    __table_args__ = (
        UniqueConstraint("owner_uid", "external_id", name="uq_lead_owner_external_id"),
        Index("ix_leads_owner_created_at", "owner_uid", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_uid = Column(String, nullable=False, index=True)

    # Platform-assigned lead id (Meta leadgen_id), used for idempotent re-import
    external_id = Column(String, nullable=True, index=True)

    # Contact fields
    full_name = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True, index=True)
    city = Column(String, nullable=True)
    budget = Column(Numeric(14, 2), nullable=True)

    # Where the lead came from
    source = Column(String, nullable=True)  # LeadSourceEnum value
    source_name = Column(String, nullable=True)  # e.g. campaign name

    status = Column(
        Enum(LeadStatusEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=False,
        default=LeadStatusEnum.new,
    )
    score = Column(
        Enum(LeadScoreEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=True,
    )

    # UTM attribution
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    utm_term = Column(String, nullable=True)

    # Conversion (present only once converted)
    order_value = Column(Numeric(14, 2), nullable=True)
    conversion_date = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    events = relationship(
        "LeadEvent",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadEvent.created_at",
    )

    def __str__(self):
        return self.full_name or self.email or str(self.id)


class LeadEvent(Base):
    """A timestamped interaction on a lead (contacted, qualified, call, ...).

    Used as touchpoints when reconstructing a lead journey.
    """
    __tablename__ = "lead_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("ecommerce_leads.id"), nullable=False, index=True)
    owner_uid = Column(String, nullable=False, index=True)
    type = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    lead = relationship("Lead", back_populates="events")

    def __str__(self):
        return f"{self.type or 'activity'} @ {self.created_at}"
