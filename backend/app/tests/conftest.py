"""Pytest configuration for app integration tests

WHAT: Provides shared fixtures for service tests that need a real database
WHY: Ensures consistent test setup and database isolation per test
REFERENCES:
    - app/database.py: Database configuration
    - app/models.py: Lead, LeadEvent
    - app/services/lead_store.py: SqlLeadStore
"""

import pytest
import os
from datetime import datetime
from decimal import Decimal
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Ensure backend is in path
import sys
from pathlib import Path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DEFAULT_OWNER_UID", "demo")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("SENTRY_DSN", None)


OWNER = "owner-a"
OTHER_OWNER = "owner-b"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False}
    )

    from app.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def lead_store(test_db_session):
    """SqlLeadStore bound to the test session."""
    from app.services.lead_store import SqlLeadStore

    return SqlLeadStore(test_db_session)


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def make_lead(test_db_session):
    """Factory that inserts a lead directly (bypassing the services).

    Usage:
        lead = make_lead(email="john@x.com", status=LeadStatusEnum.new)
    """
    from app.models import Lead, LeadStatusEnum

    def _make_lead(**overrides):
        data = {
            "owner_uid": OWNER,
            "full_name": "John Doe",
            "first_name": "John",
            "last_name": "Doe",
            "status": LeadStatusEnum.new,
            "created_at": datetime(2024, 6, 1, 9, 0, 0),
        }
        data.update(overrides)
        lead = Lead(**data)
        test_db_session.add(lead)
        test_db_session.commit()
        test_db_session.refresh(lead)
        return lead

    return _make_lead


@pytest.fixture
def converted_lead(make_lead):
    """A lead from a paid-social campaign converted five and a half days after creation."""
    from app.models import LeadStatusEnum

    return make_lead(
        email="buyer@example.com",
        status=LeadStatusEnum.converted,
        utm_source="facebook",
        utm_medium="paid-social",
        utm_campaign="Summer Sale",
        order_value=Decimal("299.00"),
        created_at=datetime(2024, 6, 1, 9, 0, 0),
        conversion_date=datetime(2024, 6, 6, 21, 0, 0),
    )


# ============================================================================
# Payload Fixtures
# ============================================================================

@pytest.fixture
def meta_lead_payload():
    """Factory for Meta lead-form submissions in the webhook/Graph API shape."""

    def _payload(leadgen_id="lead_1", email="jane@example.com", phone="+972501234567", **overrides):
        fields = [
            {"name": "full_name", "values": ["Jane Ann Smith"]},
            {"name": "email", "values": [email]} if email else None,
            {"name": "phone_number", "values": [phone]} if phone else None,
            {"name": "city", "values": ["Tel Aviv"]},
            {"name": "budget", "values": ["2500"]},
        ]
        payload = {
            "leadgen_id": leadgen_id,
            "form_id": "form_1",
            "campaign_id": "c_1",
            "campaign_name": "Summer Sale",
            "adset_id": "as_1",
            "adset_name": "Lookalike 1%",
            "ad_id": "ad_1",
            "ad_name": "Carousel A",
            "created_time": "2024-06-01T09:00:00+0000",
            "field_data": [f for f in fields if f],
            "platform": "facebook",
        }
        payload.update(overrides)
        return payload

    return _payload


@pytest.fixture
def shopify_order_payload():
    """Factory for Shopify orders in the REST/webhook shape."""

    def _payload(order_id="5001", email="john@x.com", phone=None, total_price="299.00", **overrides):
        payload = {
            "id": order_id,
            "name": f"#{order_id}",
            "email": email,
            "created_at": "2024-06-05T12:30:00Z",
            "financial_status": "paid",
            "total_price": total_price,
            "currency": "USD",
            "customer": {
                "id": "c_900",
                "email": email,
                "first_name": "John",
                "last_name": "Doe",
                "phone": phone,
            },
            "note_attributes": [],
        }
        payload.update(overrides)
        return payload

    return _payload

