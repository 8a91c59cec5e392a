"""Tests for SqlLeadStore.

WHAT: Owner-scoped reads/writes against an in-memory SQLite database
WHY: Every service depends on these lookups being scoped and matching correctly
REFERENCES:
    - app/services/lead_store.py
"""

import uuid
from datetime import datetime
from decimal import Decimal

import pytest

from app.exceptions import LeadStoreError
from app.models import Lead, LeadStatusEnum


class TestIdentityLookups:

    def test_find_by_external_id_is_owner_scoped(self, lead_store, make_lead):
        """WHAT: The same external id under another owner must not match.
        WHY: Tenants never see each other's leads.
        """
        make_lead(owner_uid="owner-b", external_id="lead_1")

        assert lead_store.find_lead_by_external_id("owner-a", "lead_1") is None
        assert lead_store.find_lead_by_external_id("owner-b", "lead_1") is not None

    def test_find_by_email_is_case_insensitive(self, lead_store, make_lead):
        lead = make_lead(email="John@X.com")

        found = lead_store.find_lead_by_email("owner-a", "JOHN@x.COM")

        assert found is not None
        assert found.id == lead.id

    def test_find_by_email_can_exclude_converted(self, lead_store, make_lead):
        make_lead(email="john@x.com", status=LeadStatusEnum.converted)

        assert lead_store.find_lead_by_email("owner-a", "john@x.com") is not None
        assert lead_store.find_lead_by_email("owner-a", "john@x.com", exclude_converted=True) is None

    def test_find_by_phone_is_exact(self, lead_store, make_lead):
        """WHAT: Phone numbers are compared without normalization.
        WHY: Separators and country-code variants are treated as different numbers.
        """
        make_lead(phone="+972-50-1234567")

        assert lead_store.find_lead_by_phone("owner-a", "+972-50-1234567") is not None
        assert lead_store.find_lead_by_phone("owner-a", "+972501234567") is None


class TestWrites:

    def test_create_lead_requires_owner(self, lead_store):
        with pytest.raises(LeadStoreError):
            lead_store.create_lead({"email": "x@example.com"})

    def test_create_lead_applies_defaults(self, lead_store):
        lead = lead_store.create_lead({"owner_uid": "owner-a", "email": "x@example.com"})

        assert isinstance(lead.id, uuid.UUID)
        assert lead.status == LeadStatusEnum.new
        assert lead.created_at is not None

    def test_duplicate_external_id_raises_and_session_stays_usable(self, lead_store, test_db_session):
        """WHAT: A uniqueness violation is wrapped and the session rolled back.
        WHY: Batch imports keep using the same session for the next item.
        """
        lead_store.create_lead({"owner_uid": "owner-a", "external_id": "lead_1"})

        with pytest.raises(LeadStoreError):
            lead_store.create_lead({"owner_uid": "owner-a", "external_id": "lead_1"})

        lead_store.create_lead({"owner_uid": "owner-a", "external_id": "lead_2"})
        assert test_db_session.query(Lead).count() == 2

    def test_update_lead_never_moves_owner(self, lead_store, make_lead):
        lead = make_lead(city="Haifa")

        updated = lead_store.update_lead(lead.id, {"city": "Eilat", "owner_uid": "owner-b"})

        assert updated.city == "Eilat"
        assert updated.owner_uid == "owner-a"
        assert updated.updated_at is not None

    def test_update_missing_lead_raises(self, lead_store):
        with pytest.raises(LeadStoreError):
            lead_store.update_lead(uuid.uuid4(), {"city": "Eilat"})

    def test_add_and_find_events_in_order(self, lead_store, make_lead):
        lead = make_lead()
        lead_store.add_lead_event("owner-a", lead.id, "qualified", created_at=datetime(2024, 6, 3))
        lead_store.add_lead_event("owner-a", lead.id, "contacted", created_at=datetime(2024, 6, 2))

        events = lead_store.find_lead_events("owner-a", lead.id)

        assert [e.type for e in events] == ["contacted", "qualified"]
        assert lead_store.find_lead_events("owner-b", lead.id) == []


class TestReportingReads:

    def test_find_leads_in_range_is_inclusive(self, lead_store, make_lead):
        make_lead(created_at=datetime(2024, 6, 1, 0, 0, 0))
        make_lead(created_at=datetime(2024, 6, 30, 23, 59, 59))
        make_lead(created_at=datetime(2024, 7, 1, 0, 0, 1))
        make_lead(owner_uid="owner-b", created_at=datetime(2024, 6, 15))

        leads = lead_store.find_leads_in_range(
            "owner-a", datetime(2024, 6, 1), datetime(2024, 6, 30, 23, 59, 59)
        )

        assert len(leads) == 2

    def test_find_lead_with_malformed_id_returns_none(self, lead_store):
        assert lead_store.find_lead("owner-a", "not-a-uuid") is None

    def test_find_lead_respects_owner(self, lead_store, make_lead):
        lead = make_lead()

        assert lead_store.find_lead("owner-a", str(lead.id)).id == lead.id
        assert lead_store.find_lead("owner-b", str(lead.id)) is None

    def test_recent_conversions_newest_first_and_limited(self, lead_store, make_lead):
        for day in (2, 4, 3):
            make_lead(
                status=LeadStatusEnum.converted,
                order_value=Decimal("10"),
                conversion_date=datetime(2024, 6, day),
            )
        make_lead(status=LeadStatusEnum.converted, conversion_date=datetime(2024, 5, 1))

        recent = lead_store.find_recent_conversions("owner-a", datetime(2024, 6, 1), limit=2)

        assert [lead.conversion_date.day for lead in recent] == [4, 3]

    def test_find_converted_leads_by_conversion_date(self, lead_store, make_lead):
        make_lead(
            status=LeadStatusEnum.converted,
            created_at=datetime(2024, 5, 20),
            conversion_date=datetime(2024, 6, 2),
        )
        make_lead(status=LeadStatusEnum.new, created_at=datetime(2024, 6, 2))

        by_created = lead_store.find_converted_leads("owner-a", datetime(2024, 6, 1), datetime(2024, 6, 30))
        by_conversion = lead_store.find_converted_leads(
            "owner-a", datetime(2024, 6, 1), datetime(2024, 6, 30), date_field="conversion_date"
        )

        assert by_created == []
        assert len(by_conversion) == 1

    def test_count_leads(self, lead_store, make_lead):
        make_lead(created_at=datetime(2024, 6, 1))
        make_lead(created_at=datetime(2024, 6, 10))
        make_lead(owner_uid="owner-b")

        assert lead_store.count_leads("owner-a") == 2
        assert lead_store.count_leads("owner-a", datetime(2024, 6, 5), None) == 1
