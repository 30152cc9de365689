"""Tests for SqlAlchemyDraftStore against in-memory SQLite.

Covers section patch isolation and idempotence, status transitions with
audit entries, booking outcome recording and owner-scoped listing.
"""

from datetime import date
from unittest.mock import Mock
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from shipflow.models.audit_log import AuditLog
from shipflow.shipment_drafts.accumulator import SectionAccumulator
from shipflow.shipment_drafts.exceptions import (
    DraftNotEditableError,
    DraftNotFoundError,
    DraftStoreError,
    SectionValidationError,
)
from shipflow.shipment_drafts.sections import initial_sections
from shipflow.shipment_drafts.status import DraftStatus, StateTransitionError
from shipflow.shipment_drafts.store import Owner, SqlAlchemyDraftStore

TODAY = date(2026, 10, 19)


def new_sections():
    return SectionAccumulator(initial_sections(human_id="ACME-1", today=TODAY)).snapshot()


async def audit_actions(session_factory, key):
    """Audit actions recorded for a draft, sorted by name."""
    async with session_factory() as session:
        result = await session.execute(
            select(AuditLog.action).where(AuditLog.entity_id == str(key))
        )
        return sorted(row[0] for row in result.all())


class TestCreateAndLoad:

    @pytest.mark.asyncio
    async def test_create_in_draft_status(self, store, owner):
        key = await store.create(owner, "ACME-1", new_sections())

        record = await store.load(key)

        assert record.key == key
        assert record.human_id == "ACME-1"
        assert record.owner == owner
        assert record.status == DraftStatus.DRAFT
        assert record.creation_method == "advanced"
        assert record.sections["info"]["shipper_reference_number"] == "ACME-1"
        assert len(record.sections["packages"]) == 1

    @pytest.mark.asyncio
    async def test_missing_sections_default_empty(self, store, owner):
        key = await store.create(owner, None, {}, creation_method="quick")

        record = await store.load(key)

        assert record.human_id is None
        assert record.creation_method == "quick"
        assert record.sections["packages"] == []
        assert record.sections["origin"] == {}

    @pytest.mark.asyncio
    async def test_create_is_audited(self, store, owner, session_factory):
        key = await store.create(owner, "ACME-1", {})
        assert await audit_actions(session_factory, key) == ["DRAFT_CREATED"]

    @pytest.mark.asyncio
    async def test_load_unknown_key(self, store):
        with pytest.raises(DraftNotFoundError):
            await store.load(uuid4())


class TestPatch:

    @pytest.mark.asyncio
    async def test_patch_touches_one_section(self, store, owner):
        key = await store.create(owner, "ACME-1", new_sections())
        before = await store.load(key)

        await store.patch(key, "origin", {"company_name": "Acme", "city": "Toronto"})

        after = await store.load(key)
        assert after.sections["origin"] == {"company_name": "Acme", "city": "Toronto"}
        for name in ("info", "destination", "packages", "rate_ref"):
            assert after.sections[name] == before.sections[name]
        assert after.updated_at >= before.updated_at

    @pytest.mark.asyncio
    async def test_patch_is_idempotent(self, store, owner):
        key = await store.create(owner, "ACME-1", new_sections())
        payload = [{"weight": 10.0, "item_description": "Widgets"}]

        await store.patch(key, "packages", payload)
        first = (await store.load(key)).sections
        await store.patch(key, "packages", payload)
        second = (await store.load(key)).sections

        assert first == second

    @pytest.mark.asyncio
    async def test_patch_unknown_key(self, store):
        with pytest.raises(DraftNotFoundError):
            await store.patch(uuid4(), "origin", {})

    @pytest.mark.asyncio
    async def test_patch_unknown_section(self, store, owner):
        key = await store.create(owner, "ACME-1", {})
        with pytest.raises(SectionValidationError):
            await store.patch(key, "customs", {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        [DraftStatus.PROCESSING],
        [DraftStatus.PROCESSING, DraftStatus.BOOKED],
    ])
    async def test_patch_refused_once_draft_left(self, store, owner, path):
        key = await store.create(owner, "ACME-1", new_sections())
        await store.patch(key, "origin", {"city": "Toronto"})
        for status in path:
            await store.set_status(key, status)

        with pytest.raises(DraftNotEditableError):
            await store.patch(key, "origin", {"city": "Ottawa"})

        assert (await store.load(key)).sections["origin"] == {"city": "Toronto"}

    @pytest.mark.asyncio
    async def test_unguarded_patch_ignores_status(self, store, owner):
        key = await store.create(owner, "ACME-1", new_sections())
        await store.set_status(key, DraftStatus.PROCESSING)

        await store.patch(key, "rate_ref", {"rate_document_id": "rate-1"}, require_status=None)

        assert (await store.load(key)).sections["rate_ref"] == {"rate_document_id": "rate-1"}


class TestSetStatus:

    @pytest.mark.asyncio
    async def test_booking_path(self, store, owner, session_factory):
        key = await store.create(owner, "ACME-1", {})

        processing = await store.set_status(key, DraftStatus.PROCESSING, actor_key=owner.user_key)
        booked = await store.set_status(key, DraftStatus.BOOKED, actor_key=owner.user_key)

        assert processing.status == DraftStatus.PROCESSING
        assert processing.booked_at is None
        assert booked.status == DraftStatus.BOOKED
        assert booked.booked_at is not None
        assert await audit_actions(session_factory, key) == [
            "DRAFT_CREATED",
            "DRAFT_STATUS_CHANGED",
            "DRAFT_STATUS_CHANGED",
        ]

    @pytest.mark.asyncio
    async def test_invalid_transition_leaves_status(self, store, owner):
        key = await store.create(owner, "ACME-1", {})

        with pytest.raises(StateTransitionError):
            await store.set_status(key, DraftStatus.BOOKED)

        assert (await store.load(key)).status == DraftStatus.DRAFT

    @pytest.mark.asyncio
    async def test_unknown_key(self, store):
        with pytest.raises(DraftNotFoundError):
            await store.set_status(uuid4(), DraftStatus.PROCESSING)


class TestBookingOutcome:

    @pytest.mark.asyncio
    async def test_record_confirmation(self, store, owner):
        key = await store.create(owner, "ACME-1", {})

        await store.record_booking(key, confirmation_number="PRO-123", carrier_key="CANPAR")

        record = await store.load(key)
        assert record.confirmation_number == "PRO-123"
        assert record.carrier_key == "CANPAR"
        assert record.last_booking_error is None

    @pytest.mark.asyncio
    async def test_record_error_keeps_confirmation(self, store, owner):
        key = await store.create(owner, "ACME-1", {})
        await store.record_booking(key, confirmation_number="PRO-123", carrier_key="CANPAR")

        await store.record_booking(key, confirmation_number=None, carrier_key=None, error="Carrier down")

        record = await store.load(key)
        assert record.confirmation_number == "PRO-123"
        assert record.last_booking_error == "Carrier down"

    @pytest.mark.asyncio
    async def test_record_document_outcome_is_audited(self, store, owner, session_factory):
        key = await store.create(owner, "ACME-1", {})

        await store.record_document_outcome(key, document="label", status="failed", detail="Label generation failed")

        assert await audit_actions(session_factory, key) == ["DRAFT_CREATED", "DRAFT_DOCUMENT_GENERATED"]


class TestIdentifiers:

    @pytest.mark.asyncio
    async def test_human_id_exists_scoped_to_company(self, store, owner):
        await store.create(owner, "ACME-1", {})

        assert await store.human_id_exists("ACME-1", "ACME") is True
        assert await store.human_id_exists("ACME-1", "GLOBEX") is False
        assert await store.human_id_exists("ACME-2", "ACME") is False

    @pytest.mark.asyncio
    async def test_update_human_id(self, store, owner, session_factory):
        key = await store.create(owner, "ACME-1", {})

        await store.update_human_id(key, "ACME-CUST01-7KQ2MX", customer_key="CUST01")

        record = await store.load(key)
        assert record.human_id == "ACME-CUST01-7KQ2MX"
        assert record.human_id_customer_key == "CUST01"
        assert "DRAFT_HUMAN_ID_CHANGED" in await audit_actions(session_factory, key)


class TestListForOwner:

    @pytest.mark.asyncio
    async def test_lists_only_own_drafts(self, store, owner, other_owner):
        mine = await store.create(owner, "ACME-1", {})
        await store.create(other_owner, "ACME-2", {})
        await store.create(Owner(company_key="GLOBEX", user_key=owner.user_key), "GLOB-1", {})

        records, total = await store.list_for_owner(owner)

        assert total == 1
        assert [r.key for r in records] == [mine]

    @pytest.mark.asyncio
    async def test_status_filter_and_paging(self, store, owner):
        keys = [await store.create(owner, f"ACME-{i}", {}) for i in range(3)]
        await store.set_status(keys[0], DraftStatus.PROCESSING)

        processing, total = await store.list_for_owner(owner, status=DraftStatus.PROCESSING)
        assert total == 1
        assert processing[0].key == keys[0]

        page, total = await store.list_for_owner(owner, limit=2, offset=0)
        assert total == 3
        assert len(page) == 2

    @pytest.mark.asyncio
    async def test_summary(self, store, owner):
        key = await store.create(owner, "ACME-1", new_sections())
        records, _ = await store.list_for_owner(owner)

        summary = records[0].to_summary()
        assert summary["key"] == str(key)
        assert summary["status"] == "draft"
        assert summary["shipment_type"] == "courier"


class TestBackendFailures:
    """Database errors surface as DraftStoreError"""

    @pytest.fixture
    def broken_store(self):
        return SqlAlchemyDraftStore(Mock(side_effect=OperationalError("SELECT 1", {}, Exception("db down"))))

    @pytest.mark.asyncio
    async def test_load(self, broken_store):
        with pytest.raises(DraftStoreError):
            await broken_store.load(uuid4())

    @pytest.mark.asyncio
    async def test_patch(self, broken_store):
        with pytest.raises(DraftStoreError):
            await broken_store.patch(uuid4(), "origin", {})

    @pytest.mark.asyncio
    async def test_human_id_exists(self, broken_store):
        with pytest.raises(DraftStoreError):
            await broken_store.human_id_exists("ACME-1", "ACME")
