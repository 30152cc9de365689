"""Tests for DraftLifecycleManager: create, resume, identifier refresh and
the mark-unrecoverable operator action."""

from datetime import date
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from shipflow.shipment_drafts.booking import BookingAttempt, BookingPhase
from shipflow.shipment_drafts.exceptions import (
    DraftAccessError,
    DraftNotEditableError,
    DraftStoreError,
)
from shipflow.shipment_drafts.lifecycle import (
    NOTICE_IDENTIFIER_REGENERATED,
    NOTICE_RESUME_KEY_NOT_FOUND,
)
from shipflow.shipment_drafts.status import DraftStatus, StateTransitionError

TODAY = date(2026, 10, 19)


class TestCreate:

    @pytest.mark.asyncio
    async def test_new_draft_defaults(self, lifecycle, store, owner):
        workspace = await lifecycle.open(owner)

        assert workspace.resumed is False
        assert workspace.notices == []
        assert workspace.human_id.startswith("ACME-")
        assert workspace.navigator.current_step.name == "info"

        info = workspace.accumulator.get("info")
        assert info.shipment_type == "courier"
        assert info.shipment_date == TODAY
        assert info.shipper_reference_number == workspace.human_id

        record = await store.load(workspace.key)
        assert record.status == DraftStatus.DRAFT
        assert record.human_id == workspace.human_id
        assert record.sections["info"]["shipper_reference_number"] == workspace.human_id

    @pytest.mark.asyncio
    async def test_identifier_released_after_create(self, lifecycle, id_generator, owner):
        workspace = await lifecycle.open(owner)
        assert id_generator.is_reserved(workspace.human_id) is False

    @pytest.mark.asyncio
    async def test_quick_form(self, lifecycle, store, owner):
        workspace = await lifecycle.open(owner, creation_method="quick")
        assert (await store.load(workspace.key)).creation_method == "quick"

    @pytest.mark.asyncio
    async def test_unknown_creation_method(self, lifecycle, owner):
        with pytest.raises(ValueError):
            await lifecycle.open(owner, creation_method="bulk")

    @pytest.mark.asyncio
    async def test_orchestrator_shares_accumulator(self, lifecycle, owner):
        workspace = await lifecycle.open(owner)
        assert workspace.orchestrator.accumulator is workspace.accumulator
        assert workspace.navigator.accumulator is workspace.accumulator


class TestResume:

    @pytest.mark.asyncio
    async def test_resume_at_first_incomplete_step(self, lifecycle, owner, origin_payload):
        created = await lifecycle.open(owner)
        created.navigator.jump_to("origin")
        await created.navigator.advance(origin_payload)

        resumed = await lifecycle.open(owner, draft_key=created.key)

        assert resumed.resumed is True
        assert resumed.human_id == created.human_id
        assert resumed.navigator.current_step.name == "destination"
        assert resumed.accumulator.get("origin").city == "Toronto"

    @pytest.mark.asyncio
    async def test_new_draft_resumes_at_origin(self, lifecycle, owner):
        created = await lifecycle.open(owner)
        resumed = await lifecycle.open(owner, draft_key=created.key)
        # Info defaults are complete
        assert resumed.navigator.current_step.name == "origin"

    @pytest.mark.asyncio
    async def test_unknown_key_creates_new_draft(self, lifecycle, owner):
        missing_key = uuid4()

        workspace = await lifecycle.open(owner, draft_key=missing_key)

        assert workspace.key != missing_key
        assert workspace.resumed is False
        assert workspace.notices == [NOTICE_RESUME_KEY_NOT_FOUND]

    @pytest.mark.asyncio
    async def test_other_operator_rejected(self, lifecycle, owner, other_owner):
        created = await lifecycle.open(owner)

        with pytest.raises(DraftAccessError):
            await lifecycle.open(other_owner, draft_key=created.key)

    @pytest.mark.asyncio
    async def test_non_draft_status_rejected(self, lifecycle, store, owner):
        created = await lifecycle.open(owner)
        await store.set_status(created.key, DraftStatus.PROCESSING)

        with pytest.raises(DraftNotEditableError):
            await lifecycle.open(owner, draft_key=created.key)

    @pytest.mark.asyncio
    async def test_other_form_rejected(self, lifecycle, owner):
        created = await lifecycle.open(owner, creation_method="quick")

        with pytest.raises(DraftNotEditableError):
            await lifecycle.open(owner, draft_key=created.key, creation_method="advanced")

    @pytest.mark.asyncio
    async def test_missing_identifier_generated_on_resume(self, lifecycle, store, owner):
        key = await store.create(owner, None, {"info": {"shipment_type": "courier"}})

        workspace = await lifecycle.open(owner, draft_key=key)

        assert workspace.human_id.startswith("ACME-")
        assert NOTICE_IDENTIFIER_REGENERATED in workspace.notices
        record = await store.load(key)
        assert record.human_id == workspace.human_id
        assert record.sections["info"]["shipper_reference_number"] == workspace.human_id

    @pytest.mark.asyncio
    async def test_malformed_section_reset_with_notice(self, lifecycle, store, owner):
        created = await lifecycle.open(owner)
        await store.patch(created.key, "packages", "three boxes")

        workspace = await lifecycle.open(owner, draft_key=created.key)

        assert "section_reset:packages" in workspace.notices
        assert workspace.accumulator.get("packages") == []


class TestRefreshIdentifier:
    """Identifier is regenerated once, when the customer becomes known"""

    @pytest.mark.asyncio
    async def test_regenerated_with_customer(self, lifecycle, store, owner, destination_payload):
        workspace = await lifecycle.open(owner)
        old_id = workspace.human_id
        workspace.accumulator.update("destination", destination_payload)

        generated = await lifecycle.refresh_identifier(workspace)

        assert generated is not None
        assert workspace.human_id.startswith("ACME-CUST01-")
        assert workspace.human_id != old_id
        assert workspace.human_id_customer_key == "CUST01"
        assert workspace.accumulator.get("info").shipper_reference_number == workspace.human_id
        record = await store.load(workspace.key)
        assert record.human_id == workspace.human_id
        assert record.human_id_customer_key == "CUST01"

    @pytest.mark.asyncio
    async def test_fixed_after_first_customer_bound_id(self, lifecycle, owner, destination_payload):
        workspace = await lifecycle.open(owner)
        workspace.accumulator.update("destination", destination_payload)
        await lifecycle.refresh_identifier(workspace)
        bound_id = workspace.human_id

        workspace.accumulator.update("destination", {"customerKey": "CUST02"})
        assert await lifecycle.refresh_identifier(workspace) is None
        assert workspace.human_id == bound_id

    @pytest.mark.asyncio
    async def test_no_customer_no_change(self, lifecycle, owner):
        workspace = await lifecycle.open(owner)
        assert await lifecycle.refresh_identifier(workspace) is None

    @pytest.mark.asyncio
    async def test_edited_shipper_reference_kept(self, lifecycle, owner, destination_payload):
        workspace = await lifecycle.open(owner)
        workspace.accumulator.update("info", {"shipperReferenceNumber": "PO-5521"})
        workspace.accumulator.update("destination", destination_payload)

        await lifecycle.refresh_identifier(workspace)

        assert workspace.accumulator.get("info").shipper_reference_number == "PO-5521"

    @pytest.mark.asyncio
    async def test_store_failure_keeps_old_identifier(self, lifecycle, store, owner, destination_payload):
        workspace = await lifecycle.open(owner)
        old_id = workspace.human_id
        workspace.accumulator.update("destination", destination_payload)
        store.update_human_id = AsyncMock(side_effect=DraftStoreError("write failed"))

        assert await lifecycle.refresh_identifier(workspace) is None
        assert workspace.human_id == old_id


class TestMarkUnrecoverable:

    @pytest.mark.asyncio
    async def test_processing_to_error(self, lifecycle, store, owner):
        workspace = await lifecycle.open(owner)
        await store.set_status(workspace.key, DraftStatus.PROCESSING)

        record = await lifecycle.mark_unrecoverable(workspace, "Carrier confirmed no shipment exists")

        assert record.status == DraftStatus.ERROR

    @pytest.mark.asyncio
    async def test_by_key_checks_owner(self, lifecycle, store, owner, other_owner):
        workspace = await lifecycle.open(owner)
        await store.set_status(workspace.key, DraftStatus.PROCESSING)

        with pytest.raises(DraftAccessError):
            await lifecycle.mark_unrecoverable(workspace.key, "not mine", owner=other_owner)

    @pytest.mark.asyncio
    async def test_draft_status_rejected(self, lifecycle, owner):
        workspace = await lifecycle.open(owner)

        with pytest.raises(StateTransitionError):
            await lifecycle.mark_unrecoverable(workspace, "never booked")

    @pytest.mark.asyncio
    async def test_in_flight_attempt_rejected(self, lifecycle, store, owner):
        workspace = await lifecycle.open(owner)
        await store.set_status(workspace.key, DraftStatus.PROCESSING)
        attempt = BookingAttempt(draft_key=workspace.key)
        attempt.enter(BookingPhase.RESERVING)
        workspace.orchestrator._attempt = attempt

        with pytest.raises(StateTransitionError):
            await lifecycle.mark_unrecoverable(workspace, "too early")

        assert (await store.load(workspace.key)).status == DraftStatus.PROCESSING
