"""Tests for BookingOrchestrator.

Runs against the SQLite-backed store and rate repository with the mock
carrier gateway. Delays go through RecordingSleep so the label settle wait
is observable without actually waiting.
"""

import asyncio
from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest

from shipflow.carriers.capabilities import DocumentCapability
from shipflow.shipment_drafts.booking import (
    BookingAttempt,
    BookingOrchestrator,
    BookingPhase,
    extract_confirmation_id,
)
from shipflow.shipment_drafts.exceptions import (
    BookingAlreadyCompletedError,
    BookingPreconditionError,
    DraftNotEditableError,
    DraftStoreError,
    RatePersistenceError,
)
from shipflow.shipment_drafts.status import DraftStatus


async def make_orchestrator(store, rate_repository, gateway, capabilities, sleep, owner, accumulator):
    key = await store.create(owner, "ACME-7KQ2MX", accumulator.snapshot())
    return BookingOrchestrator(
        draft_key=key,
        owner=owner,
        accumulator=accumulator,
        store=store,
        rate_repository=rate_repository,
        gateway=gateway,
        capabilities=capabilities,
        api_key="test-key",
        label_settle_delay=3.0,
        confirmation_reread_delay=1.0,
        sleep=sleep,
    )


@pytest.fixture
def build(store, rate_repository, gateway, capabilities, recording_sleep, owner, ready_accumulator):
    async def _build(accumulator=None, **overrides):
        parts = {
            "store": store,
            "rate_repository": rate_repository,
            "gateway": gateway,
            "capabilities": capabilities,
            "sleep": recording_sleep,
            "owner": owner,
            "accumulator": accumulator or ready_accumulator,
        }
        parts.update(overrides)
        return await make_orchestrator(**parts)
    return _build


class TestExtractConfirmationId:

    def test_priority_order(self):
        data = {"trackingNumber": "TRK-1", "proNumber": "PRO-1"}
        assert extract_confirmation_id(data) == "PRO-1"

    def test_case_insensitive(self):
        assert extract_confirmation_id({"CONFIRMATIONNUMBER": "C-1"}) == "C-1"

    def test_nested_confirmation_first(self):
        data = {"confirmation": {"orderNumber": "ORD-1"}, "confirmationNumber": "C-1"}
        assert extract_confirmation_id(data) == "C-1"
        assert extract_confirmation_id({"confirmation": {"orderNumber": "ORD-1"}, "trackingNumber": "T"}) == "ORD-1"

    def test_numbers_become_text(self):
        assert extract_confirmation_id({"shipmentId": 123456}) == "123456"

    def test_empty_values_skipped(self):
        assert extract_confirmation_id({"confirmationNumber": "", "proNumber": None}) is None

    def test_not_a_dict(self):
        assert extract_confirmation_id(None) is None


class TestBookingAttempt:

    def test_phase_history(self):
        attempt = BookingAttempt(draft_key="k")
        attempt.enter(BookingPhase.RESERVING)
        assert attempt.in_flight is True
        attempt.enter(BookingPhase.COMPLETED)

        assert attempt.in_flight is False
        assert attempt.phases == [BookingPhase.RESERVING, BookingPhase.COMPLETED]
        assert attempt.finished_at is not None
        assert attempt.to_dict()["phases"] == ["reserving", "completed"]


class TestPreconditions:

    @pytest.mark.asyncio
    async def test_incomplete_draft_rejected(self, build, ready_accumulator, gateway):
        ready_accumulator.update("origin", {"city": None})
        orchestrator = await build()

        with pytest.raises(BookingPreconditionError) as exc_info:
            await orchestrator.book()

        assert exc_info.value.missing == {"origin": ["city"]}
        assert orchestrator.attempt is None
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_missing_rate_rejected(self, build, ready_accumulator, gateway):
        ready_accumulator.update("rate_ref", {"rateSnapshot": None})
        orchestrator = await build()

        with pytest.raises(BookingPreconditionError) as exc_info:
            await orchestrator.book()

        assert exc_info.value.missing == {"rate_ref": ["rate_document_id"]}
        assert gateway.calls == []


class TestLabelCarrierBooking:
    """Reservation followed by a label after the settle delay"""

    @pytest.mark.asyncio
    async def test_happy_path(self, build, store, recording_sleep, gateway):
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.phase == BookingPhase.COMPLETED
        assert attempt.phases == [
            BookingPhase.RESERVING,
            BookingPhase.GENERATING_DOCUMENT,
            BookingPhase.COMPLETED,
        ]
        assert attempt.carrier_key == "CANPAR"
        assert attempt.capability == DocumentCapability.LABEL
        assert attempt.external_confirmation_id.startswith("MOCK-")
        assert attempt.document_status == "Label generated"

        record = await store.load(orchestrator.draft_key)
        assert record.status == DraftStatus.BOOKED
        assert record.confirmation_number == attempt.external_confirmation_id
        assert record.carrier_key == "CANPAR"

    @pytest.mark.asyncio
    async def test_label_waits_after_reservation(self, build, recording_sleep, gateway):
        orchestrator = await build()

        await orchestrator.book()

        assert [c.operation for c in gateway.calls] == ["book", "label"]
        # The single wait happened after the reservation and before the label
        assert recording_sleep.calls == [(3.0, ["book"])]

    @pytest.mark.asyncio
    async def test_label_request_uses_confirmation(self, build, gateway):
        orchestrator = await build()

        attempt = await orchestrator.book()

        payload = gateway.calls_for("label")[0].payload
        assert payload["shipmentId"] == attempt.external_confirmation_id
        assert payload["carrier"] == "CANPAR"
        assert payload["labelFormat"] == "PDF"

    @pytest.mark.asyncio
    async def test_booking_request_carries_context(self, build, gateway, ready_accumulator):
        orchestrator = await build()

        attempt = await orchestrator.book()

        payload = gateway.calls_for("book")[0].payload
        assert payload["apiKey"] == "test-key"
        assert payload["draftFirestoreDocId"] == str(orchestrator.draft_key)
        assert payload["selectedRateDocumentId"] == attempt.rate_document_id
        assert payload["rateRequestData"]["destination"]["customer_key"] == "CUST01"


class TestBolCarrierBooking:

    @pytest.mark.asyncio
    async def test_bol_without_delay(self, build, ready_accumulator, bol_rate, gateway, recording_sleep):
        ready_accumulator.update("rate_ref", {"rateSnapshot": bol_rate})
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.phase == BookingPhase.COMPLETED
        assert attempt.carrier_key == "POLARISTRANSPORTATION"
        assert attempt.capability == DocumentCapability.BOL
        assert [c.operation for c in gateway.calls] == ["book", "bol"]
        assert recording_sleep.calls == []
        assert gateway.calls_for("bol")[0].payload["proNumber"] == attempt.external_confirmation_id

    @pytest.mark.asyncio
    async def test_carrier_without_document(self, build, ready_accumulator, gateway):
        ready_accumulator.update("rate_ref", {"rateSnapshot": {"carrier": {"name": "Purolator"}}})
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.phases == [BookingPhase.RESERVING, BookingPhase.COMPLETED]
        assert attempt.capability == DocumentCapability.NONE
        assert attempt.document_status is None
        assert [c.operation for c in gateway.calls] == ["book"]

    @pytest.mark.asyncio
    async def test_brokered_rate_books_through_source_carrier(self, build, ready_accumulator, gateway, recording_sleep):
        ready_accumulator.update("rate_ref", {"rateSnapshot": {
            "carrier": {"name": "Ward Trucking"},
            "sourceCarrier": {"key": "ESHIPPLUS", "name": "eShipPlus"},
            "pricing": {"total": 512.0},
        }})
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.phase == BookingPhase.COMPLETED
        assert attempt.carrier_key == "ESHIPPLUS"
        assert attempt.capability == DocumentCapability.BOL
        assert [c.operation for c in gateway.calls] == ["book", "bol"]
        assert gateway.calls_for("bol")[0].payload["carrier"] == "ESHIPPLUS"
        assert recording_sleep.calls == []


class TestRateBinding:

    @pytest.mark.asyncio
    async def test_snapshot_persisted_before_reservation(self, build, store, rate_repository, ready_accumulator):
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.rate_document_id
        assert ready_accumulator.get("rate_ref").rate_document_id == attempt.rate_document_id
        stored = await rate_repository.get(attempt.rate_document_id)
        assert stored["draft_key"] == str(orchestrator.draft_key)
        record = await store.load(orchestrator.draft_key)
        assert record.sections["rate_ref"]["rate_document_id"] == attempt.rate_document_id

    @pytest.mark.asyncio
    async def test_persistence_failure_makes_no_external_call(self, build, gateway):
        failing_repository = Mock()
        failing_repository.persist = AsyncMock(side_effect=RatePersistenceError("rates table unavailable"))
        orchestrator = await build(rate_repository=failing_repository)

        with pytest.raises(RatePersistenceError):
            await orchestrator.book()

        assert gateway.calls == []
        assert orchestrator.attempt is None
        assert orchestrator.phase == BookingPhase.IDLE

    @pytest.mark.asyncio
    async def test_existing_document_id_reused(self, build, ready_accumulator, rate_repository, label_rate):
        rate_document_id = await rate_repository.persist(uuid4(), label_rate)
        ready_accumulator.update("rate_ref", {"rateDocumentId": rate_document_id, "rateSnapshot": None})
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.rate_document_id == rate_document_id
        # Carrier comes from the stored rate when no snapshot is bound
        assert attempt.carrier_key == "CANPAR"


class TestReservationFailure:
    """A failed reservation ends the attempt; the draft stays processing"""

    @pytest.mark.asyncio
    async def test_carrier_rejects(self, build, store, gateway):
        gateway.configure("book", mode="failure", error_message="Pickup date in the past")
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.phase == BookingPhase.ERROR
        assert attempt.error_message == "Pickup date in the past"
        assert gateway.calls_for("label") == []
        record = await store.load(orchestrator.draft_key)
        assert record.status == DraftStatus.PROCESSING
        assert record.last_booking_error == "Pickup date in the past"

    @pytest.mark.asyncio
    async def test_transport_error(self, build, gateway):
        gateway.configure("book", mode="error", error_message="connection reset")
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.phase == BookingPhase.ERROR
        assert attempt.error_message == "connection reset"

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, build, store, gateway):
        gateway.configure("book", mode="failure")
        orchestrator = await build()
        first = await orchestrator.book()
        assert first.phase == BookingPhase.ERROR

        gateway.configure("book", mode="success")
        second = await orchestrator.book()

        assert second is not first
        assert second.phase == BookingPhase.COMPLETED
        record = await store.load(orchestrator.draft_key)
        assert record.status == DraftStatus.BOOKED
        assert record.last_booking_error is None


class TestDocumentFailure:
    """Document problems are advisory: the shipment is already booked"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["failure", "error"])
    async def test_label_failure_still_completes(self, build, store, gateway, mode):
        gateway.configure("label", mode=mode, error_message="Label service down")
        orchestrator = await build()

        attempt = await orchestrator.book()

        assert attempt.phase == BookingPhase.COMPLETED
        assert attempt.document_status == "Label generation failed: Label service down"
        assert attempt.error_message is None
        assert (await store.load(orchestrator.draft_key)).status == DraftStatus.BOOKED


class TestConfirmationFallback:

    @pytest.mark.asyncio
    async def test_reread_draft_when_response_has_no_confirmation(self, build, gateway, recording_sleep):
        gateway.configure("book", response_data={"bookingStatus": "BOOKED"})
        orchestrator = await build()

        attempt = await orchestrator.book()

        # Nothing wrote a confirmation onto the draft, so its key is used
        assert attempt.external_confirmation_id == str(orchestrator.draft_key)
        assert recording_sleep.delays[0] == 1.0
        assert attempt.phase == BookingPhase.COMPLETED


class TestReentry:

    @pytest.mark.asyncio
    async def test_concurrent_book_returns_same_attempt(self, build, gateway):
        orchestrator = await build()

        first, second = await asyncio.gather(orchestrator.book(), orchestrator.book())

        assert first is second
        assert len(gateway.calls_for("book")) == 1

    @pytest.mark.asyncio
    async def test_completed_attempt_cannot_book_again(self, build, gateway):
        orchestrator = await build()
        await orchestrator.book()

        with pytest.raises(BookingAlreadyCompletedError):
            await orchestrator.book()

        assert len(gateway.calls_for("book")) == 1

    @pytest.mark.asyncio
    async def test_draft_booked_elsewhere(self, build, store, gateway):
        orchestrator = await build()
        await store.set_status(orchestrator.draft_key, DraftStatus.PROCESSING)
        await store.set_status(orchestrator.draft_key, DraftStatus.BOOKED)

        with pytest.raises(BookingAlreadyCompletedError):
            await orchestrator.book()

        assert orchestrator.attempt is None
        assert gateway.calls == []


class TestEditLock:
    """Sections stay editable until an attempt starts"""

    @pytest.mark.asyncio
    async def test_editable_before_booking(self, build):
        orchestrator = await build()
        orchestrator.ensure_editable()

    @pytest.mark.asyncio
    async def test_locked_while_reserving(self, build, gateway):
        reached = asyncio.Event()
        release = asyncio.Event()
        book = gateway.book

        async def held_book(request):
            reached.set()
            await release.wait()
            return await book(request)

        gateway.book = held_book
        orchestrator = await build()

        task = asyncio.create_task(orchestrator.book())
        await reached.wait()
        with pytest.raises(DraftNotEditableError) as exc_info:
            orchestrator.ensure_editable()
        release.set()
        attempt = await task

        assert "being booked" in str(exc_info.value)
        assert attempt.phase == BookingPhase.COMPLETED

    @pytest.mark.asyncio
    async def test_locked_after_completion(self, build):
        orchestrator = await build()
        await orchestrator.book()

        with pytest.raises(DraftNotEditableError) as exc_info:
            orchestrator.ensure_editable()
        assert "booked" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rejected_preconditions_keep_draft_editable(self, build, ready_accumulator):
        ready_accumulator.update("origin", {"city": None})
        orchestrator = await build()

        with pytest.raises(BookingPreconditionError):
            await orchestrator.book()

        orchestrator.ensure_editable()

    @pytest.mark.asyncio
    async def test_rate_document_id_stored_on_processing_draft(self, build, store):
        orchestrator = await build()
        await store.set_status(orchestrator.draft_key, DraftStatus.PROCESSING)

        attempt = await orchestrator.book()

        record = await store.load(orchestrator.draft_key)
        assert record.sections["rate_ref"]["rate_document_id"] == attempt.rate_document_id


class TestBestEffortWrites:

    @pytest.mark.asyncio
    async def test_store_failure_after_reservation_is_a_warning(self, build, store):
        orchestrator = await build()
        store.record_booking = AsyncMock(side_effect=DraftStoreError("write timeout"))

        attempt = await orchestrator.book()

        assert attempt.phase == BookingPhase.COMPLETED
        assert any("write timeout" in w for w in attempt.warnings)

    @pytest.mark.asyncio
    async def test_return_to_listing_clears_working_copy(self, build, ready_accumulator):
        orchestrator = await build()
        await orchestrator.book()

        orchestrator.return_to_listing()

        assert ready_accumulator.get("origin").company_name is None
        assert ready_accumulator.get("packages") == []
