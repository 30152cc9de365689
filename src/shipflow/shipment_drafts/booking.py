"""
Booking Orchestrator - Drives one draft from "book" to a terminal phase

Phases of a booking attempt:
    reserving -> generating_document -> completed
              -> error
    reserving -> completed            (carrier without follow-up document)

- Reservation failure ends the attempt in error. The draft stays in
  processing with the message stored; the operator may book again.
- Document failure never fails the attempt: the shipment is already booked
  with the carrier, so the outcome is recorded as an advisory status.
- Nothing is retried automatically and nothing already committed is rolled
  back.

Usage:
    orchestrator = BookingOrchestrator(draft_key, owner, accumulator, store,
                                       rate_repository, gateway, capabilities)
    attempt = await orchestrator.book()
    if attempt.phase == BookingPhase.COMPLETED:
        orchestrator.return_to_listing()
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID, uuid4

from ..carriers.capabilities import CarrierCapabilityRegistry, DocumentCapability
from ..carriers.ports import (
    BolRequest,
    BookingRequest,
    CarrierGatewayError,
    CarrierGatewayPort,
    GatewayResponse,
    LabelRequest,
)
from ..observability.logging_config import get_logger
from ..observability.metrics import (
    booking_duration_seconds,
    bookings_total,
    document_generation_total,
)
from .accumulator import SectionAccumulator
from .completeness import evaluate, is_booking_ready, missing_fields
from .exceptions import (
    BookingAlreadyCompletedError,
    BookingPreconditionError,
    DraftNotEditableError,
    DraftStoreError,
    RatePersistenceError,
    SectionValidationError,
)
from .rates import RateRepositoryPort, normalize_rate
from .sections import SectionName
from .status import DraftStatus, StateTransitionError
from .store import DraftRecord, DraftStorePort, Owner

logger = get_logger(__name__)

# Response fields that may carry the carrier's confirmation id, in priority order
CONFIRMATION_FIELDS = (
    "confirmationNumber",
    "shipmentConfirmationNumber",
    "proNumber",
    "bookingReferenceNumber",
    "shipmentId",
    "orderNumber",
    "trackingNumber",
)

DEFAULT_BOOKING_ERROR = "Booking failed. Please try again."


class BookingPhase(str, Enum):
    """Phase of a booking attempt."""
    IDLE = "idle"
    RESERVING = "reserving"
    GENERATING_DOCUMENT = "generating_document"
    COMPLETED = "completed"
    ERROR = "error"


IN_FLIGHT_PHASES = frozenset({BookingPhase.RESERVING, BookingPhase.GENERATING_DOCUMENT})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BookingAttempt:
    """
    One user-initiated booking action. In memory only.

    Attributes:
        attempt_id: Unique id for log correlation
        phase: Current BookingPhase
        phases: Every phase entered, in order
        external_confirmation_id: Carrier confirmation (or fallback) once reserved
        document_status: Advisory outcome of the label/BOL call
        error_message: Why the attempt ended in error
        warnings: Non-fatal problems (e.g. a failed best-effort write)
    """
    draft_key: UUID
    attempt_id: str = field(default_factory=lambda: uuid4().hex)
    phase: BookingPhase = BookingPhase.IDLE
    phases: List[BookingPhase] = field(default_factory=list)
    carrier_key: Optional[str] = None
    capability: Optional[DocumentCapability] = None
    rate_document_id: Optional[str] = None
    external_confirmation_id: Optional[str] = None
    document_status: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=_now)
    finished_at: Optional[datetime] = None

    def enter(self, phase: BookingPhase) -> None:
        self.phase = phase
        self.phases.append(phase)
        if phase in (BookingPhase.COMPLETED, BookingPhase.ERROR):
            self.finished_at = _now()

    @property
    def in_flight(self) -> bool:
        return self.phase in IN_FLIGHT_PHASES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "draft_key": str(self.draft_key),
            "phase": self.phase.value,
            "phases": [p.value for p in self.phases],
            "carrier_key": self.carrier_key,
            "capability": self.capability.value if self.capability else None,
            "rate_document_id": self.rate_document_id,
            "external_confirmation_id": self.external_confirmation_id,
            "document_status": self.document_status,
            "error_message": self.error_message,
            "warnings": list(self.warnings),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def extract_confirmation_id(data: Optional[Dict[str, Any]]) -> Optional[str]:
    """First non-empty confirmation field of a booking response.

    Field names match case-insensitively. A nested ``confirmation`` object is
    searched first.
    """
    if not isinstance(data, dict):
        return None

    sources = []
    nested = _get_ci(data, "confirmation")
    if isinstance(nested, dict):
        sources.append(nested)
    sources.append(data)

    for field_name in CONFIRMATION_FIELDS:
        for source in sources:
            value = _get_ci(source, field_name)
            if value not in (None, "") and not isinstance(value, (dict, list)):
                return str(value)
    return None


def _get_ci(data: Dict[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    lowered = key.lower()
    for k, v in data.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return None


class BookingOrchestrator:
    """Booking state machine for one workspace."""

    def __init__(
        self,
        draft_key: UUID,
        owner: Owner,
        accumulator: SectionAccumulator,
        store: DraftStorePort,
        rate_repository: RateRepositoryPort,
        gateway: CarrierGatewayPort,
        capabilities: CarrierCapabilityRegistry,
        api_key: Optional[str] = None,
        label_settle_delay: float = 3.0,
        confirmation_reread_delay: float = 1.0,
        label_format_hint: str = "PDF",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.draft_key = draft_key
        self.owner = owner
        self.accumulator = accumulator
        self.store = store
        self.rate_repository = rate_repository
        self.gateway = gateway
        self.capabilities = capabilities
        self.api_key = api_key
        self.label_settle_delay = label_settle_delay
        self.confirmation_reread_delay = confirmation_reread_delay
        self.label_format_hint = label_format_hint
        self._sleep = sleep
        self._attempt: Optional[BookingAttempt] = None

    @property
    def attempt(self) -> Optional[BookingAttempt]:
        """Current or most recent attempt."""
        return self._attempt

    @property
    def phase(self) -> BookingPhase:
        return self._attempt.phase if self._attempt else BookingPhase.IDLE

    def _log_extra(self, attempt: BookingAttempt) -> Dict[str, Any]:
        return {
            "draft_key": str(self.draft_key),
            "attempt_id": attempt.attempt_id,
            "phase": attempt.phase.value,
            "carrier": attempt.carrier_key,
        }

    def check_preconditions(self) -> None:
        """
        Raises:
            BookingPreconditionError: rate binding missing or sections incomplete
        """
        record = evaluate(self.accumulator.sections)
        if not is_booking_ready(record):
            missing = missing_fields(record)
            raise BookingPreconditionError(
                f"Shipment is not ready to book: incomplete sections {sorted(missing)}",
                missing=missing,
            )

    def ensure_editable(self) -> None:
        """
        Section edits stop once a booking attempt has started. A failed
        attempt leaves the draft processing, so it stays locked too.

        Raises:
            DraftNotEditableError: an attempt exists for this workspace
        """
        attempt = self._attempt
        if attempt is None:
            return
        state = "booked" if attempt.phase == BookingPhase.COMPLETED else "being booked"
        raise DraftNotEditableError(
            f"Shipment draft {self.draft_key} is {state} and can no longer be edited"
        )

    async def book(self) -> BookingAttempt:
        """
        Start a booking attempt, or return the one already in flight.

        Returns:
            The attempt, in a terminal phase unless it was already in flight

        Raises:
            BookingAlreadyCompletedError: a previous attempt completed
            BookingPreconditionError: draft not eligible, no attempt recorded
            RatePersistenceError: snapshot-only binding could not be persisted,
                no attempt recorded and no external call made
        """
        current = self._attempt
        if current is not None and current.in_flight:
            logger.info(
                "Booking already in progress, ignoring duplicate request",
                extra=self._log_extra(current),
            )
            return current
        if current is not None and current.phase == BookingPhase.COMPLETED:
            raise BookingAlreadyCompletedError(
                f"Shipment draft {self.draft_key} is already booked"
            )

        self.check_preconditions()

        # Claimed before the first await so a concurrent call sees it
        attempt = BookingAttempt(draft_key=self.draft_key)
        attempt.enter(BookingPhase.RESERVING)
        self._attempt = attempt
        started = time.monotonic()

        try:
            record = await self._load_unbooked()
            attempt.rate_document_id = await self._resolve_rate_binding()
            attempt.carrier_key = await self._resolve_carrier()
        except (RatePersistenceError, BookingAlreadyCompletedError):
            self._attempt = current
            raise

        logger.info("Booking attempt started", extra=self._log_extra(attempt))

        try:
            await self._reserve(attempt, record)
            if attempt.phase != BookingPhase.ERROR:
                await self._generate_document(attempt)
                await self._complete(attempt)
        finally:
            if attempt.in_flight:
                # Unexpected exception: never leave the attempt claimed
                attempt.error_message = attempt.error_message or DEFAULT_BOOKING_ERROR
                attempt.enter(BookingPhase.ERROR)
            outcome = attempt.phase.value
            carrier = attempt.carrier_key or "unknown"
            bookings_total.labels(carrier=carrier, outcome=outcome).inc()
            booking_duration_seconds.labels(carrier=carrier).observe(time.monotonic() - started)

        return attempt

    async def _resolve_rate_binding(self) -> str:
        """Return the rate document id, persisting a snapshot-only binding first."""
        rate_ref = self.accumulator.sections.rate_ref
        if rate_ref.rate_document_id:
            return rate_ref.rate_document_id

        rate_document_id = await self.rate_repository.persist(
            self.draft_key,
            rate_ref.rate_snapshot,
            company_key=self.owner.company_key,
        )
        self.accumulator.update(SectionName.RATE_REF, {"rate_document_id": rate_document_id})

        try:
            await self.store.patch(
                self.draft_key,
                SectionName.RATE_REF.value,
                self.accumulator.section_payload(SectionName.RATE_REF),
                require_status=None,
            )
        except DraftStoreError as e:
            logger.warning(
                f"Could not store rate document id on draft: {e}",
                extra={"draft_key": str(self.draft_key), "section": SectionName.RATE_REF.value},
            )
        return rate_document_id

    async def _resolve_carrier(self) -> Optional[str]:
        rate_ref = self.accumulator.sections.rate_ref
        if rate_ref.rate_snapshot:
            try:
                return normalize_rate(rate_ref.rate_snapshot).carrier_key
            except SectionValidationError as e:
                logger.warning(
                    f"Rate snapshot could not be normalised, using stored rate: {e}",
                    extra={"draft_key": str(self.draft_key)},
                )

        row = await self.rate_repository.get(rate_ref.rate_document_id)
        return row.get("carrier_key") if row else None

    async def _load_unbooked(self) -> Optional[DraftRecord]:
        """Current draft record, or None if it cannot be read.

        Raises:
            BookingAlreadyCompletedError: the draft is already booked
        """
        try:
            record = await self.store.load(self.draft_key)
        except DraftStoreError as e:
            logger.warning(f"Draft load before booking failed: {e}", extra={"draft_key": str(self.draft_key)})
            return None
        if record.status == DraftStatus.BOOKED:
            raise BookingAlreadyCompletedError(f"Shipment draft {self.draft_key} is already booked")
        return record

    async def _fail(self, attempt: BookingAttempt, message: str) -> None:
        attempt.error_message = message
        attempt.enter(BookingPhase.ERROR)
        logger.error(f"Booking attempt failed: {message}", extra=self._log_extra(attempt))
        try:
            await self.store.record_booking(
                self.draft_key,
                confirmation_number=None,
                carrier_key=attempt.carrier_key,
                error=message,
            )
        except DraftStoreError as e:
            attempt.warnings.append(f"Booking error not stored on draft: {e}")
            logger.warning(f"Could not store booking error: {e}", extra=self._log_extra(attempt))

    async def _enter_processing(self, record: Optional[DraftRecord]) -> None:
        if record is None:
            raise DraftStoreError(f"Shipment draft {self.draft_key} could not be read")
        # A retry after a failed reservation finds the draft already processing
        if record.status != DraftStatus.PROCESSING:
            await self.store.set_status(
                self.draft_key,
                DraftStatus.PROCESSING,
                actor_key=self.owner.user_key,
            )

    async def _reserve(self, attempt: BookingAttempt, record: Optional[DraftRecord]) -> None:
        try:
            await self._enter_processing(record)
        except (DraftStoreError, StateTransitionError) as e:
            await self._fail(attempt, f"Could not mark shipment as processing: {e}")
            return

        request = BookingRequest(
            api_key=self.api_key,
            rate_request_context=self.accumulator.snapshot(),
            draft_key=str(self.draft_key),
            rate_document_id=attempt.rate_document_id,
        )

        try:
            response: GatewayResponse = await self.gateway.book(request)
        except CarrierGatewayError as e:
            await self._fail(attempt, str(e) or DEFAULT_BOOKING_ERROR)
            return

        if not response.success:
            await self._fail(attempt, response.error or DEFAULT_BOOKING_ERROR)
            return

        confirmation = extract_confirmation_id(response.data)
        if confirmation is None:
            confirmation = await self._confirmation_from_draft()
        attempt.external_confirmation_id = confirmation

        try:
            await self.store.record_booking(
                self.draft_key,
                confirmation_number=confirmation,
                carrier_key=attempt.carrier_key,
            )
        except DraftStoreError as e:
            attempt.warnings.append(f"Confirmation not stored on draft: {e}")
            logger.warning(f"Could not store confirmation: {e}", extra=self._log_extra(attempt))

        logger.info(f"Shipment reserved, confirmation {confirmation}", extra=self._log_extra(attempt))

    async def _confirmation_from_draft(self) -> str:
        """The booking service may write the confirmation onto the draft itself."""
        await self._sleep(self.confirmation_reread_delay)
        try:
            record = await self.store.load(self.draft_key)
        except DraftStoreError as e:
            logger.warning(f"Draft re-read failed: {e}", extra={"draft_key": str(self.draft_key)})
            return str(self.draft_key)
        return record.confirmation_number or str(record.key)

    async def _generate_document(self, attempt: BookingAttempt) -> None:
        attempt.capability = self.capabilities.resolve(attempt.carrier_key)
        if attempt.capability == DocumentCapability.NONE:
            return

        attempt.enter(BookingPhase.GENERATING_DOCUMENT)
        document = attempt.capability.value
        label = "Label" if attempt.capability == DocumentCapability.LABEL else "Bill of lading"

        try:
            if attempt.capability == DocumentCapability.LABEL:
                # The carrier needs time to register the shipment before a
                # label can be pulled.
                await self._sleep(self.label_settle_delay)
                response = await self.gateway.generate_label(LabelRequest(
                    external_shipment_id=attempt.external_confirmation_id,
                    draft_key=str(self.draft_key),
                    carrier=attempt.carrier_key,
                    format_hint=self.label_format_hint,
                ))
            else:
                response = await self.gateway.generate_bol(BolRequest(
                    order_number=attempt.external_confirmation_id,
                    draft_key=str(self.draft_key),
                    carrier=attempt.carrier_key,
                ))
        except CarrierGatewayError as e:
            status, attempt.document_status = "error", f"{label} generation failed: {e}"
        else:
            if response.success:
                status, attempt.document_status = "success", f"{label} generated"
            else:
                reason = response.error or "unknown error"
                status, attempt.document_status = "failed", f"{label} generation failed: {reason}"

        document_generation_total.labels(
            carrier=attempt.carrier_key or "unknown",
            document=document,
            status=status,
        ).inc()

        if status != "success":
            logger.warning(attempt.document_status, extra=self._log_extra(attempt))
        else:
            logger.info(attempt.document_status, extra=self._log_extra(attempt))

        try:
            await self.store.record_document_outcome(
                self.draft_key,
                document=document,
                status=status,
                detail=attempt.document_status,
            )
        except DraftStoreError as e:
            attempt.warnings.append(f"Document outcome not recorded: {e}")

    async def _complete(self, attempt: BookingAttempt) -> None:
        attempt.enter(BookingPhase.COMPLETED)
        try:
            await self.store.set_status(
                self.draft_key,
                DraftStatus.BOOKED,
                actor_key=self.owner.user_key,
            )
        except (DraftStoreError, StateTransitionError) as e:
            attempt.warnings.append(f"Draft not marked booked: {e}")
            logger.error(f"Could not mark draft booked: {e}", extra=self._log_extra(attempt))
            return
        logger.info("Booking completed", extra=self._log_extra(attempt))

    def return_to_listing(self) -> None:
        """Leave the form after a booking: clear the working copy."""
        self.accumulator.reset()
