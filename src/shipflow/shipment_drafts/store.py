"""
DraftStorePort - Port interface for shipment draft persistence

Domain services (lifecycle manager, navigator, booking orchestrator) depend
only on this Port. SqlAlchemyDraftStore is the database adapter; tests may
substitute any in-memory implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..audit.service import log_audit_event
from ..models.base import utcnow
from ..models.shipment_draft import SECTION_COLUMNS, ShipmentDraft
from ..observability.logging_config import get_logger
from .exceptions import DraftNotEditableError, DraftNotFoundError, DraftStoreError
from .sections import coerce_section_name
from .status import DraftStatus, validate_transition

logger = get_logger(__name__)

ENTITY_TYPE = "shipment_draft"


@dataclass(frozen=True)
class Owner:
    """Operator identity a draft belongs to."""
    company_key: str
    user_key: str


@dataclass
class DraftRecord:
    """
    Persisted draft as seen by domain services.

    Attributes:
        key: Opaque persistence key, immutable
        human_id: Generated shipment identifier (may be None on legacy rows)
        owner: Company and user the draft belongs to
        status: Current DraftStatus
        sections: Persisted section payloads keyed by section name
        creation_method: advanced | quick
    """
    key: UUID
    human_id: Optional[str]
    owner: Owner
    status: DraftStatus
    sections: Dict[str, Any] = field(default_factory=dict)
    creation_method: str = "advanced"
    human_id_customer_key: Optional[str] = None
    confirmation_number: Optional[str] = None
    carrier_key: Optional[str] = None
    last_booking_error: Optional[str] = None
    booked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, draft: ShipmentDraft) -> "DraftRecord":
        return cls(
            key=draft.key,
            human_id=draft.human_id,
            owner=Owner(company_key=draft.company_key, user_key=draft.user_key),
            status=DraftStatus(draft.status),
            sections=draft.sections(),
            creation_method=draft.creation_method,
            human_id_customer_key=draft.human_id_customer_key,
            confirmation_number=draft.confirmation_number,
            carrier_key=draft.carrier_key,
            last_booking_error=draft.last_booking_error,
            booked_at=draft.booked_at,
            created_at=draft.created_at,
            updated_at=draft.updated_at,
        )

    def to_summary(self) -> Dict[str, Any]:
        """Listing view of the draft."""
        info = self.sections.get("info") or {}
        destination = self.sections.get("destination") or {}
        return {
            "key": str(self.key),
            "human_id": self.human_id,
            "status": self.status.value,
            "creation_method": self.creation_method,
            "shipment_type": info.get("shipment_type"),
            "customer_key": destination.get("customer_key"),
            "confirmation_number": self.confirmation_number,
            "carrier_key": self.carrier_key,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class DraftStorePort(ABC):
    """
    Abstract interface for shipment draft persistence.

    Implementations:
    - SqlAlchemyDraftStore: async SQLAlchemy (PostgreSQL in production, SQLite in tests)

    Implementation Requirements:
    - patch() MUST touch exactly one section plus the last-modified marker
    - patch() MUST be idempotent
    - All backend failures MUST surface as DraftStoreError
    - There is no delete operation
    """

    @abstractmethod
    async def create(
        self,
        owner: Owner,
        human_id: Optional[str],
        initial_sections: Dict[str, Any],
        creation_method: str = "advanced",
        human_id_customer_key: Optional[str] = None,
    ) -> UUID:
        """Create a draft in status=draft and return its key."""
        pass

    @abstractmethod
    async def load(self, key: UUID) -> DraftRecord:
        """Load a draft. Raises DraftNotFoundError for unknown keys."""
        pass

    @abstractmethod
    async def patch(
        self,
        key: UUID,
        section_name: str,
        payload: Any,
        require_status: Optional[DraftStatus] = DraftStatus.DRAFT,
    ) -> None:
        """Replace the stored value of one section.

        The write only applies while the draft is in require_status; pass
        None to write regardless of status.

        Raises:
            DraftNotFoundError: unknown key
            DraftNotEditableError: draft is in another status
        """
        pass

    @abstractmethod
    async def set_status(
        self,
        key: UUID,
        new_status: DraftStatus,
        actor_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> DraftRecord:
        """Move a draft along the status state machine.

        Raises:
            StateTransitionError: if the transition is not allowed
        """
        pass

    @abstractmethod
    async def record_booking(
        self,
        key: UUID,
        confirmation_number: Optional[str],
        carrier_key: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        """Store the outcome of a booking attempt on the draft."""
        pass

    @abstractmethod
    async def record_document_outcome(
        self,
        key: UUID,
        document: str,
        status: str,
        detail: Optional[str] = None,
    ) -> None:
        """Append the outcome of a label/BOL call to the draft's audit trail."""
        pass

    @abstractmethod
    async def update_human_id(
        self,
        key: UUID,
        human_id: str,
        customer_key: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    async def human_id_exists(self, human_id: str, company_key: str) -> bool:
        """True if any draft or shipment of the company already uses human_id."""
        pass

    @abstractmethod
    async def list_for_owner(
        self,
        owner: Owner,
        status: Optional[DraftStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DraftRecord], int]:
        """List an operator's drafts, most recently modified first."""
        pass


class SqlAlchemyDraftStore(DraftStorePort):
    """Draft store backed by the shipment_draft table.

    Each operation runs in its own transaction opened from the session
    factory, so a failed write never leaves a half-applied change behind.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _get(self, session: AsyncSession, key: UUID) -> ShipmentDraft:
        draft = await session.get(ShipmentDraft, key)
        if draft is None:
            raise DraftNotFoundError(key)
        return draft

    async def create(
        self,
        owner: Owner,
        human_id: Optional[str],
        initial_sections: Dict[str, Any],
        creation_method: str = "advanced",
        human_id_customer_key: Optional[str] = None,
    ) -> UUID:
        draft = ShipmentDraft(
            human_id=human_id,
            human_id_customer_key=human_id_customer_key,
            company_key=owner.company_key,
            user_key=owner.user_key,
            creation_method=creation_method,
            status=DraftStatus.DRAFT.value,
        )
        for name, column in SECTION_COLUMNS.items():
            default = [] if name == "packages" else {}
            setattr(draft, column, initial_sections.get(name, default))

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(draft)
                    await session.flush()
                    await log_audit_event(
                        session,
                        company_key=owner.company_key,
                        actor_key=owner.user_key,
                        action="DRAFT_CREATED",
                        entity_type=ENTITY_TYPE,
                        entity_id=str(draft.key),
                        metadata={"human_id": human_id, "creation_method": creation_method},
                    )
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to create shipment draft: {e}") from e

        logger.info(
            f"Shipment draft created: {draft.key}",
            extra={"draft_key": str(draft.key), "human_id": human_id, "company_key": owner.company_key},
        )
        return draft.key

    async def load(self, key: UUID) -> DraftRecord:
        try:
            async with self.session_factory() as session:
                draft = await self._get(session, key)
                return DraftRecord.from_model(draft)
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to load shipment draft {key}: {e}") from e

    async def patch(
        self,
        key: UUID,
        section_name: str,
        payload: Any,
        require_status: Optional[DraftStatus] = DraftStatus.DRAFT,
    ) -> None:
        column = SECTION_COLUMNS[coerce_section_name(section_name).value]
        statement = update(ShipmentDraft).where(ShipmentDraft.key == key)
        if require_status is not None:
            statement = statement.where(ShipmentDraft.status == DraftStatus(require_status).value)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        statement.values({column: payload, "updated_at": utcnow()})
                    )
                    if result.rowcount == 0:
                        draft = await self._get(session, key)
                        raise DraftNotEditableError(
                            f"Shipment draft {key} is {draft.status} and can no longer be edited"
                        )
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to persist section '{section_name}' of {key}: {e}") from e

    async def set_status(
        self,
        key: UUID,
        new_status: DraftStatus,
        actor_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> DraftRecord:
        new_status = DraftStatus(new_status)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    draft = await self._get(session, key)
                    old_status = DraftStatus(draft.status)
                    validate_transition(old_status, new_status)

                    draft.status = new_status.value
                    draft.updated_at = utcnow()
                    if new_status == DraftStatus.BOOKED:
                        draft.booked_at = draft.updated_at

                    metadata = {"from": old_status.value, "to": new_status.value}
                    if reason:
                        metadata["reason"] = reason
                    await log_audit_event(
                        session,
                        company_key=draft.company_key,
                        actor_key=actor_key,
                        action="DRAFT_STATUS_CHANGED",
                        entity_type=ENTITY_TYPE,
                        entity_id=str(key),
                        metadata=metadata,
                    )
                    record = DraftRecord.from_model(draft)
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to change status of {key}: {e}") from e

        logger.info(
            f"Shipment draft {key} status {old_status.value} -> {new_status.value}",
            extra={"draft_key": str(key)},
        )
        return record

    async def record_booking(
        self,
        key: UUID,
        confirmation_number: Optional[str],
        carrier_key: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    draft = await self._get(session, key)
                    if confirmation_number:
                        draft.confirmation_number = confirmation_number
                    if carrier_key:
                        draft.carrier_key = carrier_key
                    draft.last_booking_error = error
                    draft.updated_at = utcnow()

                    await log_audit_event(
                        session,
                        company_key=draft.company_key,
                        action="DRAFT_BOOKING_RECORDED",
                        entity_type=ENTITY_TYPE,
                        entity_id=str(key),
                        metadata={
                            "confirmation_number": confirmation_number,
                            "carrier_key": carrier_key,
                            "error": error,
                        },
                    )
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to record booking for {key}: {e}") from e

    async def record_document_outcome(
        self,
        key: UUID,
        document: str,
        status: str,
        detail: Optional[str] = None,
    ) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    draft = await self._get(session, key)
                    await log_audit_event(
                        session,
                        company_key=draft.company_key,
                        action="DRAFT_DOCUMENT_GENERATED",
                        entity_type=ENTITY_TYPE,
                        entity_id=str(key),
                        metadata={"document": document, "status": status, "detail": detail},
                    )
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to record document outcome for {key}: {e}") from e

    async def update_human_id(
        self,
        key: UUID,
        human_id: str,
        customer_key: Optional[str] = None,
    ) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    draft = await self._get(session, key)
                    previous = draft.human_id
                    draft.human_id = human_id
                    draft.human_id_customer_key = customer_key
                    draft.updated_at = utcnow()

                    await log_audit_event(
                        session,
                        company_key=draft.company_key,
                        action="DRAFT_HUMAN_ID_CHANGED",
                        entity_type=ENTITY_TYPE,
                        entity_id=str(key),
                        metadata={"from": previous, "to": human_id, "customer_key": customer_key},
                    )
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to update identifier of {key}: {e}") from e

    async def human_id_exists(self, human_id: str, company_key: str) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ShipmentDraft.key)
                    .where(
                        ShipmentDraft.company_key == company_key,
                        ShipmentDraft.human_id == human_id,
                    )
                    .limit(1)
                )
                return result.first() is not None
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Identifier lookup failed: {e}") from e

    async def list_for_owner(
        self,
        owner: Owner,
        status: Optional[DraftStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DraftRecord], int]:
        conditions = [
            ShipmentDraft.company_key == owner.company_key,
            ShipmentDraft.user_key == owner.user_key,
        ]
        if status is not None:
            conditions.append(ShipmentDraft.status == DraftStatus(status).value)

        try:
            async with self.session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(ShipmentDraft).where(*conditions)
                )
                result = await session.execute(
                    select(ShipmentDraft)
                    .where(*conditions)
                    .order_by(ShipmentDraft.updated_at.desc())
                    .offset(offset)
                    .limit(limit)
                )
                records = [DraftRecord.from_model(d) for d in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DraftStoreError(f"Failed to list shipment drafts: {e}") from e

        return records, total or 0
