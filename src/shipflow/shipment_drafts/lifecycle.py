"""
Draft Lifecycle Manager - Opens shipment drafts for editing

Entry points:
- open(): create a new draft, or resume an existing one by key
- refresh_identifier(): regenerate the identifier once the customer is known
- mark_unrecoverable(): operator action for an in-flight booking (processing -> error)

Resume rules:
- Only the owning company and user may resume a draft
- Only drafts still in status=draft may be resumed
- A draft is resumed only by the form that created it
- An unknown key falls back to creating a new draft (notice: resume_key_not_found)
"""

import asyncio
from datetime import date
from typing import Any, Awaitable, Callable, List, Optional, Union
from uuid import UUID

from ..carriers.capabilities import CarrierCapabilityRegistry
from ..carriers.ports import CarrierGatewayPort
from ..observability.logging_config import get_logger
from ..observability.metrics import drafts_opened_total
from .accumulator import SectionAccumulator
from .booking import BookingOrchestrator
from .completeness import evaluate, first_incomplete_section
from .exceptions import (
    DraftAccessError,
    DraftNotEditableError,
    DraftNotFoundError,
    DraftStoreError,
)
from .identifiers import GeneratedIdentifier, ShipmentIdGenerator
from .navigator import StepNavigator, step_index_for_section
from .rates import RateRepositoryPort
from .sections import SectionName, initial_sections
from .status import DraftStatus, StateTransitionError, is_editable
from .store import DraftRecord, DraftStorePort, Owner
from .workspace import DraftWorkspace

logger = get_logger(__name__)

CREATION_METHODS = ("advanced", "quick")

NOTICE_RESUME_KEY_NOT_FOUND = "resume_key_not_found"
NOTICE_IDENTIFIER_REGENERATED = "identifier_regenerated"
NOTICE_SECTION_RESET = "section_reset"


class DraftLifecycleManager:
    """Creates and resumes workspaces for shipment drafts."""

    def __init__(
        self,
        store: DraftStorePort,
        rate_repository: RateRepositoryPort,
        gateway: CarrierGatewayPort,
        capabilities: CarrierCapabilityRegistry,
        id_generator: ShipmentIdGenerator,
        settings: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.rate_repository = rate_repository
        self.gateway = gateway
        self.capabilities = capabilities
        self.id_generator = id_generator
        self.settings = settings
        self._sleep = sleep
        self._today = today

    def _setting(self, name: str, default: Any) -> Any:
        return getattr(self.settings, name, default) if self.settings is not None else default

    def _build_workspace(
        self,
        key: UUID,
        owner: Owner,
        creation_method: str,
        accumulator: SectionAccumulator,
        start_index: int = 0,
        human_id: Optional[str] = None,
        human_id_customer_key: Optional[str] = None,
        resumed: bool = False,
        notices: Optional[List[str]] = None,
    ) -> DraftWorkspace:
        orchestrator = BookingOrchestrator(
            draft_key=key,
            owner=owner,
            accumulator=accumulator,
            store=self.store,
            rate_repository=self.rate_repository,
            gateway=self.gateway,
            capabilities=self.capabilities,
            api_key=self._setting("CARRIER_API_KEY", None),
            label_settle_delay=self._setting("LABEL_SETTLE_DELAY_SECONDS", 3.0),
            confirmation_reread_delay=self._setting("CONFIRMATION_REREAD_DELAY_SECONDS", 1.0),
            label_format_hint=self._setting("LABEL_FORMAT_HINT", "PDF"),
            sleep=self._sleep,
        )
        navigator = StepNavigator(
            key,
            accumulator,
            self.store,
            start_index=start_index,
            edit_guard=orchestrator.ensure_editable,
        )
        return DraftWorkspace(
            key=key,
            owner=owner,
            creation_method=creation_method,
            accumulator=accumulator,
            navigator=navigator,
            orchestrator=orchestrator,
            human_id=human_id,
            human_id_customer_key=human_id_customer_key,
            resumed=resumed,
            notices=notices or [],
        )

    async def open(
        self,
        owner: Owner,
        draft_key: Optional[UUID] = None,
        creation_method: str = "advanced",
    ) -> DraftWorkspace:
        """
        Create or resume a draft.

        Args:
            owner: Operator opening the form
            draft_key: Key of a draft to resume, or None for a new draft
            creation_method: Form doing the opening ("advanced" | "quick")

        Returns:
            DraftWorkspace positioned on the step to continue from

        Raises:
            DraftAccessError: draft belongs to another company or user
            DraftNotEditableError: draft left status=draft, or was created by another form
            DraftStoreError: the store failed
        """
        if creation_method not in CREATION_METHODS:
            raise ValueError(f"Unknown creation method '{creation_method}'")

        if draft_key is None:
            return await self._create(owner, creation_method)

        try:
            record = await self.store.load(draft_key)
        except DraftNotFoundError:
            logger.warning(
                f"Resume key {draft_key} not found, creating a new draft",
                extra={"draft_key": str(draft_key), "company_key": owner.company_key},
            )
            return await self._create(owner, creation_method, notices=[NOTICE_RESUME_KEY_NOT_FOUND])

        return await self._resume(owner, record, creation_method)

    async def _create(
        self,
        owner: Owner,
        creation_method: str,
        notices: Optional[List[str]] = None,
    ) -> DraftWorkspace:
        generated = await self.id_generator.generate(owner.company_key)
        accumulator = SectionAccumulator(
            initial_sections(human_id=generated.value, today=self._today())
        )
        try:
            key = await self.store.create(
                owner,
                generated.value,
                accumulator.snapshot(),
                creation_method=creation_method,
            )
        finally:
            self.id_generator.release(generated.value)

        mode = "fallback_created" if notices else "created"
        drafts_opened_total.labels(mode=mode).inc()
        logger.info(
            f"Opened new shipment draft {generated.value}",
            extra={
                "draft_key": str(key),
                "human_id": generated.value,
                "company_key": owner.company_key,
                "strategy": generated.strategy,
            },
        )

        return self._build_workspace(
            key,
            owner,
            creation_method,
            accumulator,
            human_id=generated.value,
            notices=notices,
        )

    async def _resume(
        self,
        owner: Owner,
        record: DraftRecord,
        creation_method: str,
    ) -> DraftWorkspace:
        if record.owner != owner:
            raise DraftAccessError(f"Shipment draft {record.key} belongs to another user")
        if not is_editable(record.status):
            raise DraftNotEditableError(
                f"Shipment draft {record.key} is {record.status.value} and can no longer be edited"
            )
        if record.creation_method != creation_method:
            raise DraftNotEditableError(
                f"Shipment draft {record.key} was created with the {record.creation_method} form"
            )

        notices = []
        accumulator = SectionAccumulator()
        for section in accumulator.load(record.sections):
            notices.append(f"{NOTICE_SECTION_RESET}:{section}")

        incomplete = first_incomplete_section(evaluate(accumulator.sections))
        start_index = step_index_for_section(incomplete)

        workspace = self._build_workspace(
            record.key,
            owner,
            record.creation_method,
            accumulator,
            start_index=start_index,
            human_id=record.human_id,
            human_id_customer_key=record.human_id_customer_key,
            resumed=True,
            notices=notices,
        )

        if not record.human_id:
            await self._assign_identifier(workspace)

        drafts_opened_total.labels(mode="resumed").inc()
        logger.info(
            f"Resumed shipment draft {workspace.human_id} at step {workspace.navigator.current_step.name}",
            extra={
                "draft_key": str(record.key),
                "human_id": workspace.human_id,
                "step": workspace.navigator.current_step.name,
            },
        )
        return workspace

    async def _assign_identifier(self, workspace: DraftWorkspace) -> Optional[GeneratedIdentifier]:
        """Generate and persist an identifier. Failures keep the old one."""
        customer_key = workspace.accumulator.sections.destination.customer_key or None
        generated = await self.id_generator.generate(workspace.owner.company_key, customer_key)
        try:
            await self.store.update_human_id(workspace.key, generated.value, customer_key)
        except DraftStoreError as e:
            logger.warning(
                f"Could not store regenerated identifier: {e}",
                extra={"draft_key": str(workspace.key), "human_id": generated.value},
            )
            return None
        finally:
            self.id_generator.release(generated.value)

        previous = workspace.human_id
        workspace.human_id = generated.value
        workspace.human_id_customer_key = customer_key
        workspace.notices.append(NOTICE_IDENTIFIER_REGENERATED)

        # The shipper reference defaults to the identifier; keep them in step
        info = workspace.accumulator.sections.info
        if not info.shipper_reference_number or info.shipper_reference_number == previous:
            workspace.accumulator.update(SectionName.INFO, {"shipper_reference_number": generated.value})
            try:
                await self.store.patch(
                    workspace.key,
                    SectionName.INFO.value,
                    workspace.accumulator.section_payload(SectionName.INFO),
                )
            except DraftStoreError as e:
                logger.warning(
                    f"Could not store shipper reference: {e}",
                    extra={"draft_key": str(workspace.key), "section": SectionName.INFO.value},
                )
        return generated

    async def refresh_identifier(self, workspace: DraftWorkspace) -> Optional[GeneratedIdentifier]:
        """
        Regenerate the identifier once the destination customer is known.

        The identifier is fixed after the first customer-bound generation.

        Returns:
            The new identifier, or None when nothing changed
        """
        customer_key = workspace.accumulator.sections.destination.customer_key
        if not customer_key or workspace.human_id_customer_key:
            return None
        return await self._assign_identifier(workspace)

    async def mark_unrecoverable(
        self,
        target: Union[DraftWorkspace, UUID],
        reason: str,
        owner: Optional[Owner] = None,
    ) -> DraftRecord:
        """
        Operator action: an in-flight booking was investigated and cannot be
        recovered. Moves the draft processing -> error.

        Raises:
            DraftAccessError: draft belongs to another operator
            StateTransitionError: draft is not processing, or a booking attempt
                is still running in this process
        """
        if isinstance(target, DraftWorkspace):
            if target.orchestrator.attempt is not None and target.orchestrator.attempt.in_flight:
                raise StateTransitionError(
                    f"Booking of shipment draft {target.key} is still in progress"
                )
            key, owner = target.key, target.owner
        else:
            key = target

        record = await self.store.load(key)
        if owner is not None and record.owner != owner:
            raise DraftAccessError(f"Shipment draft {key} belongs to another user")

        updated = await self.store.set_status(
            key,
            DraftStatus.ERROR,
            actor_key=owner.user_key if owner else None,
            reason=reason,
        )
        logger.warning(
            f"Shipment draft {key} marked unrecoverable: {reason}",
            extra={"draft_key": str(key), "reason": reason},
        )
        return updated
