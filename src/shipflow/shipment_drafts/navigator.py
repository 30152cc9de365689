"""Step navigation for the shipment form.

Steps (in order): info, origin, destination, packages, rates, review.
Each step except review edits exactly one section.

advance() is the only move that persists. A failed persist does not block
the operator: the step still advances, the in-memory copy stays
authoritative, and the result carries the error. Once the draft is locked
for booking, a payload is refused outright and the section is left as it was.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union
from uuid import UUID

from ..observability.logging_config import get_logger
from ..observability.metrics import section_persist_failures_total
from .accumulator import SectionAccumulator
from .exceptions import DraftNotEditableError, DraftStoreError, NavigationError
from .sections import SectionName

logger = get_logger(__name__)


@dataclass(frozen=True)
class Step:
    name: str
    section: Optional[SectionName]


STEPS = (
    Step("info", SectionName.INFO),
    Step("origin", SectionName.ORIGIN),
    Step("destination", SectionName.DESTINATION),
    Step("packages", SectionName.PACKAGES),
    Step("rates", SectionName.RATE_REF),
    Step("review", None),
)

STEP_NAMES = tuple(step.name for step in STEPS)
REVIEW_INDEX = len(STEPS) - 1


def step_index_for_section(section: Optional[str]) -> int:
    """Index of the step editing section; review when section is None."""
    if section is None:
        return REVIEW_INDEX
    for index, step in enumerate(STEPS):
        if step.section is not None and step.section.value == section:
            return index
    raise NavigationError(f"No step edits section '{section}'")


@dataclass
class NavigationResult:
    """Outcome of one navigation move."""
    step_index: int
    step: str
    section_persisted: Optional[str] = None
    persist_error: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.section_persisted is not None and self.persist_error is None


class StepNavigator:
    """Moves one workspace through the form steps."""

    def __init__(
        self,
        draft_key: UUID,
        accumulator: SectionAccumulator,
        store,
        start_index: int = 0,
        edit_guard: Optional[Callable[[], None]] = None,
    ):
        self.draft_key = draft_key
        self.accumulator = accumulator
        self.store = store
        self.edit_guard = edit_guard
        self._index = self._checked_index(start_index)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_step(self) -> Step:
        return STEPS[self._index]

    def _result(self, **kwargs) -> NavigationResult:
        return NavigationResult(step_index=self._index, step=self.current_step.name, **kwargs)

    def _checked_index(self, index: int) -> int:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(STEPS):
            raise NavigationError(f"Step index {index!r} out of range 0..{REVIEW_INDEX}")
        return index

    async def advance(self, payload: Any = None) -> NavigationResult:
        """Merge payload into the current section, persist it, move forward.

        Without a payload nothing is persisted.

        Raises:
            NavigationError: when already on the review step
            SectionValidationError: payload rejected; the step does not move
            DraftNotEditableError: draft locked for booking; the step does not move
        """
        step = self.current_step
        if self._index == REVIEW_INDEX:
            raise NavigationError("Cannot advance past the review step")

        persisted_section = None
        persist_error = None

        if payload is not None and step.section is not None:
            if self.edit_guard is not None:
                self.edit_guard()
            previous = self.accumulator.get(step.section)
            self.accumulator.update(step.section, payload)
            persisted_section = step.section.value
            try:
                await self.store.patch(
                    self.draft_key,
                    step.section.value,
                    self.accumulator.section_payload(step.section),
                )
            except DraftNotEditableError:
                self.accumulator.restore(step.section, previous)
                raise
            except DraftStoreError as e:
                persist_error = str(e)
                section_persist_failures_total.labels(section=step.section.value).inc()
                logger.warning(
                    f"Section persist failed, advancing anyway: {e}",
                    extra={"draft_key": str(self.draft_key), "section": step.section.value},
                )

        self._index += 1
        return self._result(section_persisted=persisted_section, persist_error=persist_error)

    def retreat(self) -> NavigationResult:
        """Move back one step. Stays put on the first step."""
        if self._index > 0:
            self._index -= 1
        return self._result()

    def jump_to(self, step: Union[int, str]) -> NavigationResult:
        """Go to any step by index or name. No validation, no persistence."""
        if isinstance(step, str) and not step.isdigit():
            if step not in STEP_NAMES:
                raise NavigationError(f"Unknown step '{step}'")
            self._index = STEP_NAMES.index(step)
        else:
            self._index = self._checked_index(int(step))
        return self._result()
