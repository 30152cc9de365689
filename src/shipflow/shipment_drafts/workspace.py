"""Open draft workspaces.

A workspace bundles everything one operator session needs for one draft:
the accumulator, the step navigator and the booking orchestrator, all
sharing the same accumulator instance.

Workspaces live in process memory only; evicting one loses unsaved edits
but never the persisted draft, which the operator can resume.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from ..observability.logging_config import get_logger
from ..observability.metrics import workspaces_evicted_total
from .accumulator import SectionAccumulator
from .booking import BookingOrchestrator
from .completeness import evaluate
from .exceptions import DraftAccessError, DraftNotFoundError
from .navigator import StepNavigator
from .store import Owner

logger = get_logger(__name__)


@dataclass
class DraftWorkspace:
    key: UUID
    owner: Owner
    creation_method: str
    accumulator: SectionAccumulator
    navigator: StepNavigator
    orchestrator: BookingOrchestrator
    human_id: Optional[str] = None
    human_id_customer_key: Optional[str] = None
    resumed: bool = False
    notices: List[str] = field(default_factory=list)

    def completeness(self) -> Dict[str, Any]:
        return {
            name: result.to_dict()
            for name, result in evaluate(self.accumulator.sections).items()
        }

    def close(self) -> None:
        self.accumulator.reset()

    def to_dict(self) -> Dict[str, Any]:
        attempt = self.orchestrator.attempt
        return {
            "key": str(self.key),
            "human_id": self.human_id,
            "creation_method": self.creation_method,
            "resumed": self.resumed,
            "notices": list(self.notices),
            "step_index": self.navigator.current_index,
            "step": self.navigator.current_step.name,
            "sections": self.accumulator.snapshot(),
            "completeness": self.completeness(),
            "booking": attempt.to_dict() if attempt else None,
        }


class WorkspaceRegistry:
    """In-process registry of open workspaces, keyed by draft key.

    Workspaces left idle longer than idle_timeout seconds are dropped, and
    once max_open is exceeded the least recently used one goes first. A
    workspace whose booking attempt is still running is never dropped.
    Either limit may be None to disable it.
    """

    def __init__(
        self,
        idle_timeout: Optional[float] = None,
        max_open: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_timeout = idle_timeout
        self.max_open = max_open
        self._clock = clock
        self._workspaces: "OrderedDict[UUID, DraftWorkspace]" = OrderedDict()
        self._touched: Dict[UUID, float] = {}

    def __len__(self) -> int:
        return len(self._workspaces)

    def __contains__(self, key: UUID) -> bool:
        return key in self._workspaces

    def _touch(self, key: UUID) -> None:
        self._workspaces.move_to_end(key)
        self._touched[key] = self._clock()

    def _evict(self, key: UUID, reason: str) -> None:
        workspace = self._workspaces.pop(key)
        self._touched.pop(key, None)
        workspace.close()
        workspaces_evicted_total.labels(reason=reason).inc()
        logger.info(
            f"Workspace evicted ({reason})",
            extra={"draft_key": str(key), "reason": reason},
        )

    def evict_stale(self) -> int:
        """Drop idle workspaces, then trim to max_open. Returns how many went."""
        evicted = 0
        if self.idle_timeout is not None:
            cutoff = self._clock() - self.idle_timeout
            for key in [k for k, at in self._touched.items() if at <= cutoff]:
                if not _busy(self._workspaces[key]):
                    self._evict(key, "idle")
                    evicted += 1

        if self.max_open is not None:
            # Oldest first; the most recent one always stays
            for key in list(self._workspaces)[:-1]:
                if len(self._workspaces) <= self.max_open:
                    break
                if not _busy(self._workspaces[key]):
                    self._evict(key, "capacity")
                    evicted += 1
        return evicted

    def add(self, workspace: DraftWorkspace) -> DraftWorkspace:
        """Register a workspace, replacing any earlier one for the same draft."""
        previous = self._workspaces.get(workspace.key)
        if previous is not None and previous is not workspace:
            previous.close()
        self._workspaces[workspace.key] = workspace
        self._touch(workspace.key)
        self.evict_stale()
        return workspace

    def get(self, key: UUID) -> Optional[DraftWorkspace]:
        self.evict_stale()
        workspace = self._workspaces.get(key)
        if workspace is not None:
            self._touch(key)
        return workspace

    def require(self, key: UUID, owner: Owner) -> DraftWorkspace:
        """
        Raises:
            DraftNotFoundError: no open workspace for key
            DraftAccessError: workspace belongs to another operator
        """
        workspace = self.get(key)
        if workspace is None:
            raise DraftNotFoundError(key)
        if workspace.owner != owner:
            raise DraftAccessError(f"Shipment draft {key} belongs to another user")
        return workspace

    def close(self, key: UUID) -> bool:
        workspace = self._workspaces.pop(key, None)
        self._touched.pop(key, None)
        if workspace is None:
            return False
        workspace.close()
        return True


def _busy(workspace: DraftWorkspace) -> bool:
    attempt = workspace.orchestrator.attempt
    return attempt is not None and attempt.in_flight
