"""Shipment draft status state machine.

State Flow:
    draft -> processing -> booked
                        -> error -> processing (operator retry)

There is no transition back to draft: once a booking has been committed the
external side effect may already exist.

Terminal States: booked
"""

from enum import Enum
from typing import List

from .exceptions import ShipmentDraftError


class DraftStatus(str, Enum):
    """Shipment draft status enumeration."""
    DRAFT = "draft"
    PROCESSING = "processing"
    BOOKED = "booked"
    ERROR = "error"


ALLOWED_TRANSITIONS = {
    DraftStatus.DRAFT: [DraftStatus.PROCESSING],
    DraftStatus.PROCESSING: [
        DraftStatus.BOOKED,
        DraftStatus.ERROR
    ],
    DraftStatus.ERROR: [DraftStatus.PROCESSING],
    DraftStatus.BOOKED: [],  # Terminal state
}

EDITABLE_STATUSES = frozenset({DraftStatus.DRAFT})


class StateTransitionError(ShipmentDraftError):
    """Raised when an invalid state transition is attempted."""
    pass


def validate_transition(
    current_status: DraftStatus,
    new_status: DraftStatus
) -> None:
    """Validate that a state transition is allowed.

    Args:
        current_status: Current draft status
        new_status: Target status to transition to

    Raises:
        StateTransitionError: If transition is not allowed
    """
    allowed = ALLOWED_TRANSITIONS.get(current_status, [])
    if new_status not in allowed:
        raise StateTransitionError(
            f"Invalid transition: {current_status.value} -> {new_status.value}. "
            f"Allowed transitions from {current_status.value}: "
            f"{[s.value for s in allowed]}"
        )


def can_transition(
    current_status: DraftStatus,
    new_status: DraftStatus
) -> bool:
    """Check if a state transition is allowed without raising exception."""
    return new_status in ALLOWED_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(status: DraftStatus) -> List[DraftStatus]:
    """Get list of allowed transitions from a given status."""
    return ALLOWED_TRANSITIONS.get(status, [])


def is_editable(status: DraftStatus) -> bool:
    """Only drafts that never left status=draft may be edited in the form."""
    return DraftStatus(status) in EDITABLE_STATUSES
