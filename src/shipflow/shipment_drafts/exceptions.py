"""Exceptions raised by the shipment draft workflow.

The HTTP layer maps each family to a status code; domain services raise these
and never HTTPException.
"""

from typing import Dict, List, Optional


class ShipmentDraftError(Exception):
    """Base class for all shipment draft errors."""
    pass


# Validation ---------------------------------------------------------------

class SectionValidationError(ShipmentDraftError):
    """Raised when a section payload cannot be parsed into its typed schema."""

    def __init__(self, section: str, errors: List[Dict]):
        self.section = section
        self.errors = errors
        super().__init__(f"Invalid payload for section '{section}': {len(errors)} error(s)")


class NavigationError(ShipmentDraftError):
    """Raised for a step move the navigator cannot perform."""
    pass


class BookingPreconditionError(ShipmentDraftError):
    """Raised when a draft is not eligible for booking."""

    def __init__(self, message: str, missing: Optional[Dict[str, List[str]]] = None):
        self.missing = missing or {}
        super().__init__(message)


# Persistence --------------------------------------------------------------

class DraftStoreError(ShipmentDraftError):
    """Raised when the draft store cannot complete an operation."""
    pass


class DraftNotFoundError(DraftStoreError):
    """Raised when no draft exists for a key."""

    def __init__(self, key):
        self.key = key
        super().__init__(f"Shipment draft {key} not found")


class RatePersistenceError(ShipmentDraftError):
    """Raised when a selected rate cannot be persisted for booking."""
    pass


# Access and state ---------------------------------------------------------

class DraftAccessError(ShipmentDraftError):
    """Raised when an operator tries to open a draft they do not own."""
    pass


class DraftNotEditableError(ShipmentDraftError):
    """Raised when a draft's status or creation method forbids editing."""
    pass


class BookingAlreadyCompletedError(ShipmentDraftError):
    """Raised when booking is requested for a workspace that already booked."""
    pass
