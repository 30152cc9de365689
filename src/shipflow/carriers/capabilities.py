"""Carrier document capabilities.

Which follow-up document a carrier needs after a reservation comes from
reference data (settings), not from matching carrier names in the booking
code.
"""

from enum import Enum
from typing import Dict, Iterable, Optional


class DocumentCapability(str, Enum):
    """Follow-up document a carrier produces after booking."""
    NONE = "none"
    LABEL = "label"
    BOL = "bol"


def normalize_carrier_key(carrier: Optional[str]) -> str:
    return (carrier or "").strip().upper()


class CarrierCapabilityRegistry:
    """Lookup table carrier key -> DocumentCapability.

    Unknown carriers have no follow-up document.
    """

    def __init__(self, capabilities: Optional[Dict[str, DocumentCapability]] = None):
        self._capabilities: Dict[str, DocumentCapability] = {}
        for carrier, capability in (capabilities or {}).items():
            self.register(carrier, capability)

    @classmethod
    def from_lists(
        cls,
        label_carriers: Iterable[str] = (),
        bol_carriers: Iterable[str] = (),
    ) -> "CarrierCapabilityRegistry":
        registry = cls()
        for carrier in label_carriers:
            registry.register(carrier, DocumentCapability.LABEL)
        for carrier in bol_carriers:
            registry.register(carrier, DocumentCapability.BOL)
        return registry

    @classmethod
    def from_settings(cls, settings) -> "CarrierCapabilityRegistry":
        return cls.from_lists(settings.label_carriers, settings.bol_carriers)

    def register(self, carrier: str, capability: DocumentCapability) -> None:
        key = normalize_carrier_key(carrier)
        if not key:
            raise ValueError("Carrier key must not be empty")
        self._capabilities[key] = DocumentCapability(capability)

    def resolve(self, carrier: Optional[str]) -> DocumentCapability:
        return self._capabilities.get(normalize_carrier_key(carrier), DocumentCapability.NONE)

    def carriers(self, capability: DocumentCapability) -> list:
        return sorted(k for k, v in self._capabilities.items() if v == capability)
