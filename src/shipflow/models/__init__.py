"""SQLAlchemy Models for ShipFlow"""

from .base import Base, PortableJSONB, utcnow
from .audit_log import AuditLog
from .shipment_draft import ShipmentDraft, SECTION_COLUMNS
from .shipment_rate import ShipmentRate

__all__ = [
    "Base",
    "PortableJSONB",
    "utcnow",
    "AuditLog",
    "ShipmentDraft",
    "SECTION_COLUMNS",
    "ShipmentRate",
]
