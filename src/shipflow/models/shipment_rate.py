"""Shipment Rate model for ShipFlow

Stores the rate an operator selected for booking. One logical rate document is
written as two rows sharing the same rate_document_id: the canonical
"structured" record and a flattened "legacy" record read by older consumers.
"""

from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, Index, Uuid

from .base import Base, PortableJSONB, utcnow


class ShipmentRate(Base):
    """Selected rate record keyed by the owning draft's key."""

    __tablename__ = 'shipment_rate'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    rate_document_id = Column(
        Uuid(as_uuid=True),
        nullable=False,
        comment="Shared by the structured and legacy rows of one rate document"
    )
    draft_key = Column(Uuid(as_uuid=True), nullable=False)

    record_shape = Column(
        String(16),
        nullable=False,
        comment="structured | legacy"
    )
    rate_format = Column(
        String(16),
        nullable=False,
        comment="Provenance of the submitted payload: structured | legacy"
    )
    carrier_key = Column(String(64), nullable=True)
    status = Column(String(32), nullable=False, default='selected_for_booking')

    payload_json = Column(PortableJSONB, nullable=False, default=dict)
    raw_rate_json = Column(
        PortableJSONB,
        nullable=False,
        default=dict,
        comment="Rate exactly as submitted by the rates step"
    )

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )

    __table_args__ = (
        Index('ix_shipment_rate_draft', 'draft_key'),
        Index('uq_shipment_rate_document_shape', 'rate_document_id', 'record_shape', unique=True),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'rate_document_id': str(self.rate_document_id),
            'draft_key': str(self.draft_key),
            'record_shape': self.record_shape,
            'rate_format': self.rate_format,
            'carrier_key': self.carrier_key,
            'status': self.status,
            'payload': self.payload_json,
            'raw_rate': self.raw_rate_json,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
