"""Shipment Draft model for ShipFlow

A shipment draft is the unit of work an operator builds across the step form.
Each form section lives in its own JSON column so that persisting one section
never rewrites another. Drafts move through a small forward-only state
machine: draft -> processing -> booked | error.
"""

from typing import Any, Dict
from uuid import uuid4

from sqlalchemy import Column, String, Text, DateTime, Index, Uuid

from .base import Base, PortableJSONB, utcnow


# Section name -> column attribute. The only columns a section patch may touch.
SECTION_COLUMNS = {
    "info": "info_json",
    "origin": "origin_json",
    "destination": "destination_json",
    "packages": "packages_json",
    "rate_ref": "rate_ref_json",
}


class ShipmentDraft(Base):
    """Shipment draft header plus its form sections.

    Lifecycle:
    1. Created on first entry to the shipment form (status=draft)
    2. Sections patched one at a time as the operator advances
    3. Operator commits to book (status=processing)
    4. Booking orchestration completes (status=booked)
    5. Operator marks an in-flight booking unrecoverable (status=error)

    Drafts are never deleted once they leave status=draft.
    """

    __tablename__ = 'shipment_draft'

    # Opaque persistence key, immutable after creation
    key = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Human-readable shipment identifier (e.g. ACME-CUST01-7KQ2MX)
    human_id = Column(
        String(64),
        nullable=True,
        comment="Regenerated once the destination customer is known, then fixed"
    )
    human_id_customer_key = Column(
        String(128),
        nullable=True,
        comment="Customer the human_id was generated for (NULL = generated without one)"
    )

    # Owner, fixed at creation
    company_key = Column(String(128), nullable=False)
    user_key = Column(String(128), nullable=False)

    creation_method = Column(
        String(16),
        nullable=False,
        default='advanced',
        comment="advanced (step form) | quick (quick-ship form)"
    )

    # State machine
    status = Column(
        String(16),
        nullable=False,
        default='draft',
        comment="State machine: draft -> processing -> booked | error"
    )

    # Form sections
    info_json = Column(PortableJSONB, nullable=False, default=dict)
    origin_json = Column(PortableJSONB, nullable=False, default=dict)
    destination_json = Column(PortableJSONB, nullable=False, default=dict)
    packages_json = Column(PortableJSONB, nullable=False, default=list)
    rate_ref_json = Column(PortableJSONB, nullable=False, default=dict)

    # Booking outcome
    confirmation_number = Column(
        Text,
        nullable=True,
        comment="External confirmation id assigned by the carrier reservation"
    )
    carrier_key = Column(String(64), nullable=True)
    last_booking_error = Column(Text, nullable=True)
    booked_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Last-modified marker, bumped by every section patch"
    )

    __table_args__ = (
        Index('ix_shipment_draft_company_status', 'company_key', 'status'),
        Index('ix_shipment_draft_company_human_id', 'company_key', 'human_id'),
        Index('ix_shipment_draft_owner_updated', 'company_key', 'user_key', 'updated_at'),
    )

    def sections(self) -> Dict[str, Any]:
        """Return the persisted sections keyed by section name."""
        return {
            name: getattr(self, column)
            for name, column in SECTION_COLUMNS.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary for API responses.

        Returns:
            Dict with all fields, converting UUIDs/datetimes to strings
        """
        return {
            'key': str(self.key),
            'human_id': self.human_id,
            'human_id_customer_key': self.human_id_customer_key,
            'company_key': self.company_key,
            'user_key': self.user_key,
            'creation_method': self.creation_method,
            'status': self.status,
            'sections': self.sections(),
            'confirmation_number': self.confirmation_number,
            'carrier_key': self.carrier_key,
            'last_booking_error': self.last_booking_error,
            'booked_at': self.booked_at.isoformat() if self.booked_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
