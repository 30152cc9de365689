"""Append-only audit trail for shipment drafts."""

from .service import log_audit_event

__all__ = ["log_audit_event"]
