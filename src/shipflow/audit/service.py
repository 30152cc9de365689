"""Audit logging service for shipment events.

This service provides a centralized interface for creating append-only audit
log entries. Draft status changes, identifier regeneration and booking
outcomes are logged through this service.

Audit Events:
- DRAFT_CREATED
- DRAFT_STATUS_CHANGED
- DRAFT_HUMAN_ID_CHANGED
- DRAFT_BOOKING_RECORDED
- DRAFT_DOCUMENT_GENERATED
- RATE_SELECTED_FOR_BOOKING
"""

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit_log import AuditLog


async def log_audit_event(
    session: AsyncSession,
    company_key: str,
    action: str,
    actor_key: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Create an audit log entry in the caller's transaction.

    All parameters are stored as-is. This function does not validate action
    names or entity types.

    Args:
        session: Database session (the caller owns commit/rollback)
        company_key: Company that owns the affected entity
        action: Event action (e.g., "DRAFT_STATUS_CHANGED")
        actor_key: User who performed the action (None for system events)
        entity_type: Type of entity affected (e.g., "shipment_draft")
        entity_id: ID of affected entity
        metadata: Additional context as JSON

    Returns:
        AuditLog: The created audit log entry

    Example:
        await log_audit_event(
            session,
            company_key=draft.company_key,
            action="DRAFT_STATUS_CHANGED",
            entity_type="shipment_draft",
            entity_id=str(draft.key),
            metadata={"from": "draft", "to": "processing"},
        )
    """
    audit_entry = AuditLog(
        company_key=company_key,
        actor_key=actor_key,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata_json=metadata,
    )

    session.add(audit_entry)
    await session.flush()

    return audit_entry
