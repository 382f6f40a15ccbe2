"""Audit trail for changes to scheduled actions."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from offboard.core.logging import get_logger
from offboard.models.audit import AuditEvent

logger = get_logger(__name__)


async def record_audit_event(
    db: AsyncSession,
    *,
    tenant_id: str,
    session_id: str,
    actor_id: str,
    action: str,
    resource_id: str | None = None,
    details: str | None = None,
) -> AuditEvent:
    event = AuditEvent(
        tenant_id=tenant_id,
        session_id=session_id,
        actor_id=actor_id,
        action=action,
        resource_id=resource_id,
        details=details,
    )
    db.add(event)
    await db.flush()

    logger.bind(tenant_id=tenant_id, actor_id=actor_id, action=action, resource_id=resource_id).info(
        "audit_event_recorded"
    )
    return event


async def list_audit_events(
    db: AsyncSession,
    tenant_id: str,
    resource_id: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    """Newest first, scoped to one tenant."""
    query = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)
    if resource_id:
        query = query.where(AuditEvent.resource_id == resource_id)

    result = await db.execute(query.order_by(AuditEvent.created_at.desc()).limit(limit))
    return list(result.scalars().all())
