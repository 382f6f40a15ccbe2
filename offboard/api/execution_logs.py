"""Execution history and audit trail endpoints."""

from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict

from offboard.dependencies import DBSession, Tenant
from offboard.schemas.scheduled_action import ExecutionLogResponse
from offboard.services.audit import list_audit_events
from offboard.services.execution_logs import list_execution_logs

router = APIRouter()


class AuditEventResponse(BaseModel):
    """Response model for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    actor_id: str
    action: str
    resource_id: str | None
    details: str | None
    created_at: datetime


@router.get("/execution-logs", response_model=list[ExecutionLogResponse])
async def get_execution_logs(
    db: DBSession,
    ctx: Tenant,
    scheduled_action_id: str | None = Query(default=None),
    target_user_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[ExecutionLogResponse]:
    """
    List execution runs for the tenant, newest first.

    Filter by scheduled action or by target user.
    """
    entries = await list_execution_logs(db, ctx.tenant_id, scheduled_action_id, target_user_id, limit)
    return [ExecutionLogResponse.model_validate(e) for e in entries]


@router.get("/audit-events", response_model=list[AuditEventResponse])
async def get_audit_events(
    db: DBSession,
    ctx: Tenant,
    resource_id: str | None = Query(default=None, description="Filter by scheduled action ID"),
    limit: int = Query(default=100, ge=1, le=500),
) -> list[AuditEventResponse]:
    """List who created, changed, retried or executed the tenant's records."""
    events = await list_audit_events(db, ctx.tenant_id, resource_id, limit)
    return [AuditEventResponse.model_validate(e) for e in events]
