"""Scheduled action endpoints, scoped to the caller's tenant."""

from fastapi import APIRouter, Query, Response, status

from offboard.dependencies import DBSession, DispatcherDep, Tenant
from offboard.models.scheduled_action import ScheduleStatus
from offboard.schemas.scheduled_action import (
    CatalogResponse,
    RetryRequest,
    ScheduledActionCreate,
    ScheduledActionResponse,
    ScheduledActionUpdate,
)
from offboard.services import scheduled_actions as store
from offboard.services.templates import build_catalog

router = APIRouter()


@router.get("/scheduled-actions", response_model=list[ScheduledActionResponse])
async def list_scheduled_actions(
    db: DBSession,
    ctx: Tenant,
    status_filter: ScheduleStatus | None = Query(default=None, alias="status"),
) -> list[ScheduledActionResponse]:
    """List the tenant's scheduled actions, soonest first."""
    records = await store.list_scheduled_actions(db, ctx.tenant_id, status_filter)
    return [ScheduledActionResponse.model_validate(r) for r in records]


@router.get("/scheduled-actions/catalog", response_model=CatalogResponse)
async def get_catalog(ctx: Tenant) -> CatalogResponse:
    """
    Available actions in execution order, and the action templates.

    Irreversible actions are flagged so the caller can ask for confirmation.
    """
    return build_catalog()


@router.get("/scheduled-actions/{record_id}", response_model=ScheduledActionResponse)
async def get_scheduled_action(record_id: str, db: DBSession, ctx: Tenant) -> ScheduledActionResponse:
    record = await store.get_scheduled_action(db, record_id, ctx.tenant_id)
    return ScheduledActionResponse.model_validate(record)


@router.post(
    "/scheduled-actions",
    response_model=ScheduledActionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_scheduled_action(
    request: ScheduledActionCreate,
    db: DBSession,
    ctx: Tenant,
) -> ScheduledActionResponse:
    """
    Schedule actions against a directory user.

    A naive scheduled_at is read in the given timezone. The record starts in
    status "scheduled" and is picked up by the poller once it is due.
    """
    record = await store.create_scheduled_action(db, request, ctx)
    return ScheduledActionResponse.model_validate(record)


@router.patch("/scheduled-actions/{record_id}", response_model=ScheduledActionResponse)
async def update_scheduled_action(
    record_id: str,
    request: ScheduledActionUpdate,
    db: DBSession,
    ctx: Tenant,
) -> ScheduledActionResponse:
    """Edit a record that has not been dispatched yet."""
    record = await store.update_scheduled_action(db, record_id, request, ctx)
    return ScheduledActionResponse.model_validate(record)


@router.delete("/scheduled-actions/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scheduled_action(record_id: str, db: DBSession, ctx: Tenant) -> Response:
    """Cancel a record that has not been dispatched yet."""
    await store.delete_scheduled_action(db, record_id, ctx)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/scheduled-actions/{record_id}/execute", response_model=ScheduledActionResponse)
async def execute_scheduled_action(
    record_id: str,
    ctx: Tenant,
    dispatcher: DispatcherDep,
) -> ScheduledActionResponse:
    """
    Run a scheduled record now instead of waiting for its time.

    Uses the same dispatch path as the poller and returns the record in its
    final state, including the execution log.
    """
    record = await dispatcher.execute_now(record_id, ctx)
    return ScheduledActionResponse.model_validate(record)


@router.post("/scheduled-actions/{record_id}/retry", response_model=ScheduledActionResponse)
async def retry_scheduled_action(
    record_id: str,
    db: DBSession,
    ctx: Tenant,
    request: RetryRequest | None = None,
) -> ScheduledActionResponse:
    """
    Reschedule a failed or partial record.

    Clears the execution log; scheduled_at defaults to now so the next poller
    tick picks it up.
    """
    request = request or RetryRequest()
    record = await store.retry_scheduled_action(db, record_id, ctx, request.scheduled_at, request.timezone)
    return ScheduledActionResponse.model_validate(record)
