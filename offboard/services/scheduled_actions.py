"""Scheduled-action store.

Every tenant-facing function filters on tenant_id and reports a foreign or
non-editable record as not found. ``list_due``, ``claim_for_execution``,
``finish_execution`` and ``recover_stale_executions`` cross tenants and are
only called by the dispatcher.

Status transitions are conditional UPDATEs keyed on the expected prior
status; a rowcount of 0 means another caller got there first.
"""

from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from offboard.config import get_config
from offboard.core.datetime_utils import localize, utc_now
from offboard.core.logging import get_logger
from offboard.core.tenant import TenantContext
from offboard.directory.actions import MUTUALLY_EXCLUSIVE_ACTIONS, ActionType
from offboard.models.scheduled_action import (
    RETRYABLE_STATUSES,
    SYSTEM_EXECUTOR,
    ScheduledAction,
    ScheduleStatus,
)
from offboard.schemas.scheduled_action import ExecutionLog, ScheduledActionCreate, ScheduledActionUpdate
from offboard.services.audit import record_audit_event
from offboard.services.errors import ScheduledActionConflict, ScheduledActionInvalid, ScheduledActionNotFound
from offboard.services.execution_logs import append_execution_log
from offboard.services.templates import get_template, template_actions

logger = get_logger(__name__)


def validate_actions(actions: list[ActionType]) -> list[ActionType]:
    """Reject empty, duplicated or conflicting action sets."""
    if not actions:
        raise ScheduledActionInvalid("At least one action is required")
    if len(set(actions)) != len(actions):
        raise ScheduledActionInvalid("Actions must be unique")
    for first, second in MUTUALLY_EXCLUSIVE_ACTIONS:
        if first in actions and second in actions:
            raise ScheduledActionInvalid(f"{first.value} and {second.value} cannot be combined")
    return actions


def validate_schedule(scheduled_at: datetime, timezone: str, now: datetime | None = None) -> datetime:
    """Normalize to naive UTC and reject instants in the past.

    A small grace window absorbs form latency for "run now" submissions.
    """
    when = localize(scheduled_at, timezone)
    now = now or utc_now()
    grace = timedelta(seconds=get_config().poller.schedule_grace_seconds)
    if when < now - grace:
        raise ScheduledActionInvalid("scheduled_at must not be in the past")
    return when


async def _audit(db: AsyncSession, ctx: TenantContext, action: str, record_id: str, details: str | None = None) -> None:
    await record_audit_event(
        db,
        tenant_id=ctx.tenant_id,
        session_id=ctx.session_id,
        actor_id=ctx.actor_id,
        action=action,
        resource_id=record_id,
        details=details,
    )


async def list_scheduled_actions(
    db: AsyncSession,
    tenant_id: str,
    status: ScheduleStatus | None = None,
) -> list[ScheduledAction]:
    """All records for one tenant, soonest first."""
    query = select(ScheduledAction).where(ScheduledAction.tenant_id == tenant_id)
    if status is not None:
        query = query.where(ScheduledAction.status == status)

    result = await db.execute(query.order_by(ScheduledAction.scheduled_at))
    return list(result.scalars().all())


async def get_scheduled_action(db: AsyncSession, record_id: str, tenant_id: str) -> ScheduledAction:
    result = await db.execute(
        select(ScheduledAction).where(
            ScheduledAction.id == record_id,
            ScheduledAction.tenant_id == tenant_id,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise ScheduledActionNotFound(record_id)
    return record


async def create_scheduled_action(
    db: AsyncSession,
    data: ScheduledActionCreate,
    ctx: TenantContext,
) -> ScheduledAction:
    """Persist a new record in state ``scheduled``.

    When only ``template_id`` is given the template's actions are used.

    Raises:
        ScheduledActionInvalid: Empty or conflicting actions, unknown template,
            or a scheduled time in the past
    """
    actions = data.actions
    if data.template_id:
        template = get_template(data.template_id)
        if not actions:
            actions = template_actions(template)

    validate_actions(actions or [])
    scheduled_at = validate_schedule(data.scheduled_at, data.timezone)

    record = ScheduledAction(
        tenant_id=ctx.tenant_id,
        session_id=ctx.session_id,
        created_by=ctx.actor_id,
        target_user_id=data.target_user.id,
        target_user=data.target_user.model_dump(),
        scheduled_at=scheduled_at,
        timezone=data.timezone,
        actions=[a.value for a in actions or []],
        options=data.options.model_dump(mode="json"),
        template_id=data.template_id,
        notes=data.notes,
        status=ScheduleStatus.SCHEDULED,
        execution_log=None,
        executed_at=None,
        executed_by=None,
    )
    db.add(record)
    await db.flush()

    await _audit(
        db,
        ctx,
        "schedule_created",
        record.id,
        f"{len(record.actions)} actions for {data.target_user.display_name} at {scheduled_at.isoformat()} UTC",
    )
    logger.bind(
        scheduled_action_id=record.id,
        tenant_id=ctx.tenant_id,
        target_user_id=record.target_user_id,
        scheduled_at=scheduled_at.isoformat(),
        actions=record.actions,
    ).info("scheduled_action_created")
    return record


async def update_scheduled_action(
    db: AsyncSession,
    record_id: str,
    patch: ScheduledActionUpdate,
    ctx: TenantContext,
) -> ScheduledAction:
    """Apply a patch while the record is still ``scheduled``."""
    record = await get_scheduled_action(db, record_id, ctx.tenant_id)
    if record.status != ScheduleStatus.SCHEDULED:
        raise ScheduledActionNotFound(record_id)

    changes = patch.model_dump(exclude_unset=True)
    values: dict = {}
    if patch.actions is not None:
        values["actions"] = [a.value for a in validate_actions(patch.actions)]
    if patch.timezone is not None:
        values["timezone"] = patch.timezone
    if patch.scheduled_at is not None:
        values["scheduled_at"] = validate_schedule(patch.scheduled_at, patch.timezone or record.timezone)
    if patch.options is not None:
        values["options"] = patch.options.model_dump(mode="json")
    if "notes" in changes:
        values["notes"] = patch.notes

    if values:
        values["updated_at"] = utc_now()
        result = await db.execute(
            update(ScheduledAction)
            .where(
                ScheduledAction.id == record_id,
                ScheduledAction.tenant_id == ctx.tenant_id,
                ScheduledAction.status == ScheduleStatus.SCHEDULED,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            # Dispatched between the read and the write
            raise ScheduledActionNotFound(record_id)

        await _audit(db, ctx, "schedule_updated", record_id, ", ".join(sorted(changes)))
        logger.bind(scheduled_action_id=record_id, fields=sorted(changes)).info("scheduled_action_updated")

    return record


async def delete_scheduled_action(db: AsyncSession, record_id: str, ctx: TenantContext) -> None:
    """Remove a record that has not been dispatched yet."""
    result = await db.execute(
        delete(ScheduledAction).where(
            ScheduledAction.id == record_id,
            ScheduledAction.tenant_id == ctx.tenant_id,
            ScheduledAction.status == ScheduleStatus.SCHEDULED,
        )
    )
    if result.rowcount != 1:
        raise ScheduledActionNotFound(record_id)

    await _audit(db, ctx, "schedule_deleted", record_id)
    logger.bind(scheduled_action_id=record_id, tenant_id=ctx.tenant_id).info("scheduled_action_deleted")


async def retry_scheduled_action(
    db: AsyncSession,
    record_id: str,
    ctx: TenantContext,
    scheduled_at: datetime | None = None,
    timezone: str | None = None,
) -> ScheduledAction:
    """Return a failed or partial record to ``scheduled`` with its log cleared.

    The next poller tick picks it up like any other due record.

    Raises:
        ScheduledActionNotFound: Missing or foreign record
        ScheduledActionConflict: Record is not failed or partial
        ScheduledActionInvalid: New scheduled time is in the past, or a timezone
            was given without a time to apply it to
    """
    if timezone and scheduled_at is None:
        raise ScheduledActionInvalid("timezone applies to scheduled_at, which was not given")

    record = await get_scheduled_action(db, record_id, ctx.tenant_id)
    if record.status not in RETRYABLE_STATUSES:
        raise ScheduledActionConflict(
            f"Only failed or partial runs can be retried (status is {record.status.value})"
        )

    when = validate_schedule(scheduled_at, timezone or record.timezone) if scheduled_at else utc_now()

    result = await db.execute(
        update(ScheduledAction)
        .where(
            ScheduledAction.id == record_id,
            ScheduledAction.tenant_id == ctx.tenant_id,
            ScheduledAction.status.in_(RETRYABLE_STATUSES),
        )
        .values(
            status=ScheduleStatus.SCHEDULED,
            scheduled_at=when,
            execution_log=None,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise ScheduledActionConflict("Scheduled action changed state, reload and try again")

    await _audit(db, ctx, "schedule_retried", record_id, f"rescheduled for {when.isoformat()} UTC")
    logger.bind(scheduled_action_id=record_id, scheduled_at=when.isoformat()).info("scheduled_action_retried")
    return record


async def list_due(db: AsyncSession, now: datetime, limit: int | None = None) -> list[ScheduledAction]:
    """Records whose time has come, across all tenants, oldest first."""
    query = (
        select(ScheduledAction)
        .where(
            ScheduledAction.status == ScheduleStatus.SCHEDULED,
            ScheduledAction.scheduled_at <= now,
        )
        .order_by(ScheduledAction.scheduled_at)
    )
    if limit:
        query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def claim_for_execution(
    db: AsyncSession,
    record_id: str,
    executed_by: str,
    expected: ScheduleStatus = ScheduleStatus.SCHEDULED,
    now: datetime | None = None,
) -> bool:
    """Atomically move a record from ``expected`` to ``in-progress``.

    Returns True only for the single caller whose update matched. ``now``
    becomes ``executed_at`` and identifies the claim to ``finish_execution``.
    """
    now = now or utc_now()
    result = await db.execute(
        update(ScheduledAction)
        .where(
            ScheduledAction.id == record_id,
            ScheduledAction.status == expected,
        )
        .values(
            status=ScheduleStatus.IN_PROGRESS,
            executed_at=now,
            executed_by=executed_by,
            execution_log=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def finish_execution(
    db: AsyncSession,
    record_id: str,
    log: ExecutionLog,
    status: ScheduleStatus,
    claimed_at: datetime | None = None,
) -> bool:
    """Store the run's log and terminal status on an in-progress record.

    With ``claimed_at`` only the claim made at that instant is finished, so a
    run that was recovered as stale and claimed again is left alone.
    """
    query = update(ScheduledAction).where(
        ScheduledAction.id == record_id,
        ScheduledAction.status == ScheduleStatus.IN_PROGRESS,
    )
    if claimed_at is not None:
        query = query.where(ScheduledAction.executed_at == claimed_at)

    result = await db.execute(
        query
        .values(
            status=status,
            execution_log=log.model_dump(mode="json"),
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def recover_stale_executions(
    db: AsyncSession,
    now: datetime,
    stale_after: timedelta,
) -> list[ScheduledAction]:
    """Fail runs left ``in-progress`` by a process that died mid-run.

    Every action is recorded as failed (the directory may be partially
    changed), which makes the record retryable.
    """
    cutoff = now - stale_after
    result = await db.execute(
        select(ScheduledAction).where(
            ScheduledAction.status == ScheduleStatus.IN_PROGRESS,
            or_(
                ScheduledAction.executed_at <= cutoff,
                ScheduledAction.executed_at.is_(None) & (ScheduledAction.updated_at <= cutoff),
            ),
        )
    )

    recovered = []
    for record in result.scalars().all():
        log = ExecutionLog.all_failed(
            record.actions,
            "Execution was interrupted before completion",
            start_time=record.executed_at or cutoff,
            end_time=now,
        )
        if not await finish_execution(db, record.id, log, ScheduleStatus.FAILED):
            continue

        executed_by = record.executed_by or SYSTEM_EXECUTOR
        await append_execution_log(
            db,
            record,
            log,
            ScheduleStatus.FAILED,
            execution_type="scheduled" if executed_by == SYSTEM_EXECUTOR else "immediate",
            executed_by=executed_by,
        )
        logger.bind(scheduled_action_id=record.id, tenant_id=record.tenant_id).warning("stale_execution_recovered")
        recovered.append(record)

    return recovered
