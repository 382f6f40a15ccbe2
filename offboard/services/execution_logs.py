"""Append-only store of execution runs."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from offboard.core.logging import get_logger
from offboard.models.execution_log import ExecutionLogEntry
from offboard.models.scheduled_action import ScheduledAction, ScheduleStatus
from offboard.schemas.scheduled_action import ExecutionLog

logger = get_logger(__name__)


async def append_execution_log(
    db: AsyncSession,
    record: ScheduledAction,
    log: ExecutionLog,
    status: ScheduleStatus,
    execution_type: str,
    executed_by: str,
) -> ExecutionLogEntry:
    """Store the audit copy of one finished run."""
    target = record.target_user or {}
    entry = ExecutionLogEntry(
        tenant_id=record.tenant_id,
        session_id=record.session_id,
        scheduled_action_id=record.id,
        target_user_id=record.target_user_id,
        target_user_name=target.get("display_name") or record.target_user_id,
        target_user_email=target.get("mail") or target.get("user_principal_name"),
        executed_by=executed_by,
        execution_type=execution_type,
        start_time=log.start_time,
        end_time=log.end_time,
        status=status.value,
        total_actions=log.total_actions,
        successful_actions=log.successful_actions,
        failed_actions=log.failed_actions,
        skipped_actions=log.skipped_actions,
        action_results=[r.model_dump(mode="json") for r in log.action_results],
        error=log.error,
    )
    db.add(entry)
    await db.flush()

    logger.bind(
        scheduled_action_id=record.id,
        tenant_id=record.tenant_id,
        status=status.value,
        execution_type=execution_type,
    ).info("execution_log_appended")
    return entry


async def list_execution_logs(
    db: AsyncSession,
    tenant_id: str,
    scheduled_action_id: str | None = None,
    target_user_id: str | None = None,
    limit: int = 50,
) -> list[ExecutionLogEntry]:
    """Runs for one tenant, newest first."""
    query = select(ExecutionLogEntry).where(ExecutionLogEntry.tenant_id == tenant_id)
    if scheduled_action_id:
        query = query.where(ExecutionLogEntry.scheduled_action_id == scheduled_action_id)
    if target_user_id:
        query = query.where(ExecutionLogEntry.target_user_id == target_user_id)

    result = await db.execute(query.order_by(ExecutionLogEntry.start_time.desc()).limit(limit))
    return list(result.scalars().all())
