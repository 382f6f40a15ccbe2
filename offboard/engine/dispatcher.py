"""Poller/dispatcher: hands due records to the execution engine exactly once.

Each dispatch is: claim (scheduled -> in-progress), acquire a token, execute,
then persist the log with the terminal status and append the audit copy.
The claim is a conditional update, so overlapping ticks and "execute now"
requests cannot run the same record twice.
"""

import asyncio
import enum
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession

from offboard.config import PollerConfig, get_config
from offboard.core.datetime_utils import utc_now
from offboard.core.logging import get_logger
from offboard.core.tenant import TenantContext
from offboard.directory.tokens import TokenAcquisitionError, TokenProvider
from offboard.engine.executor import ExecutionEngine, compute_terminal_status
from offboard.models.scheduled_action import SYSTEM_EXECUTOR, ScheduledAction, ScheduleStatus
from offboard.schemas.scheduled_action import ExecutionLog
from offboard.services.audit import record_audit_event
from offboard.services.errors import ScheduledActionConflict
from offboard.services.execution_logs import append_execution_log
from offboard.services.scheduled_actions import (
    claim_for_execution,
    finish_execution,
    get_scheduled_action,
    list_due,
    recover_stale_executions,
)

logger = get_logger(__name__)


class DispatchOutcome(enum.Enum):
    FINISHED = "finished"
    LOST_RACE = "lost_race"
    DISCARDED = "discarded"
    ERRORED = "errored"


@dataclass
class TickSummary:
    due: int = 0
    finished: int = 0
    lost_race: int = 0
    discarded: int = 0
    errored: int = 0
    recovered: int = 0


class Dispatcher:
    """Finds due records and runs them, one session per step."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        token_provider: TokenProvider,
        engine: ExecutionEngine,
        config: PollerConfig | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.token_provider = token_provider
        self.engine = engine
        self.config = config or get_config().poller

    async def tick(self, now: datetime | None = None) -> TickSummary:
        """Run every due record once. Never raises for a single record's failure."""
        now = now or utc_now()

        async with self.session_factory() as db:
            recovered = await recover_stale_executions(
                db, now, timedelta(minutes=self.config.stale_after_minutes)
            )
            due = await list_due(db, now, self.config.batch_size)
            await db.commit()

        summary = TickSummary(due=len(due), recovered=len(recovered))
        if not due:
            logger.bind(recovered=summary.recovered).debug("poller_tick_idle")
            return summary

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def _run(record_id: str) -> DispatchOutcome:
            async with semaphore:
                return await self._dispatch(record_id, SYSTEM_EXECUTOR, "scheduled")

        outcomes = await asyncio.gather(*(_run(record.id) for record in due))
        summary.finished = outcomes.count(DispatchOutcome.FINISHED)
        summary.lost_race = outcomes.count(DispatchOutcome.LOST_RACE)
        summary.discarded = outcomes.count(DispatchOutcome.DISCARDED)
        summary.errored = outcomes.count(DispatchOutcome.ERRORED)

        logger.bind(**asdict(summary)).info("poller_tick_completed")
        return summary

    async def execute_now(self, record_id: str, ctx: TenantContext) -> ScheduledAction:
        """Run one scheduled record immediately and return it in its final state.

        Raises:
            ScheduledActionNotFound: Missing or foreign record
            ScheduledActionConflict: Record is not scheduled, or was claimed meanwhile
        """
        async with self.session_factory() as db:
            record = await get_scheduled_action(db, record_id, ctx.tenant_id)
        if record.status != ScheduleStatus.SCHEDULED:
            raise ScheduledActionConflict(
                f"Only scheduled records can be executed (status is {record.status.value})"
            )

        outcome = await self._dispatch(record_id, ctx.actor_id, "immediate")
        if outcome == DispatchOutcome.LOST_RACE:
            raise ScheduledActionConflict("Scheduled action is already being executed")

        async with self.session_factory() as db:
            record = await get_scheduled_action(db, record_id, ctx.tenant_id)
            await record_audit_event(
                db,
                tenant_id=ctx.tenant_id,
                session_id=ctx.session_id,
                actor_id=ctx.actor_id,
                action="schedule_executed",
                resource_id=record_id,
                details=f"executed immediately, status {record.status.value}",
            )
            await db.commit()
        return record

    async def _dispatch(self, record_id: str, executed_by: str, execution_type: str) -> DispatchOutcome:
        """Claim one record and run it. Never raises."""
        claimed_at = utc_now()
        try:
            async with self.session_factory() as db:
                claimed = await claim_for_execution(db, record_id, executed_by, now=claimed_at)
                await db.commit()
        except Exception as e:
            # Unclaimed records stay scheduled for the next tick
            logger.bind(scheduled_action_id=record_id, error=str(e)).exception("claim_failed")
            return DispatchOutcome.ERRORED
        if not claimed:
            logger.bind(scheduled_action_id=record_id).debug("dispatch_lost_race")
            return DispatchOutcome.LOST_RACE

        try:
            return await self._run_claimed(record_id, claimed_at, executed_by, execution_type)
        except Exception as e:
            logger.bind(scheduled_action_id=record_id, error=str(e)).exception("dispatch_failed")
            await self._mark_failed(record_id, claimed_at, f"Execution aborted: {e}", executed_by, execution_type)
            return DispatchOutcome.ERRORED

    async def _run_claimed(
        self, record_id: str, claimed_at: datetime, executed_by: str, execution_type: str
    ) -> DispatchOutcome:
        async with self.session_factory() as db:
            record = await db.get(ScheduledAction, record_id)
        if record is None:
            raise RuntimeError(f"Scheduled action {record_id} vanished after claim")

        try:
            access_token = await self.token_provider.get_access_token(record.tenant_id)
        except TokenAcquisitionError as e:
            logger.bind(scheduled_action_id=record_id, tenant_id=record.tenant_id, error=str(e)).error(
                "token_acquisition_failed"
            )
            log = ExecutionLog.all_failed(record.actions, f"Token acquisition failed: {e}", claimed_at, utc_now())
        else:
            log = await self.engine.execute(record, access_token)

        status = compute_terminal_status(log)
        async with self.session_factory() as db:
            finished = await finish_execution(db, record_id, log, status, claimed_at=claimed_at)
            if finished:
                await append_execution_log(db, record, log, status, execution_type, executed_by)
            await db.commit()

        if not finished:
            # Stale recovery already failed this run and logged it
            logger.bind(scheduled_action_id=record_id, tenant_id=record.tenant_id, status=status.value).warning(
                "dispatch_result_discarded"
            )
            return DispatchOutcome.DISCARDED

        logger.bind(
            scheduled_action_id=record_id,
            tenant_id=record.tenant_id,
            status=status.value,
            execution_type=execution_type,
        ).info("dispatch_finished")
        return DispatchOutcome.FINISHED

    async def _mark_failed(
        self, record_id: str, claimed_at: datetime, error: str, executed_by: str, execution_type: str
    ) -> None:
        """Fail this dispatcher's own claim after an unexpected error.

        A claim that was already recovered, or re-claimed by someone else, is
        left alone. If the store itself is down the record stays in-progress
        until stale recovery fails it.
        """
        try:
            async with self.session_factory() as db:
                record = await db.get(ScheduledAction, record_id)
                if record is None:
                    return
                log = ExecutionLog.all_failed(record.actions, error, claimed_at, utc_now())
                if await finish_execution(db, record_id, log, ScheduleStatus.FAILED, claimed_at=claimed_at):
                    await append_execution_log(db, record, log, ScheduleStatus.FAILED, execution_type, executed_by)
                await db.commit()
        except Exception as e:
            logger.bind(scheduled_action_id=record_id, error=str(e)).error("mark_failed_failed")


@lru_cache
def get_dispatcher() -> Dispatcher:
    """Process-wide dispatcher wired to the application database."""
    from offboard.core.database import AsyncSessionLocal
    from offboard.directory.adapter import DirectoryActionAdapter
    from offboard.directory.tokens import ClientCredentialsTokenProvider

    return Dispatcher(
        session_factory=AsyncSessionLocal,
        token_provider=ClientCredentialsTokenProvider(AsyncSessionLocal),
        engine=ExecutionEngine(DirectoryActionAdapter()),
    )
