"""
In-process poller schedule (APScheduler 4).

One interval schedule runs ``Dispatcher.tick`` every poller.interval_seconds.
Each released job is written to job_runs so ticks can be monitored over HTTP.
Due records live in the database, so the schedule itself is kept in memory
and rebuilt on startup.
"""

from datetime import datetime
from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.interval import IntervalTrigger

from offboard.config import get_config, get_settings
from offboard.core.database import AsyncSessionLocal
from offboard.core.datetime_utils import to_naive_utc, utc_now
from offboard.core.logging import get_logger
from offboard.models.job_run import JobRun

logger = get_logger(__name__)

POLLER_JOB_ID = "offboarding_poller"

scheduler: AsyncScheduler | None = None


async def poller_job() -> None:
    """Dispatch every due scheduled action across all tenants."""
    from offboard.engine.dispatcher import get_dispatcher

    try:
        await get_dispatcher().tick()
    except Exception as e:
        logger.bind(error=str(e)).error("poller_tick_failed")
        raise  # APScheduler marks the job as errored


def job_run_from_event(event: JobReleased) -> JobRun:
    """Build the job_runs row for a released poller job."""
    now = utc_now()
    scheduled_at = getattr(event, "scheduled_fire_time", None)
    started_at = getattr(event, "started_at", None)

    error = None
    if event.outcome == JobOutcome.error:
        exc = getattr(event, "exception_message", None) or getattr(event, "exception", None)
        error = str(exc) if exc else None

    return JobRun(
        job_id=event.schedule_id or POLLER_JOB_ID,
        scheduled_at=to_naive_utc(scheduled_at) if scheduled_at else now,
        started_at=to_naive_utc(started_at) if started_at else now,
        finished_at=now,
        outcome=event.outcome.name,
        error=error,
    )


async def _on_job_released(event: Any) -> None:
    if not isinstance(event, JobReleased):
        return
    try:
        async with AsyncSessionLocal() as db:
            db.add(job_run_from_event(event))
            await db.commit()
    except Exception as e:
        # Best-effort; the tick itself already finished
        logger.bind(error=str(e)).error("job_run_record_failed")


async def start_scheduler() -> AsyncScheduler | None:
    """Start the scheduler and register the poller, unless disabled."""
    global scheduler

    if not get_settings().scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    interval = get_config().poller.interval_seconds

    scheduler = AsyncScheduler(data_store=MemoryDataStore())
    # APScheduler 4 needs the context entered before schedules can be added
    await scheduler.__aenter__()
    scheduler.subscribe(_on_job_released, {JobReleased})

    await scheduler.add_schedule(
        poller_job,
        IntervalTrigger(seconds=interval),
        id=POLLER_JOB_ID,
        conflict_policy=ConflictPolicy.replace,
    )
    await scheduler.start_in_background()

    logger.bind(schedule_id=POLLER_JOB_ID, interval_seconds=interval).info("scheduler_started")
    return scheduler


async def stop_scheduler() -> None:
    global scheduler
    if scheduler is None:
        return
    await scheduler.__aexit__(None, None, None)
    scheduler = None
    logger.info("scheduler_stopped")


async def get_poller_schedule() -> dict[str, Any] | None:
    """Next and last fire times of the poller, or None when not scheduled here."""
    if scheduler is None:
        return None

    for schedule in await scheduler.get_schedules():
        if schedule.id == POLLER_JOB_ID:
            return {
                "trigger": str(schedule.trigger),
                "next_fire_time": _as_naive(schedule.next_fire_time),
                "last_fire_time": _as_naive(schedule.last_fire_time),
            }
    return None


def _as_naive(value: datetime | None) -> datetime | None:
    return to_naive_utc(value) if value else None
