"""Poller monitoring endpoints (operational, not tenant-scoped)."""

from datetime import datetime, timedelta

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict, computed_field
from sqlalchemy import func, select

from offboard.config import get_config
from offboard.core.datetime_utils import utc_now
from offboard.core.scheduler import POLLER_JOB_ID, get_poller_schedule
from offboard.dependencies import DBSession
from offboard.models.job_run import JobRun

router = APIRouter()


class JobRunResponse(BaseModel):
    """One poller tick."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    scheduled_at: datetime
    started_at: datetime
    finished_at: datetime
    outcome: str
    error: str | None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class PollerStatusResponse(BaseModel):
    running: bool
    interval_seconds: int
    trigger: str | None = None
    next_fire_time: datetime | None = None
    last_fire_time: datetime | None = None
    last_run: JobRunResponse | None = None
    failed_runs_24h: int = 0


@router.get("/poller", response_model=PollerStatusResponse)
async def get_poller_status(db: DBSession) -> PollerStatusResponse:
    """
    Whether the poller is scheduled in this process, and how its ticks went.

    ``running`` is false in processes started with scheduler_enabled=false;
    tick history is still shown since it lives in the database.
    """
    schedule = await get_poller_schedule()

    result = await db.execute(
        select(JobRun).where(JobRun.job_id == POLLER_JOB_ID).order_by(JobRun.started_at.desc()).limit(1)
    )
    last_run = result.scalar_one_or_none()

    failed = await db.scalar(
        select(func.count(JobRun.id)).where(
            JobRun.job_id == POLLER_JOB_ID,
            JobRun.outcome == "error",
            JobRun.started_at >= utc_now() - timedelta(hours=24),
        )
    )

    return PollerStatusResponse(
        running=schedule is not None,
        interval_seconds=get_config().poller.interval_seconds,
        last_run=JobRunResponse.model_validate(last_run) if last_run else None,
        failed_runs_24h=failed or 0,
        **(schedule or {}),
    )


@router.get("/poller/runs", response_model=list[JobRunResponse])
async def list_poller_runs(
    db: DBSession,
    outcome: str | None = Query(default=None, description="success, error or missed_start_deadline"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """Recent poller ticks, newest first."""
    query = select(JobRun).where(JobRun.job_id == POLLER_JOB_ID)
    if outcome:
        query = query.where(JobRun.outcome == outcome)

    result = await db.execute(query.order_by(JobRun.started_at.desc()).offset(offset).limit(limit))
    return [JobRunResponse.model_validate(run) for run in result.scalars().all()]
