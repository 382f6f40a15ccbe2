"""Scheduled offboarding records."""

import enum
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Enum, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from offboard.core.datetime_utils import utc_now
from offboard.models.base import Base


class ScheduleStatus(str, enum.Enum):
    """Lifecycle of a scheduled action record."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ScheduleStatus.COMPLETED, ScheduleStatus.FAILED, ScheduleStatus.PARTIAL})
RETRYABLE_STATUSES = frozenset({ScheduleStatus.FAILED, ScheduleStatus.PARTIAL})

# executed_by value for runs started by the poller
SYSTEM_EXECUTOR = "system-scheduler"


class ScheduledAction(Base):
    """A set of lifecycle actions queued against one directory user."""

    __tablename__ = "scheduled_actions"
    __table_args__ = (
        Index("ix_scheduled_actions_status_scheduled_at", "status", "scheduled_at"),
        Index("ix_scheduled_actions_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Ownership (immutable)
    tenant_id: Mapped[str] = mapped_column(String(255), index=True)
    session_id: Mapped[str] = mapped_column(String(255))
    created_by: Mapped[str] = mapped_column(String(255))

    # Target snapshot, kept even if the directory user is later deleted
    target_user_id: Mapped[str] = mapped_column(String(255), index=True)
    target_user: Mapped[dict[str, Any]] = mapped_column(JSON)

    # Schedule (naive UTC; timezone is the zone the operator entered it in)
    scheduled_at: Mapped[datetime]
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")

    actions: Mapped[list[str]] = mapped_column(JSON)
    options: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    template_id: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    status: Mapped[ScheduleStatus] = mapped_column(
        Enum(
            ScheduleStatus,
            values_callable=lambda e: [x.value for x in e],
            name="schedulestatus",
            native_enum=False,
            length=20,
        ),
        default=ScheduleStatus.SCHEDULED,
    )

    # Execution tracking
    execution_log: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    executed_at: Mapped[datetime | None]
    executed_by: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return f"<ScheduledAction {self.id} tenant={self.tenant_id} status={self.status.value}>"
