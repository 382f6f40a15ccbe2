"""Append-only audit copy of every execution run."""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from offboard.core.datetime_utils import utc_now
from offboard.models.base import Base


class ExecutionLogEntry(Base):
    """One row per run of a scheduled action, never updated after insert."""

    __tablename__ = "execution_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(String(255), index=True)
    session_id: Mapped[str] = mapped_column(String(255))
    scheduled_action_id: Mapped[str | None] = mapped_column(String(36), index=True)

    target_user_id: Mapped[str] = mapped_column(String(255), index=True)
    target_user_name: Mapped[str] = mapped_column(String(500))
    target_user_email: Mapped[str | None] = mapped_column(String(500))

    executed_by: Mapped[str] = mapped_column(String(255))
    execution_type: Mapped[str] = mapped_column(String(20))  # scheduled, immediate

    start_time: Mapped[datetime] = mapped_column(index=True)
    end_time: Mapped[datetime]
    status: Mapped[str] = mapped_column(String(20))

    total_actions: Mapped[int] = mapped_column(Integer)
    successful_actions: Mapped[int] = mapped_column(Integer)
    failed_actions: Mapped[int] = mapped_column(Integer)
    skipped_actions: Mapped[int] = mapped_column(Integer)
    action_results: Mapped[list[dict[str, Any]]] = mapped_column(JSON)

    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)

    def __repr__(self) -> str:
        return f"<ExecutionLogEntry {self.id} status={self.status}>"
