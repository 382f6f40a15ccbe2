from offboard.models.audit import AuditEvent
from offboard.models.base import Base
from offboard.models.execution_log import ExecutionLogEntry
from offboard.models.job_run import JobRun
from offboard.models.scheduled_action import ScheduledAction, ScheduleStatus
from offboard.models.tenant import TenantCredential

__all__ = [
    "Base",
    "ScheduledAction",
    "ScheduleStatus",
    "ExecutionLogEntry",
    "AuditEvent",
    "TenantCredential",
    "JobRun",
]
