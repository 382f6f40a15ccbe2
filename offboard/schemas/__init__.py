from offboard.schemas.scheduled_action import (
    ActionOptions,
    ActionResult,
    CatalogResponse,
    ExecutionLog,
    ExecutionLogResponse,
    RetryRequest,
    ScheduledActionCreate,
    ScheduledActionResponse,
    ScheduledActionUpdate,
    TargetUser,
)

__all__ = [
    "ActionOptions",
    "ActionResult",
    "CatalogResponse",
    "ExecutionLog",
    "ExecutionLogResponse",
    "RetryRequest",
    "ScheduledActionCreate",
    "ScheduledActionResponse",
    "ScheduledActionUpdate",
    "TargetUser",
]
