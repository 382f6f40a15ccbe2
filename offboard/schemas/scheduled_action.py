from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator, model_validator

from offboard.directory.actions import ActionStatus, ActionType, canonical_sort
from offboard.models.scheduled_action import ScheduleStatus


def _validate_timezone(v: str | None) -> str | None:
    if v is None:
        return v
    from offboard.core.datetime_utils import is_valid_timezone

    if not is_valid_timezone(v):
        raise ValueError(f"Unknown timezone: {v}")
    return v


def _validate_unique_actions(v: list[ActionType] | None) -> list[ActionType] | None:
    if v is None:
        return v
    if len(set(v)) != len(v):
        raise ValueError("Actions must be unique")
    return v


class TargetUser(BaseModel):
    """Snapshot of the directory user being offboarded."""

    id: str = Field(min_length=1, max_length=255)
    display_name: str = Field(min_length=1, max_length=500)
    mail: str | None = Field(default=None, max_length=500)
    user_principal_name: str | None = Field(default=None, max_length=500)
    department: str | None = Field(default=None, max_length=255)
    job_title: str | None = Field(default=None, max_length=255)


class ActionOptions(BaseModel):
    """Per-action parameters. Recipients default to the user's manager."""

    forwarding_address: EmailStr | None = None
    auto_reply_message: str | None = Field(default=None, max_length=4000)
    auto_reply_external: bool = True
    new_file_owner: EmailStr | None = None
    backup_drive_id: str | None = Field(default=None, max_length=255)
    backup_folder_id: str | None = Field(default=None, max_length=255)


class ScheduledActionCreate(BaseModel):
    """Request body for scheduling actions against a user.

    ``scheduled_at`` may be timezone-aware; a naive value is read as wall-clock
    time in ``timezone``. ``actions`` may be omitted when ``template_id`` names
    a template, in which case the template's actions are used.
    """

    target_user: TargetUser
    scheduled_at: datetime
    timezone: str = Field(default="UTC", max_length=64)
    actions: list[ActionType] | None = Field(default=None, min_length=1)
    options: ActionOptions = Field(default_factory=ActionOptions)
    template_id: str | None = Field(default=None, max_length=100)
    notes: str | None = Field(default=None, max_length=4000)

    _check_timezone = field_validator("timezone")(_validate_timezone)
    _check_actions = field_validator("actions")(_validate_unique_actions)

    @model_validator(mode="after")
    def require_actions_or_template(self) -> "ScheduledActionCreate":
        if not self.actions and not self.template_id:
            raise ValueError("Provide actions or a template_id")
        return self


class ScheduledActionUpdate(BaseModel):
    """Patch for a record that is still scheduled. Omitted fields are unchanged."""

    scheduled_at: datetime | None = None
    timezone: str | None = Field(default=None, max_length=64)
    actions: list[ActionType] | None = Field(default=None, min_length=1)
    options: ActionOptions | None = None
    notes: str | None = Field(default=None, max_length=4000)

    _check_timezone = field_validator("timezone")(_validate_timezone)
    _check_actions = field_validator("actions")(_validate_unique_actions)


class RetryRequest(BaseModel):
    """Optional new schedule for a retried record (defaults to now)."""

    scheduled_at: datetime | None = None
    timezone: str | None = Field(default=None, max_length=64)

    _check_timezone = field_validator("timezone")(_validate_timezone)


class ActionResult(BaseModel):
    """Outcome of one action within a run."""

    action: ActionType
    status: ActionStatus
    detail: str | None = None
    error: str | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)


class ExecutionLog(BaseModel):
    """Structured result of one run; counts always match action_results."""

    start_time: datetime
    end_time: datetime
    action_results: list[ActionResult]
    total_actions: int
    successful_actions: int
    failed_actions: int
    skipped_actions: int
    error: str | None = None

    @classmethod
    def from_results(
        cls,
        start_time: datetime,
        end_time: datetime,
        results: list[ActionResult],
        error: str | None = None,
    ) -> "ExecutionLog":
        return cls(
            start_time=start_time,
            end_time=end_time,
            action_results=results,
            total_actions=len(results),
            successful_actions=sum(1 for r in results if r.status == ActionStatus.SUCCESS),
            failed_actions=sum(1 for r in results if r.status == ActionStatus.FAILED),
            skipped_actions=sum(1 for r in results if r.status == ActionStatus.SKIPPED),
            error=error,
        )

    @classmethod
    def all_failed(
        cls,
        actions: list[str],
        error: str,
        start_time: datetime,
        end_time: datetime,
    ) -> "ExecutionLog":
        """A run in which no action could be attempted (no token, crash)."""
        results = [
            ActionResult(action=action, status=ActionStatus.FAILED, error=error)
            for action in canonical_sort([ActionType(a) for a in actions])
        ]
        return cls.from_results(start_time, end_time, results, error=error)


class ScheduledActionResponse(BaseModel):
    """A scheduled action record as seen by the owning tenant."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    session_id: str
    created_by: str
    target_user: TargetUser
    scheduled_at: datetime
    timezone: str
    actions: list[ActionType]
    options: ActionOptions
    template_id: str | None
    status: ScheduleStatus
    notes: str | None
    execution_log: ExecutionLog | None
    executed_at: datetime | None
    executed_by: str | None
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def irreversible_actions(self) -> list[ActionType]:
        return [a for a in self.actions if a.is_irreversible]


class ExecutionLogResponse(BaseModel):
    """Audit copy of one run."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    scheduled_action_id: str | None
    target_user_id: str
    target_user_name: str
    target_user_email: str | None
    executed_by: str
    execution_type: str
    start_time: datetime
    end_time: datetime
    status: str
    total_actions: int
    successful_actions: int
    failed_actions: int
    skipped_actions: int
    action_results: list[ActionResult]
    error: str | None


class ActionCatalogEntry(BaseModel):
    id: ActionType
    label: str
    order: int
    irreversible: bool


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str
    actions: list[ActionType]


class CatalogResponse(BaseModel):
    actions: list[ActionCatalogEntry]
    templates: list[TemplateResponse]
