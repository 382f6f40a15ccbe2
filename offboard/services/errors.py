"""Caller-visible errors raised by the scheduled-action services."""


class ScheduledActionError(Exception):
    """Base class; ``status_code`` is the HTTP status the API maps it to."""

    status_code = 400


class ScheduledActionNotFound(ScheduledActionError):
    """Missing, owned by another tenant, or not in an editable state."""

    status_code = 404

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Scheduled action {record_id} not found")
        self.record_id = record_id


class ScheduledActionInvalid(ScheduledActionError):
    status_code = 422


class ScheduledActionConflict(ScheduledActionError):
    """The record exists but its status does not allow the operation."""

    status_code = 409
