"""Execution engine: runs one record's actions in safety order."""

from offboard.core.datetime_utils import utc_now
from offboard.core.logging import get_logger
from offboard.directory.actions import ActionStatus, ActionType, canonical_sort
from offboard.directory.adapter import DirectoryActionAdapter, DirectoryActionError
from offboard.directory.client import GraphClient
from offboard.models.scheduled_action import ScheduledAction, ScheduleStatus
from offboard.schemas.scheduled_action import ActionOptions, ActionResult, ExecutionLog, TargetUser

logger = get_logger(__name__)


def compute_terminal_status(log: ExecutionLog) -> ScheduleStatus:
    """completed if nothing failed, failed if nothing succeeded, else partial."""
    if log.failed_actions == 0:
        return ScheduleStatus.COMPLETED
    if log.successful_actions == 0:
        return ScheduleStatus.FAILED
    return ScheduleStatus.PARTIAL


class ExecutionEngine:
    """Runs a record's actions sequentially against the directory.

    Actions run in canonical order whatever order they were submitted in,
    and a failed action never stops the ones after it.
    """

    def __init__(self, adapter: DirectoryActionAdapter) -> None:
        self.adapter = adapter

    async def execute(self, record: ScheduledAction, access_token: str) -> ExecutionLog:
        start_time = utc_now()
        user = TargetUser.model_validate(record.target_user)
        options = ActionOptions.model_validate(record.options or {})
        actions = canonical_sort([ActionType(a) for a in record.actions])

        log = logger.bind(scheduled_action_id=record.id, tenant_id=record.tenant_id, target_user_id=user.id)
        log.bind(actions=[a.value for a in actions]).info("execution_started")

        results: list[ActionResult] = []
        async with self.adapter.connect(access_token) as graph:
            for action in actions:
                results.append(await self._run_action(action, graph, user, options, record.id))

        execution_log = ExecutionLog.from_results(start_time, utc_now(), results)
        log.bind(
            successful=execution_log.successful_actions,
            failed=execution_log.failed_actions,
            skipped=execution_log.skipped_actions,
            duration_seconds=round((execution_log.end_time - start_time).total_seconds(), 2),
        ).info("execution_finished")
        return execution_log

    async def _run_action(
        self,
        action: ActionType,
        graph: GraphClient,
        user: TargetUser,
        options: ActionOptions,
        record_id: str,
    ) -> ActionResult:
        try:
            outcome = await self.adapter.run(action, graph, user, options)
        except DirectoryActionError as e:
            logger.bind(scheduled_action_id=record_id, action=action.value, error=str(e)).warning("action_failed")
            return ActionResult(action=action, status=ActionStatus.FAILED, error=str(e), items=e.items)
        except Exception as e:
            # Recorded like any other failure; later actions still run
            logger.bind(scheduled_action_id=record_id, action=action.value).exception("action_crashed")
            return ActionResult(action=action, status=ActionStatus.FAILED, error=f"Unexpected error: {e}")

        logger.bind(scheduled_action_id=record_id, action=action.value, status=outcome.status.value).info(
            "action_completed"
        )
        return ActionResult(action=action, status=outcome.status, detail=outcome.detail, items=outcome.items)
