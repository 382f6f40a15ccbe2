"""Tests for the scheduled-action store."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from offboard.core.datetime_utils import utc_now
from offboard.directory.actions import ActionType
from offboard.models.audit import AuditEvent
from offboard.models.scheduled_action import ScheduleStatus
from offboard.schemas.scheduled_action import ExecutionLog, ScheduledActionCreate, ScheduledActionUpdate
from offboard.services.errors import ScheduledActionConflict, ScheduledActionInvalid, ScheduledActionNotFound
from offboard.services.scheduled_actions import (
    claim_for_execution,
    create_scheduled_action,
    delete_scheduled_action,
    finish_execution,
    get_scheduled_action,
    list_due,
    list_scheduled_actions,
    recover_stale_executions,
    retry_scheduled_action,
    update_scheduled_action,
    validate_actions,
    validate_schedule,
)


def create_request(**overrides) -> ScheduledActionCreate:
    data = {
        "target_user": {"id": "user-9", "display_name": "Sam Departing", "mail": "sam@contoso.com"},
        "scheduled_at": utc_now() + timedelta(hours=4),
        "actions": ["disableAccount", "setEmailForwarding"],
        "options": {"forwarding_address": "manager@contoso.com"},
    }
    data.update(overrides)
    return ScheduledActionCreate.model_validate(data)


class TestValidation:
    """Tests for validate_actions and validate_schedule."""

    def test_empty_actions(self):
        """Should reject an empty action set."""
        with pytest.raises(ScheduledActionInvalid):
            validate_actions([])

    def test_wipe_and_retire(self):
        """Should reject both device dispositions together."""
        with pytest.raises(ScheduledActionInvalid):
            validate_actions([ActionType.WIPE_DEVICES, ActionType.RETIRE_DEVICES])

    def test_valid_actions_returned_unchanged(self):
        """Should keep the submitted order."""
        actions = [ActionType.REMOVE_FROM_GROUPS, ActionType.DISABLE_ACCOUNT]
        assert validate_actions(actions) == actions

    def test_past_schedule_rejected(self):
        """Should reject instants before the grace window."""
        now = datetime(2026, 3, 2, 12, 0)
        with pytest.raises(ScheduledActionInvalid):
            validate_schedule(datetime(2026, 3, 2, 11, 0), "UTC", now=now)

    def test_grace_window(self):
        """Should accept an instant a few seconds old."""
        now = datetime(2026, 3, 2, 12, 0)
        assert validate_schedule(datetime(2026, 3, 2, 11, 59, 30), "UTC", now=now) == datetime(2026, 3, 2, 11, 59, 30)

    def test_local_time_normalized(self):
        """Should convert wall-clock time in the given zone to naive UTC."""
        now = datetime(2026, 1, 1)
        # New York is UTC-5 in January
        assert validate_schedule(datetime(2026, 1, 15, 9, 0), "America/New_York", now=now) == datetime(
            2026, 1, 15, 14, 0
        )


class TestCreate:
    """Tests for create_scheduled_action."""

    @pytest.mark.asyncio
    async def test_create_stores_snapshot_and_audits(self, db_session: AsyncSession, tenant_ctx):
        """Should persist the request under the caller's tenant and audit it."""
        record = await create_scheduled_action(db_session, create_request(notes="HR ticket 42"), tenant_ctx)
        await db_session.commit()

        assert record.status == ScheduleStatus.SCHEDULED
        assert record.tenant_id == tenant_ctx.tenant_id
        assert record.created_by == tenant_ctx.actor_id
        assert record.target_user_id == "user-9"
        assert record.target_user["display_name"] == "Sam Departing"
        assert record.options["forwarding_address"] == "manager@contoso.com"
        assert record.execution_log is None

        events = (await db_session.execute(select(AuditEvent))).scalars().all()
        assert [(e.action, e.resource_id, e.actor_id) for e in events] == [
            ("schedule_created", record.id, tenant_ctx.actor_id)
        ]

    @pytest.mark.asyncio
    async def test_explicit_actions_win_over_template(self, db_session: AsyncSession, tenant_ctx):
        """Should keep submitted actions when a template is also named."""
        record = await create_scheduled_action(
            db_session, create_request(template_id="security", actions=["disableAccount"]), tenant_ctx
        )

        assert record.actions == ["disableAccount"]
        assert record.template_id == "security"


class TestTenantIsolation:
    """Every tenant-facing operation is scoped to the caller's tenant."""

    @pytest.mark.asyncio
    async def test_get_foreign_record(self, db_session, scheduled_action_factory, other_tenant_ctx):
        """Should report another tenant's record as not found."""
        record = await scheduled_action_factory()

        with pytest.raises(ScheduledActionNotFound):
            await get_scheduled_action(db_session, record.id, other_tenant_ctx.tenant_id)

    @pytest.mark.asyncio
    async def test_list_is_scoped(self, db_session, scheduled_action_factory, tenant_ctx, other_tenant_ctx):
        """Should list only the tenant's own records."""
        await scheduled_action_factory()
        await scheduled_action_factory(ctx=other_tenant_ctx)

        records = await list_scheduled_actions(db_session, tenant_ctx.tenant_id)

        assert {r.tenant_id for r in records} == {tenant_ctx.tenant_id}

    @pytest.mark.asyncio
    async def test_foreign_delete_leaves_record(
        self, db_session, scheduled_action_factory, tenant_ctx, other_tenant_ctx
    ):
        """Should not delete another tenant's record."""
        record = await scheduled_action_factory()

        with pytest.raises(ScheduledActionNotFound):
            await delete_scheduled_action(db_session, record.id, other_tenant_ctx)

        assert (await get_scheduled_action(db_session, record.id, tenant_ctx.tenant_id)).id == record.id

    @pytest.mark.asyncio
    async def test_foreign_retry(self, db_session, scheduled_action_factory, other_tenant_ctx):
        """Should not retry another tenant's record."""
        record = await scheduled_action_factory(status=ScheduleStatus.FAILED)

        with pytest.raises(ScheduledActionNotFound):
            await retry_scheduled_action(db_session, record.id, other_tenant_ctx)


class TestRetry:
    """Tests for retry_scheduled_action."""

    @pytest.mark.asyncio
    async def test_retry_resets_only_schedule_fields(
        self, db_session, scheduled_action_factory, failed_log, tenant_ctx
    ):
        """Should clear the log and reschedule, leaving everything else as it was."""
        executed_at = utc_now() - timedelta(minutes=10)
        record = await scheduled_action_factory(
            status=ScheduleStatus.PARTIAL,
            execution_log=failed_log,
            executed_at=executed_at,
            executed_by="system-scheduler",
        )
        before = {
            "actions": list(record.actions),
            "options": dict(record.options),
            "target_user": dict(record.target_user),
            "notes": record.notes,
            "created_by": record.created_by,
            "session_id": record.session_id,
            "timezone": record.timezone,
        }

        await retry_scheduled_action(db_session, record.id, tenant_ctx)
        await db_session.commit()
        await db_session.refresh(record)

        assert record.status == ScheduleStatus.SCHEDULED
        assert record.execution_log is None
        assert record.scheduled_at <= utc_now()
        assert record.executed_at == executed_at
        assert record.executed_by == "system-scheduler"
        for field, value in before.items():
            assert getattr(record, field) == value

    @pytest.mark.asyncio
    async def test_retried_record_is_due(self, db_session, scheduled_action_factory, tenant_ctx):
        """Should be picked up by the next poll."""
        record = await scheduled_action_factory(status=ScheduleStatus.FAILED)

        await retry_scheduled_action(db_session, record.id, tenant_ctx)
        await db_session.commit()

        due = await list_due(db_session, utc_now() + timedelta(seconds=1))
        assert [r.id for r in due] == [record.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS, ScheduleStatus.COMPLETED])
    async def test_retry_requires_failed_or_partial(self, db_session, scheduled_action_factory, tenant_ctx, status):
        """Should refuse records that did not fail."""
        record = await scheduled_action_factory(status=status)

        with pytest.raises(ScheduledActionConflict):
            await retry_scheduled_action(db_session, record.id, tenant_ctx)

    @pytest.mark.asyncio
    async def test_retry_rejects_past_time(self, db_session, scheduled_action_factory, tenant_ctx):
        """Should validate an explicit new time like a new schedule."""
        record = await scheduled_action_factory(status=ScheduleStatus.FAILED)

        with pytest.raises(ScheduledActionInvalid):
            await retry_scheduled_action(db_session, record.id, tenant_ctx, scheduled_at=utc_now() - timedelta(days=1))


class TestUpdateAndDelete:
    """Edits are only allowed while a record is scheduled."""

    @pytest.mark.asyncio
    async def test_update_after_claim_is_rejected(self, db_session, scheduled_action_factory, tenant_ctx):
        """Should not edit a record the dispatcher has claimed."""
        record = await scheduled_action_factory()
        assert await claim_for_execution(db_session, record.id, "system-scheduler")
        await db_session.commit()
        await db_session.refresh(record)

        with pytest.raises(ScheduledActionNotFound):
            await update_scheduled_action(db_session, record.id, ScheduledActionUpdate(notes="x"), tenant_ctx)

    @pytest.mark.asyncio
    async def test_delete_after_claim_is_rejected(self, db_session, scheduled_action_factory, tenant_ctx):
        """Should not delete a record the dispatcher has claimed."""
        record = await scheduled_action_factory()
        assert await claim_for_execution(db_session, record.id, "system-scheduler")
        await db_session.commit()

        with pytest.raises(ScheduledActionNotFound):
            await delete_scheduled_action(db_session, record.id, tenant_ctx)

    @pytest.mark.asyncio
    async def test_update_reschedule_in_timezone(self, db_session, scheduled_action_factory, tenant_ctx):
        """Should store a new local time as UTC."""
        record = await scheduled_action_factory()
        local = datetime(utc_now().year + 1, 7, 1, 9, 0)

        updated = await update_scheduled_action(
            db_session,
            record.id,
            ScheduledActionUpdate(scheduled_at=local, timezone="Europe/Paris"),
            tenant_ctx,
        )

        # Paris is UTC+2 in July
        assert updated.scheduled_at == datetime(local.year, 7, 1, 7, 0)
        assert updated.timezone == "Europe/Paris"


class TestDispatchTransitions:
    """Tests for the cross-tenant functions used by the dispatcher."""

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, db_session, scheduled_action_factory):
        """Should let exactly one caller claim a record."""
        record = await scheduled_action_factory()

        first = await claim_for_execution(db_session, record.id, "worker-1")
        second = await claim_for_execution(db_session, record.id, "worker-2")
        await db_session.commit()
        await db_session.refresh(record)

        assert first is True
        assert second is False
        assert record.status == ScheduleStatus.IN_PROGRESS
        assert record.executed_by == "worker-1"

    @pytest.mark.asyncio
    async def test_finish_requires_in_progress(self, db_session, scheduled_action_factory):
        """Should not write a log onto a record that was never claimed."""
        record = await scheduled_action_factory()
        now = utc_now()
        log = ExecutionLog.from_results(now, now, [])

        assert await finish_execution(db_session, record.id, log, ScheduleStatus.COMPLETED) is False

    @pytest.mark.asyncio
    async def test_finish_only_matches_own_claim(self, db_session, scheduled_action_factory):
        """Should leave a record alone when it was claimed at a different instant."""
        record = await scheduled_action_factory()
        claimed_at = utc_now() - timedelta(minutes=1)
        assert await claim_for_execution(db_session, record.id, "worker-1", now=claimed_at)
        log = ExecutionLog.from_results(claimed_at, utc_now(), [])

        assert await finish_execution(
            db_session, record.id, log, ScheduleStatus.COMPLETED, claimed_at=claimed_at - timedelta(seconds=1)
        ) is False
        assert await finish_execution(db_session, record.id, log, ScheduleStatus.COMPLETED, claimed_at=claimed_at)

    @pytest.mark.asyncio
    async def test_list_due_spans_tenants_oldest_first(
        self, db_session, scheduled_action_factory, other_tenant_ctx
    ):
        """Should return due scheduled records from every tenant in time order."""
        now = utc_now()
        later = await scheduled_action_factory(scheduled_at=now - timedelta(minutes=1))
        earlier = await scheduled_action_factory(ctx=other_tenant_ctx, scheduled_at=now - timedelta(minutes=30))
        await scheduled_action_factory(scheduled_at=now + timedelta(minutes=30))
        await scheduled_action_factory(status=ScheduleStatus.COMPLETED, scheduled_at=now - timedelta(hours=1))

        due = await list_due(db_session, now)

        assert [r.id for r in due] == [earlier.id, later.id]

    @pytest.mark.asyncio
    async def test_recover_only_stale_runs(self, db_session, scheduled_action_factory):
        """Should fail in-progress runs older than the threshold only."""
        now = utc_now()
        stale = await scheduled_action_factory(
            status=ScheduleStatus.IN_PROGRESS, executed_at=now - timedelta(hours=3), executed_by="admin@tenant-a.com"
        )
        await scheduled_action_factory(status=ScheduleStatus.IN_PROGRESS, executed_at=now - timedelta(minutes=2))

        recovered = await recover_stale_executions(db_session, now, timedelta(hours=1))
        await db_session.commit()
        await db_session.refresh(stale)

        assert [r.id for r in recovered] == [stale.id]
        assert stale.status == ScheduleStatus.FAILED
        assert stale.execution_log["total_actions"] == len(stale.actions)
