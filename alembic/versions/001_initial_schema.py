"""Initial schema: scheduled actions, execution logs, audit, credentials, job runs

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "scheduled_actions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("target_user_id", sa.String(255), nullable=False),
        sa.Column("target_user", sa.JSON(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("actions", sa.JSON(), nullable=False),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("template_id", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "scheduled",
                "in-progress",
                "completed",
                "failed",
                "partial",
                name="schedulestatus",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("execution_log", sa.JSON(), nullable=True),
        sa.Column("executed_at", sa.DateTime(), nullable=True),
        sa.Column("executed_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_scheduled_actions_tenant_id", "scheduled_actions", ["tenant_id"])
    op.create_index("ix_scheduled_actions_target_user_id", "scheduled_actions", ["target_user_id"])
    op.create_index("ix_scheduled_actions_status_scheduled_at", "scheduled_actions", ["status", "scheduled_at"])
    op.create_index("ix_scheduled_actions_tenant_status", "scheduled_actions", ["tenant_id", "status"])

    op.create_table(
        "execution_logs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("scheduled_action_id", sa.String(36), nullable=True),
        sa.Column("target_user_id", sa.String(255), nullable=False),
        sa.Column("target_user_name", sa.String(500), nullable=False),
        sa.Column("target_user_email", sa.String(500), nullable=True),
        sa.Column("executed_by", sa.String(255), nullable=False),
        sa.Column("execution_type", sa.String(20), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("total_actions", sa.Integer(), nullable=False),
        sa.Column("successful_actions", sa.Integer(), nullable=False),
        sa.Column("failed_actions", sa.Integer(), nullable=False),
        sa.Column("skipped_actions", sa.Integer(), nullable=False),
        sa.Column("action_results", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_execution_logs_tenant_id", "execution_logs", ["tenant_id"])
    op.create_index("ix_execution_logs_scheduled_action_id", "execution_logs", ["scheduled_action_id"])
    op.create_index("ix_execution_logs_target_user_id", "execution_logs", ["target_user_id"])
    op.create_index("ix_execution_logs_start_time", "execution_logs", ["start_time"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(36), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])

    op.create_table(
        "tenant_credentials",
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("directory_tenant_id", sa.String(255), nullable=False),
        sa.Column("client_id", sa.String(255), nullable=False),
        sa.Column("client_secret_encrypted", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("tenant_id"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("job_id", sa.String(100), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_runs_job_id", "job_runs", ["job_id"])
    op.create_index("ix_job_runs_scheduled_at", "job_runs", ["scheduled_at"])


def downgrade() -> None:
    op.drop_index("ix_job_runs_scheduled_at", table_name="job_runs")
    op.drop_index("ix_job_runs_job_id", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_table("tenant_credentials")
    op.drop_index("ix_audit_events_action", table_name="audit_events")
    op.drop_index("ix_audit_events_tenant_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_execution_logs_start_time", table_name="execution_logs")
    op.drop_index("ix_execution_logs_target_user_id", table_name="execution_logs")
    op.drop_index("ix_execution_logs_scheduled_action_id", table_name="execution_logs")
    op.drop_index("ix_execution_logs_tenant_id", table_name="execution_logs")
    op.drop_table("execution_logs")
    op.drop_index("ix_scheduled_actions_tenant_status", table_name="scheduled_actions")
    op.drop_index("ix_scheduled_actions_status_scheduled_at", table_name="scheduled_actions")
    op.drop_index("ix_scheduled_actions_target_user_id", table_name="scheduled_actions")
    op.drop_index("ix_scheduled_actions_tenant_id", table_name="scheduled_actions")
    op.drop_table("scheduled_actions")
