"""initial telemetry tables

Revision ID: 0001_initial_telemetry
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial_telemetry"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "execution_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("prompt_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("log_path", sa.String(512), nullable=True),
        sa.Column("is_success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("provider", sa.String(64), nullable=True),
        sa.Column("model", sa.String(255), nullable=True),
        sa.Column("usage", sa.Text(), nullable=True),
        sa.Column("raw_trace_id", sa.String(255), nullable=True),
        sa.Column("trace_id", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_execution_logs_tenant_id", "execution_logs", ["tenant_id"])
    op.create_index("ix_execution_logs_prompt_id", "execution_logs", ["prompt_id"])
    op.create_index("ix_execution_logs_created_at", "execution_logs", ["created_at"])
    op.create_index(
        "ix_execution_logs_project_tenant",
        "execution_logs",
        ["project_id", "tenant_id"],
    )
    op.create_index(
        "ix_execution_logs_trace",
        "execution_logs",
        ["tenant_id", "project_id", "trace_id"],
    )

    op.create_table(
        "traces",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("trace_id", sa.String(64), nullable=False),
        sa.Column("total_logs", sa.Integer(), nullable=False),
        sa.Column("success_count", sa.Integer(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column("total_duration_ms", sa.Integer(), nullable=False),
        sa.Column("stats", sa.Text(), nullable=True),
        sa.Column("first_log_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_log_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trace_path", sa.String(512), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "tenant_id",
            "project_id",
            "trace_id",
            name="uq_traces_tenant_project_trace",
        ),
    )
    op.create_index("ix_traces_tenant_id", "traces", ["tenant_id"])
    op.create_index("ix_traces_trace_id", "traces", ["trace_id"])
    op.create_index("ix_traces_project_tenant", "traces", ["project_id", "tenant_id"])

    op.create_table(
        "log_search_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("prompt_id", sa.Integer(), nullable=False),
        sa.Column("log_id", sa.Integer(), nullable=False),
        sa.Column("variable_path", sa.String(1024), nullable=False),
        sa.Column("variable_value", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_log_search_entries_log_id", "log_search_entries", ["log_id"])
    op.create_index(
        "ix_log_search_entries_tenant_project_path",
        "log_search_entries",
        ["tenant_id", "project_id", "variable_path"],
    )

    op.create_table(
        "execution_log_dead_letters",
        sa.Column(
            "id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False
        ),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("prompt_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("log_id", sa.Integer(), nullable=False),
        sa.Column("message", postgresql.JSONB(), nullable=False),
        sa.Column("error", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_execution_log_dead_letters_tenant_id",
        "execution_log_dead_letters",
        ["tenant_id"],
    )
    op.create_index(
        "ix_execution_log_dead_letters_log_id",
        "execution_log_dead_letters",
        ["log_id"],
    )


def downgrade() -> None:
    op.drop_table("execution_log_dead_letters")
    op.drop_table("log_search_entries")
    op.drop_table("traces")
    op.drop_table("execution_logs")
