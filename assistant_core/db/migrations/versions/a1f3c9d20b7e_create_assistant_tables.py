"""create_assistant_tables

Revision ID: a1f3c9d20b7e
Revises:
Create Date: 2026-10-18 09:12:44.381022

Creates the assistant orchestration schema: threads, messages, turns, the tool
registry, tool executions, LLM call logs, and operational events, plus the
job-search tables the tools read and write.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql as pg

# revision identifiers, used by Alembic.
revision: str = "a1f3c9d20b7e"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        pg.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    """Create the assistant schema."""

    # pgcrypto for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("headline", sa.Text(), nullable=True),
        sa.Column("profile_summary", sa.Text(), nullable=True),
        sa.Column(
            "assistant_write_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        _created_at(),
    )

    op.create_table(
        "interview_applications",
        _uuid_pk(),
        sa.Column(
            "user_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("company_name", sa.Text(), nullable=False),
        sa.Column("job_role_title", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column(
            "pipeline_stage", sa.String(32), nullable=False, server_default="applied"
        ),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index(
        "ix_interview_applications_user_id", "interview_applications", ["user_id"]
    )

    op.create_table(
        "interview_rounds",
        _uuid_pk(),
        sa.Column(
            "application_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("interview_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage", sa.String(32), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("interviewer_name", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("result", sa.String(16), nullable=False, server_default="pending"),
        _created_at(),
    )
    op.create_index(
        "ix_interview_rounds_application_id", "interview_rounds", ["application_id"]
    )

    op.create_table(
        "target_companies",
        _uuid_pk(),
        sa.Column(
            "user_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("company_name", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("user_id", "company_name", name="uq_target_company_per_user"),
    )
    op.create_index("ix_target_companies_user_id", "target_companies", ["user_id"])

    # Assistant conversation tables
    op.create_table(
        "assistant_threads",
        _uuid_pk(),
        sa.Column(
            "user_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("status IN ('open', 'closed')", name="chk_thread_status"),
    )
    op.create_index("ix_assistant_threads_user_id", "assistant_threads", ["user_id"])

    op.create_table(
        "assistant_messages",
        _uuid_pk(),
        sa.Column(
            "thread_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assistant_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "metadata",
            pg.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("client_request_id", sa.String(128), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "role IN ('user', 'assistant', 'tool')", name="chk_assistant_message_role"
        ),
    )
    op.create_index(
        "ix_assistant_messages_thread_created",
        "assistant_messages",
        ["thread_id", "created_at"],
    )
    op.create_index(
        "ix_assistant_messages_client_request_id",
        "assistant_messages",
        ["client_request_id"],
    )

    op.create_table(
        "llm_api_logs",
        _uuid_pk(),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("model", sa.String(128), nullable=True),
        sa.Column("operation", sa.String(64), nullable=False),
        sa.Column("trace_id", sa.String(64), nullable=True),
        sa.Column("user_id", pg.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "request_payload",
            pg.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("response_text", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("error_type", sa.String(64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column(
            "synthetic", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        _created_at(),
        sa.CheckConstraint("status IN ('success', 'error')", name="chk_llm_log_status"),
    )
    op.create_index("ix_llm_api_logs_trace_id", "llm_api_logs", ["trace_id"])

    op.create_table(
        "assistant_turns",
        _uuid_pk(),
        sa.Column(
            "thread_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assistant_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_message_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assistant_messages.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "assistant_message_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assistant_messages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("trace_id", sa.String(64), nullable=False),
        sa.Column(
            "context_snapshot",
            pg.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "llm_api_log_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("llm_api_logs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("provider_name", sa.String(32), nullable=True),
        sa.Column(
            "provider_state",
            pg.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("error", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("status IN ('success', 'error')", name="chk_turn_status"),
    )
    op.create_index("ix_assistant_turns_thread_id", "assistant_turns", ["thread_id"])
    op.create_index("ix_assistant_turns_trace_id", "assistant_turns", ["trace_id"])
    op.create_index(
        "ix_assistant_turns_assistant_message_id",
        "assistant_turns",
        ["assistant_message_id"],
    )

    # Tool registry and executions
    op.create_table(
        "assistant_tools",
        _uuid_pk(),
        sa.Column("tool_key", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "arg_schema",
            pg.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("risk_level", sa.String(16), nullable=False, server_default="read_only"),
        sa.Column(
            "requires_confirmation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("timeout_ms", sa.Integer(), nullable=False, server_default="5000"),
        sa.CheckConstraint(
            "risk_level IN ('read_only', 'write', 'destructive')",
            name="chk_tool_risk_level",
        ),
    )

    op.create_table(
        "assistant_tool_executions",
        _uuid_pk(),
        sa.Column(
            "thread_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assistant_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "assistant_message_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assistant_messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tool_key", sa.String(128), nullable=False),
        sa.Column(
            "args", pg.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="proposed"),
        sa.Column("trace_id", sa.String(64), nullable=True),
        sa.Column(
            "requires_confirmation",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("dedup_hash", sa.String(64), nullable=False),
        sa.Column("provider_tool_call_id", sa.String(128), nullable=True),
        sa.Column(
            "alias_tool_call_ids",
            pg.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("result", pg.JSONB(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_kind", sa.String(40), nullable=True),
        sa.Column(
            "approved_by_user_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "status IN ('proposed', 'pending_approval', 'queued', 'running', "
            "'success', 'error')",
            name="chk_tool_execution_status",
        ),
        sa.UniqueConstraint(
            "assistant_message_id", "dedup_hash", name="uq_tool_execution_dedup"
        ),
    )
    op.create_index(
        "ix_assistant_tool_executions_thread_id",
        "assistant_tool_executions",
        ["thread_id"],
    )
    op.create_index(
        "ix_assistant_tool_executions_assistant_message_id",
        "assistant_tool_executions",
        ["assistant_message_id"],
    )
    op.create_index(
        "ix_assistant_tool_executions_trace_id",
        "assistant_tool_executions",
        ["trace_id"],
    )
    op.create_index(
        "ix_assistant_tool_executions_dedup_hash",
        "assistant_tool_executions",
        ["dedup_hash"],
    )

    op.create_table(
        "assistant_events",
        _uuid_pk(),
        sa.Column("trace_id", sa.String(64), nullable=True),
        sa.Column("thread_id", pg.UUID(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False, server_default="info"),
        sa.Column(
            "payload", pg.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        _created_at(),
    )
    op.create_index("ix_assistant_events_trace_id", "assistant_events", ["trace_id"])


def downgrade() -> None:
    """Drop the assistant schema."""
    op.drop_table("assistant_events")
    op.drop_table("assistant_tool_executions")
    op.drop_table("assistant_tools")
    op.drop_table("assistant_turns")
    op.drop_table("llm_api_logs")
    op.drop_table("assistant_messages")
    op.drop_table("assistant_threads")
    op.drop_table("target_companies")
    op.drop_table("interview_rounds")
    op.drop_table("interview_applications")
    op.drop_table("users")
