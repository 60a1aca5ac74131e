"""
Database models for Assistant Core.

This module defines SQLAlchemy models for:
- Users and the job-search records the assistant tools operate on
- Assistant threads, messages, and turns
- Tool registry entries and tool execution records
- LLM call logs and operational events for trace correlation

Column types are portable (JSONB/UUID on PostgreSQL, JSON/CHAR on SQLite) so the
same models back production and the in-memory test database.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

TOOL_EXECUTION_STATUSES = (
    "proposed",
    "pending_approval",
    "queued",
    "running",
    "success",
    "error",
)
TERMINAL_TOOL_STATUSES = ("success", "error")
NON_TERMINAL_TOOL_STATUSES = ("proposed", "pending_approval", "queued", "running")

RISK_LEVELS = ("read_only", "write", "destructive")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class User(Base):
    """
    Application user.

    Only the fields the assistant reads are modelled here; account management
    lives in the surrounding application.

    Attributes:
        id: Unique user identifier (UUID)
        email: User's email address
        name: Display name
        headline: One-line professional headline
        profile_summary: Free-text profile summary
        years_of_experience: Years of professional experience
        current_company_name: Current employer
        current_job_role_title: Current job title
        assistant_write_enabled: Entitlement for write/destructive assistant tools
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4, doc="Unique user identifier"
    )

    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False, doc="User's email address"
    )

    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    headline: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    profile_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    years_of_experience: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    current_company_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    current_job_role_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    assistant_write_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Whether write/destructive assistant tools are offered to this user",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    applications: Mapped[List["InterviewApplication"]] = relationship(
        "InterviewApplication",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    target_companies: Mapped[List["TargetCompany"]] = relationship(
        "TargetCompany",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    target_job_roles: Mapped[List["TargetJobRole"]] = relationship(
        "TargetJobRole",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    target_domains: Mapped[List["TargetDomain"]] = relationship(
        "TargetDomain",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class InterviewApplication(Base):
    """A job application tracked in the user's pipeline."""

    __tablename__ = "interview_applications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    company_name: Mapped[str] = mapped_column(Text, nullable=False)

    job_role_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="active", doc="active/archived/rejected/offer"
    )

    pipeline_stage: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="applied",
        doc="applied/screening/interviewing/offer/closed",
    )

    applied_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    user: Mapped["User"] = relationship("User", back_populates="applications")

    rounds: Mapped[List["InterviewRound"]] = relationship(
        "InterviewRound",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="InterviewRound.scheduled_at",
    )

    def __repr__(self) -> str:
        return (
            f"<InterviewApplication(id={self.id}, company={self.company_name}, "
            f"stage={self.pipeline_stage})>"
        )


class InterviewRound(Base):
    """One interview round of an application."""

    __tablename__ = "interview_rounds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("interview_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    stage: Mapped[str] = mapped_column(
        String(32), nullable=False, doc="screening/technical/hiring_manager/onsite/other"
    )

    scheduled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    interviewer_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    result: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending", doc="pending/passed/failed"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    application: Mapped["InterviewApplication"] = relationship(
        "InterviewApplication", back_populates="rounds"
    )


class TargetCompany(Base):
    """A company on the user's target list."""

    __tablename__ = "target_companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    company_name: Mapped[str] = mapped_column(Text, nullable=False)

    priority: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="target_companies")

    __table_args__ = (
        UniqueConstraint("user_id", "company_name", name="uq_target_company_per_user"),
    )


class TargetJobRole(Base):
    """A job title the user is aiming for."""

    __tablename__ = "target_job_roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title: Mapped[str] = mapped_column(Text, nullable=False)

    priority: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="target_job_roles")

    __table_args__ = (UniqueConstraint("user_id", "title", name="uq_target_job_role_per_user"),)


class TargetDomain(Base):
    """An industry or domain the user wants to work in (fintech, healthcare)."""

    __tablename__ = "target_domains"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(Text, nullable=False)

    priority: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="target_domains")

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_target_domain_per_user"),)


class Thread(Base):
    """
    Assistant conversation thread.

    Attributes:
        id: Unique thread identifier
        user_id: Thread owner
        title: Human-readable title (first user message, truncated)
        status: open/closed
        last_activity_at: Last message/activity timestamp
        created_at: Thread creation timestamp
    """

    __tablename__ = "assistant_threads"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4, doc="Unique thread identifier"
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Thread owner",
    )

    title: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, doc="Human-readable thread title"
    )

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="open", doc="open/closed"
    )

    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, doc="Last message/activity timestamp"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        doc="Thread creation timestamp",
    )

    user: Mapped["User"] = relationship("User")

    messages: Mapped[List["Message"]] = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
        doc="All messages in this thread",
    )

    tool_executions: Mapped[List["ToolExecution"]] = relationship(
        "ToolExecution",
        back_populates="thread",
        cascade="all, delete-orphan",
        doc="All tool executions proposed in this thread",
    )

    turns: Mapped[List["Turn"]] = relationship(
        "Turn",
        back_populates="thread",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("status IN ('open', 'closed')", name="chk_thread_status"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def __repr__(self) -> str:
        return f"<Thread(id={self.id}, user_id={self.user_id}, status={self.status})>"


class Message(Base):
    """
    One utterance in a thread.

    Assistant messages carry provider metadata (provider, model, trace_id,
    provider_content_blocks, followup_content_blocks, pending_tool_followup).
    Tool messages are the canonical record of a tool result and carry
    originating_assistant_message_id, provider_tool_call_id, tool_key,
    tool_execution_id, success, data, and error.
    """

    __tablename__ = "assistant_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4, doc="Unique message identifier"
    )

    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assistant_threads.id", ondelete="CASCADE"),
        nullable=False,
        doc="Parent thread ID",
    )

    role: Mapped[str] = mapped_column(
        String(16), nullable=False, doc="Message role (user/assistant/tool)"
    )

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    message_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )

    client_request_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        index=True,
        doc="Client-provided id making message submission idempotent",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        doc="Message creation timestamp",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    thread: Mapped["Thread"] = relationship(
        "Thread", back_populates="messages", doc="Parent thread"
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('user', 'assistant', 'tool')",
            name="chk_assistant_message_role",
        ),
        Index("ix_assistant_messages_thread_created", "thread_id", "created_at"),
    )

    @property
    def pending_tool_followup(self) -> bool:
        return bool((self.message_metadata or {}).get("pending_tool_followup"))

    def update_metadata(self, **values: Any) -> None:
        """Merge keys into metadata (reassigned so the JSON column is flagged dirty)."""
        merged = dict(self.message_metadata or {})
        merged.update(values)
        self.message_metadata = merged

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, thread_id={self.thread_id}, role={self.role})>"


class Turn(Base):
    """
    One user message -> assistant message exchange.

    provider_state holds the continuation token: {"response_id", "awaiting_tool_outputs"}
    for OpenAI, {"message_id"} for Anthropic.
    """

    __tablename__ = "assistant_turns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assistant_threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assistant_messages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        doc="One turn per user message",
    )

    assistant_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("assistant_messages.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    trace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    context_snapshot: Mapped[Dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    llm_api_log_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("llm_api_logs.id", ondelete="SET NULL"), nullable=True
    )

    latency_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False)

    provider_name: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    provider_state: Mapped[Dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    thread: Mapped["Thread"] = relationship("Thread", back_populates="turns")

    __table_args__ = (
        CheckConstraint("status IN ('success', 'error')", name="chk_turn_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Turn(id={self.id}, status={self.status}, "
            f"provider={self.provider_name}, trace_id={self.trace_id})>"
        )


class Tool(Base):
    """Registry entry for an assistant tool."""

    __tablename__ = "assistant_tools"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    tool_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(Text, nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    arg_schema: Mapped[Dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    risk_level: Mapped[str] = mapped_column(
        String(16), nullable=False, default="read_only"
    )

    requires_confirmation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=5000)

    __table_args__ = (
        CheckConstraint(
            "risk_level IN ('read_only', 'write', 'destructive')",
            name="chk_tool_risk_level",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Tool(key={self.tool_key}, risk={self.risk_level}, "
            f"enabled={self.enabled})>"
        )


class ToolExecution(Base):
    """
    One proposed or executed tool invocation.

    Status flow: proposed -> queued -> running -> success|error. Confirmation-gated
    executions stay in proposed (or pending_approval) until approved.

    Attributes:
        idempotency_key: Unique per logical call (thread, message, provider call id, args)
        dedup_hash: Hash of (tool_key, args); unique within one assistant message
        provider_tool_call_id: Provider's tool-call id, needed to answer the call
        alias_tool_call_ids: Provider call ids deduplicated onto this record
    """

    __tablename__ = "assistant_tool_executions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assistant_threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    assistant_message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("assistant_messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    tool_key: Mapped[str] = mapped_column(String(128), nullable=False)

    args: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="proposed")

    trace_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    requires_confirmation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, doc="Prevents duplicate executions"
    )

    dedup_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    provider_tool_call_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True
    )

    alias_tool_call_ids: Mapped[List[str]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    error_kind: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    approved_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    thread: Mapped["Thread"] = relationship("Thread", back_populates="tool_executions")

    __table_args__ = (
        CheckConstraint(
            "status IN ('proposed', 'pending_approval', 'queued', 'running', "
            "'success', 'error')",
            name="chk_tool_execution_status",
        ),
        UniqueConstraint(
            "assistant_message_id", "dedup_hash", name="uq_tool_execution_dedup"
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TOOL_STATUSES

    @property
    def provider_call_ids(self) -> List[str]:
        """Every provider call id this execution answers, primary first."""
        ids = [self.provider_tool_call_id] if self.provider_tool_call_id else []
        ids.extend(cid for cid in (self.alias_tool_call_ids or []) if cid not in ids)
        return ids

    @property
    def duration_ms(self) -> Optional[float]:
        """Calculate execution duration in milliseconds."""
        if not self.finished_at or not self.started_at:
            return None
        return (as_utc(self.finished_at) - as_utc(self.started_at)).total_seconds() * 1000

    def __repr__(self) -> str:
        return (
            f"<ToolExecution(id={self.id}, tool={self.tool_key}, "
            f"status={self.status}, duration_ms={self.duration_ms})>"
        )


class LlmApiLog(Base):
    """One provider call (or synthetic failure record) for observability."""

    __tablename__ = "llm_api_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    provider: Mapped[str] = mapped_column(String(32), nullable=False)

    model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    operation: Mapped[str] = mapped_column(String(64), nullable=False)

    trace_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    request_payload: Mapped[Dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    response_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False)

    error_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    input_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    output_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    latency_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    synthetic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("status IN ('success', 'error')", name="chk_llm_log_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<LlmApiLog(id={self.id}, provider={self.provider}, "
            f"status={self.status}, latency_ms={self.latency_ms})>"
        )


class AssistantEvent(Base):
    """Operational event (tool run, turn failure) keyed by trace id."""

    __tablename__ = "assistant_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    trace_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    thread_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)

    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="info")

    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
