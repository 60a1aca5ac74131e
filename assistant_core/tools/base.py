"""
Base class and shared helpers for assistant tool implementations.

A tool declares its registry definition (key, schema, risk level, timeout) as
class attributes and implements three steps that the execution engine calls in
order: validate(args), authorize(ctx, args), execute(ctx, args).
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

from jsonschema import Draft202012Validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import InterviewApplication, Thread, ToolExecution, User
from ..errors import ToolArgumentError, ToolAuthorizationError


@dataclass
class ToolResult:
    """Outcome of a tool body: {success, data, error}."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"success": self.success, "data": self.data, "error": self.error}


@dataclass
class ToolContext:
    """Everything a tool body may touch: the session and the acting user."""

    session: AsyncSession
    user: User
    thread: Thread
    execution: Optional[ToolExecution] = None
    extras: Dict[str, Any] = field(default_factory=dict)


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def normalize_filter_value(value: Any) -> Optional[str]:
    """Treat blank and sentinel values ("all", "any") as no filter."""
    text = str(value or "").strip()
    if not text or text.lower() in ("all", "any"):
        return None
    return text


def parse_uuid(value: Any, field_name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as e:
        raise ToolArgumentError(f"{field_name} must be a UUID") from e


class AssistantTool(ABC):
    """
    One registered tool.

    Subclasses set the ClassVars used to seed the registry row and implement
    execute(). Tools that reference user-owned entities override authorize().
    """

    tool_key: ClassVar[str]
    name: ClassVar[str]
    description: ClassVar[str]
    arg_schema: ClassVar[Dict[str, Any]] = {"type": "object", "properties": {}}
    risk_level: ClassVar[str] = "read_only"
    requires_confirmation: ClassVar[bool] = False
    timeout_ms: ClassVar[int] = 5000

    def validate(self, args: Dict[str, Any], schema: Optional[Dict[str, Any]] = None) -> None:
        """
        Validate args against the registry schema.

        Raises:
            ToolArgumentError: With every violation message joined
        """
        if not isinstance(args, dict):
            raise ToolArgumentError("Tool arguments must be an object")
        validator = Draft202012Validator(schema or self.arg_schema)
        errors = sorted(validator.iter_errors(args), key=lambda e: list(e.path))
        if errors:
            raise ToolArgumentError("; ".join(_format_error(e) for e in errors))

    async def authorize(self, ctx: ToolContext, args: Dict[str, Any]) -> None:
        """Re-verify referenced entities belong to ctx.user. No-op by default."""
        return None

    @abstractmethod
    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        raise NotImplementedError

    def definition(self) -> Dict[str, Any]:
        """Registry row fields for this tool."""
        return {
            "tool_key": self.tool_key,
            "name": self.name,
            "description": self.description,
            "arg_schema": self.arg_schema,
            "risk_level": self.risk_level,
            "requires_confirmation": self.requires_confirmation,
            "timeout_ms": self.timeout_ms,
        }


def _format_error(error) -> str:
    location = ".".join(str(p) for p in error.path)
    return f"{location}: {error.message}" if location else error.message


async def load_owned_application(
    ctx: ToolContext, application_uuid: Any
) -> InterviewApplication:
    """
    Load an application scoped to the acting user.

    An id belonging to another user is reported the same way as a missing one.

    Raises:
        ToolArgumentError: application_uuid is not a UUID
        ToolAuthorizationError: not found in the user's applications
    """
    app_id = parse_uuid(application_uuid, "application_uuid")
    result = await ctx.session.execute(
        select(InterviewApplication).where(
            InterviewApplication.id == app_id,
            InterviewApplication.user_id == ctx.user.id,
        )
    )
    application = result.scalar_one_or_none()
    if application is None:
        raise ToolAuthorizationError("Application not found for this user")
    return application
