"""
Error taxonomy for the assistant orchestrator.

Provider and tool failures are captured as data (a terminal status plus an
error kind and message) at component boundaries; the exceptions here are how
each component signals those failures internally before they are recorded.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Stable error identifiers persisted on tool executions and LLM logs."""

    RATE_LIMITED = "rate_limited"
    REQUEST_FAILED = "request_failed"
    CONTRACT_VIOLATION = "contract_violation"
    TOOL_DISABLED = "tool_disabled"
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_AUTHORIZATION_FAILED = "tool_authorization_failed"
    TOOL_TIMEOUT = "tool_timeout"
    TOOL_FAILED = "tool_failed"
    SCHEMA_INVALID = "schema_invalid"
    CONFIRMATION_REQUIRED = "confirmation_required"
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"


class AssistantError(Exception):
    """Base exception for assistant orchestration."""

    kind: ErrorKind = ErrorKind.REQUEST_FAILED

    def __init__(self, message: str, *, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "message": self.message}


class ProviderError(AssistantError):
    """
    Failure surfaced by a provider adapter.

    Attributes:
        provider: Provider name ("openai" / "anthropic")
        retry_after: Backoff hint in seconds for rate limits, if the provider sent one
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.REQUEST_FAILED,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, kind=kind)
        self.provider = provider
        self.retry_after = retry_after
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.RATE_LIMITED


class ProviderStateMissingError(AssistantError):
    """A stateful continuation was requested without a stored response id."""

    kind = ErrorKind.CONTRACT_VIOLATION


class ToolError(AssistantError):
    """Tool lookup, validation, authorization, or execution failure."""

    kind = ErrorKind.TOOL_FAILED


class ToolNotFoundError(ToolError):
    kind = ErrorKind.TOOL_NOT_FOUND


class ToolDisabledError(ToolError):
    kind = ErrorKind.TOOL_DISABLED


class ToolAuthorizationError(ToolError):
    kind = ErrorKind.TOOL_AUTHORIZATION_FAILED


class ToolArgumentError(ToolError):
    kind = ErrorKind.SCHEMA_INVALID


class ToolTimeoutError(ToolError):
    kind = ErrorKind.TOOL_TIMEOUT


class ThreadNotFoundError(AssistantError):
    """Thread does not exist or is not owned by the caller."""


class MessageNotFoundError(AssistantError):
    """Message does not exist or is not visible to the caller."""


class ToolExecutionNotFoundError(AssistantError):
    """Tool execution does not exist or is not owned by the caller."""


class InvalidToolExecutionStateError(AssistantError):
    """The requested transition is not allowed from the execution's status."""


class UserNotFoundError(AssistantError):
    """User does not exist."""
