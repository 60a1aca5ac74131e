"""
Structured logging configuration for Assistant Core.

This module provides centralized logging configuration using structlog,
with request/trace context tracking and environment-specific formatting.
A single trace id is bound per turn, job, or tool execution so the LLM call
logs, tool execution records, and log lines for one exchange can be joined.
"""

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

# Context variable for request-scoped data
request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "request_context", default=None
)


class RequestContextProcessor:
    """
    Add request context to all log entries.

    This processor extracts request-scoped context (request_id, trace_id, thread_id,
    etc.) from context variables and adds them to every log entry within that scope.
    """

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        """Add request context to the event dict."""
        ctx = request_context.get()
        if ctx is not None:
            for key, value in ctx.items():
                # Explicit event fields win over ambient context
                event_dict.setdefault(key, value)
        return event_dict


class PerformanceProcessor:
    """Add elapsed time since the context was opened."""

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        ctx = request_context.get()
        if ctx and "start_time" in ctx:
            duration_ms = (time.time() - ctx["start_time"]) * 1000
            event_dict["duration_ms"] = round(duration_ms, 2)
            event_dict.pop("start_time", None)

        return event_dict


class EnvironmentProcessor:
    """
    Add environment-specific fields to log entries.

    Includes app version and environment.
    """

    def __init__(self, app_env: str, app_version: str):
        """Initialize with environment settings."""
        self.app_env = app_env
        self.app_version = app_version

    def __call__(
        self, logger: Any, method_name: str, event_dict: EventDict
    ) -> EventDict:
        """Add environment context to the event dict."""
        event_dict["env"] = self.app_env
        event_dict["version"] = self.app_version
        return event_dict


def filter_sensitive_data(
    logger: Any, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Filter sensitive data from log entries.

    Removes or masks sensitive fields like API keys and authorization headers
    to prevent accidental exposure in logs.
    """
    sensitive_keys = [
        "password",
        "api_key",
        "secret",
        "authorization",
        "access_token",
        # Note: generic "token" is allowed so token usage metrics stay visible
    ]

    for key in list(event_dict.keys()):
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in sensitive_keys):
            if isinstance(event_dict[key], str) and len(event_dict[key]) > 8:
                value = event_dict[key]
                event_dict[key] = f"{value[:4]}...{value[-4:]}"
            else:
                event_dict[key] = "***REDACTED***"

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    app_env: str = "development",
    app_version: str = "0.1.0",
    json_format: Optional[bool] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        app_env: Application environment (development, staging, production, test)
        app_version: Application version for tracking
        json_format: Force JSON output (None = auto-detect based on environment)
    """
    if json_format is None:
        json_format = app_env in ["staging", "production"]

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        RequestContextProcessor(),
        PerformanceProcessor(),
        EnvironmentProcessor(app_env, app_version),
        filter_sensitive_data,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        # Production: JSON output for log aggregation
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Development: Human-readable console output
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__ from the calling module)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def set_request_context(**kwargs: Any) -> None:
    """
    Set request-scoped context that will be included in all logs.

    Example:
        set_request_context(request_id="123", method="POST", path="/api/v1/assistant/...")
    """
    ctx = dict(request_context.get() or {})
    ctx.update(kwargs)
    request_context.set(ctx)


def clear_request_context() -> None:
    """Clear the request context (should be called at the end of each request)."""
    request_context.set(None)


def get_trace_id() -> Optional[str]:
    """Return the trace id bound to the current context, if any."""
    ctx = request_context.get()
    if ctx is None:
        return None
    return ctx.get("trace_id")


def new_trace_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def trace_context(trace_id: Optional[str] = None, **fields: Any) -> Iterator[str]:
    """
    Bind a trace id (and extra fields) for the duration of a block.

    The previous context is restored on exit so nested jobs inside one worker
    task do not leak identifiers into each other.

    Example:
        with trace_context(turn.trace_id, thread_id=str(thread.id)) as trace_id:
            ...
    """
    trace_id = trace_id or get_trace_id() or new_trace_id()
    previous = request_context.get()
    ctx = dict(previous or {})
    ctx.update(fields)
    ctx["trace_id"] = trace_id
    token = request_context.set(ctx)
    try:
        yield trace_id
    finally:
        request_context.reset(token)
