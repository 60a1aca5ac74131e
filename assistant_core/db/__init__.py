"""
Database module for Assistant Core.

Single import point for all database functionality.
"""

from .database import (
    build_engine,
    configure_session_factory,
    create_tables,
    drop_tables,
    get_async_session,
    get_engine,
    get_session_factory,
    lock_row,
    on_shutdown,
    on_startup,
    ping,
    with_unit_of_work,
)
from .models import (
    AssistantEvent,
    Base,
    InterviewApplication,
    InterviewRound,
    LlmApiLog,
    Message,
    TargetCompany,
    TargetDomain,
    TargetJobRole,
    Thread,
    Tool,
    ToolExecution,
    Turn,
    User,
)
from .repositories import (
    MessagesRepository,
    RepositoryError,
    ThreadsRepository,
    ToolExecutionsRepository,
    ToolsRepository,
    TurnsRepository,
    UsersRepository,
)

__all__ = [
    # Session management
    "get_async_session",
    "with_unit_of_work",
    "get_engine",
    "get_session_factory",
    "configure_session_factory",
    "build_engine",
    "lock_row",
    # Lifecycle
    "on_startup",
    "on_shutdown",
    # Health
    "ping",
    # Schema
    "create_tables",
    "drop_tables",
    # Models
    "Base",
    "User",
    "InterviewApplication",
    "InterviewRound",
    "TargetCompany",
    "TargetJobRole",
    "TargetDomain",
    "Thread",
    "Message",
    "Turn",
    "Tool",
    "ToolExecution",
    "LlmApiLog",
    "AssistantEvent",
    # Repositories
    "UsersRepository",
    "ThreadsRepository",
    "MessagesRepository",
    "TurnsRepository",
    "ToolExecutionsRepository",
    "ToolsRepository",
    "RepositoryError",
]
