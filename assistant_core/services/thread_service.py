"""
Request boundary for assistant threads.

Accepts user messages (persist first, then enqueue the turn), lists thread
history with tool executions, and records tool approvals. Submission is
idempotent per (thread, clientRequestId).
"""

import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.database import with_unit_of_work
from ..db.models import Message, Thread, ToolExecution
from ..db.repositories import (
    MessagesRepository,
    ThreadsRepository,
    ToolExecutionsRepository,
    UsersRepository,
)
from ..errors import UserNotFoundError
from ..utils.logging import get_logger, new_trace_id, trace_context
from .broadcaster import Broadcaster, get_broadcaster
from .tool_execution import ToolExecutionEngine

logger = get_logger(__name__)

TITLE_MAX_CHARS = 50

EnqueueJob = Callable[..., Awaitable[Any]]


def title_from(content: str) -> str:
    """Thread title from the first user message."""
    text = " ".join((content or "").split())
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[: TITLE_MAX_CHARS - 3].rstrip() + "..."


@dataclass
class SubmittedMessage:
    thread: Thread
    message: Message
    created: bool
    trace_id: str


class ThreadService:
    """Thread-level operations invoked by the HTTP layer."""

    def __init__(
        self,
        *,
        engine: ToolExecutionEngine,
        enqueue: EnqueueJob,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        broadcaster: Optional[Broadcaster] = None,
    ):
        self.engine = engine
        self.enqueue = enqueue
        self.session_factory = session_factory
        self.broadcaster = broadcaster or get_broadcaster()

    async def submit_message(
        self,
        *,
        user_id: uuid.UUID,
        content: str,
        thread_id: Optional[uuid.UUID] = None,
        page_context: Optional[Dict[str, Any]] = None,
        client_request_id: Optional[str] = None,
    ) -> SubmittedMessage:
        """
        Persist a user message and enqueue its turn.

        Args:
            user_id: Acting user
            content: Message text
            thread_id: Existing thread, or None to start a new one
            page_context: What the user is looking at in the UI
            client_request_id: Client-generated id; resubmitting it is a no-op

        Raises:
            UserNotFoundError: Unknown user
            ThreadNotFoundError: Thread missing or owned by someone else
        """
        async with with_unit_of_work(self.session_factory) as session:
            user = await UsersRepository(session).get_user_by_id(user_id)
            if user is None:
                raise UserNotFoundError(f"User {user_id} not found")

            threads = ThreadsRepository(session)
            messages = MessagesRepository(session)

            if thread_id is None:
                thread = await threads.create_thread(user.id, title=title_from(content))
                logger.info("Created new thread", thread_id=str(thread.id))
            else:
                thread = await threads.get_for_user(thread_id, user.id)
                thread = await threads.lock_thread(thread.id)
                if client_request_id:
                    existing = await messages.find_by_client_request_id(
                        thread.id, client_request_id
                    )
                    if existing is not None:
                        logger.info(
                            "Duplicate message submission",
                            thread_id=str(thread.id),
                            client_request_id=client_request_id,
                        )
                        return SubmittedMessage(
                            thread=thread,
                            message=existing,
                            created=False,
                            trace_id=(existing.message_metadata or {}).get("trace_id"),
                        )
                if not thread.title:
                    thread.title = title_from(content)

            trace_id = new_trace_id()
            message = await messages.create_message(
                thread.id,
                role="user",
                content=content,
                metadata={"trace_id": trace_id, "page_context": dict(page_context or {})},
                client_request_id=client_request_id,
            )
            threads.touch(thread)

        logger.info(
            "User message accepted",
            thread_id=str(thread.id),
            message_id=str(message.id),
            trace_id=trace_id,
        )
        await self.broadcaster.message_created(message)
        with trace_context(trace_id):
            await self.enqueue("chat_turn", user_message_id=str(message.id))
        return SubmittedMessage(thread=thread, message=message, created=True, trace_id=trace_id)

    async def get_thread(self, thread_id: uuid.UUID, user_id: uuid.UUID) -> Thread:
        async with with_unit_of_work(self.session_factory) as session:
            return await ThreadsRepository(session).get_for_user(thread_id, user_id)

    async def list_messages(
        self, thread_id: uuid.UUID, user_id: uuid.UUID
    ) -> Dict[str, Any]:
        """Thread with its messages and tool executions, oldest first."""
        async with with_unit_of_work(self.session_factory) as session:
            thread = await ThreadsRepository(session).get_for_user(thread_id, user_id)
            messages: List[Message] = await MessagesRepository(session).list_thread(thread.id)
            executions: List[ToolExecution] = await ToolExecutionsRepository(
                session
            ).list_for_thread(thread.id)
            return {"thread": thread, "messages": messages, "tool_executions": executions}

    async def approve_tool_execution(
        self, execution_id: uuid.UUID, user_id: uuid.UUID
    ) -> ToolExecution:
        """
        Approve a gated execution and enqueue it.

        Raises:
            ToolExecutionNotFoundError: Missing or owned by another user
            InvalidToolExecutionStateError: Not awaiting approval
        """
        execution = await self.engine.approve(execution_id, user_id)
        if execution.status == "queued":
            with trace_context(execution.trace_id):
                await self.enqueue("execute_tool", tool_execution_id=str(execution.id))
        return execution
