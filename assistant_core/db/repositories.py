"""
Repository layer for Assistant Core database operations.

Repositories encapsulate the query patterns of the orchestrator:
- Thread lookup with ownership checks and per-thread locking
- Message history windows and canonical tool-result lookup
- Turn lookup for idempotent re-entry and continuation state
- Tool execution grouping by originating assistant message
- Tool registry reads and seeding

SQLAlchemy errors are wrapped in RepositoryError so callers see one failure type.
"""

import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ThreadNotFoundError
from .database import lock_row
from .models import (
    NON_TERMINAL_TOOL_STATUSES,
    Message,
    Thread,
    Tool,
    ToolExecution,
    Turn,
    User,
    utcnow,
)


class RepositoryError(Exception):
    """Base exception for repository operations."""

    pass


class UsersRepository:
    """Read access to users."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        try:
            result = await self.session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error getting user: {e}") from e


class ThreadsRepository:
    """
    Repository for assistant threads.

    Threads are only ever returned to their owner; a thread id that exists but
    belongs to another user is reported exactly like a missing one.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_thread(
        self, user_id: uuid.UUID, title: Optional[str] = None
    ) -> Thread:
        try:
            thread = Thread(
                id=uuid.uuid4(),
                user_id=user_id,
                title=title,
                status="open",
                last_activity_at=utcnow(),
            )
            self.session.add(thread)
            await self.session.flush()
            return thread
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error creating thread: {e}") from e

    async def get_for_user(self, thread_id: uuid.UUID, user_id: uuid.UUID) -> Thread:
        """
        Get a thread owned by the user.

        Raises:
            ThreadNotFoundError: If missing or owned by someone else
        """
        try:
            result = await self.session.execute(
                select(Thread).where(Thread.id == thread_id, Thread.user_id == user_id)
            )
            thread = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error getting thread: {e}") from e

        if thread is None:
            raise ThreadNotFoundError(f"Thread {thread_id} not found")
        return thread

    async def lock_thread(self, thread_id: uuid.UUID) -> Thread:
        """Lock the thread row for the rest of the transaction."""
        thread = await lock_row(self.session, Thread, thread_id)
        if thread is None:
            raise ThreadNotFoundError(f"Thread {thread_id} not found")
        return thread

    def touch(self, thread: Thread) -> None:
        thread.last_activity_at = utcnow()


class MessagesRepository:
    """Repository for thread messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_message(
        self,
        thread_id: uuid.UUID,
        *,
        role: str,
        content: str,
        metadata: Optional[dict] = None,
        client_request_id: Optional[str] = None,
    ) -> Message:
        try:
            message = Message(
                id=uuid.uuid4(),
                thread_id=thread_id,
                role=role,
                content=content,
                message_metadata=dict(metadata or {}),
                client_request_id=client_request_id,
            )
            self.session.add(message)
            await self.session.flush()
            return message
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error creating message: {e}") from e

    async def get_message(self, message_id: uuid.UUID) -> Optional[Message]:
        try:
            result = await self.session.execute(
                select(Message).where(Message.id == message_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error getting message: {e}") from e

    async def find_by_client_request_id(
        self, thread_id: uuid.UUID, client_request_id: str
    ) -> Optional[Message]:
        result = await self.session.execute(
            select(Message).where(
                Message.thread_id == thread_id,
                Message.client_request_id == client_request_id,
            )
        )
        return result.scalars().first()

    async def lock_message(self, message_id: uuid.UUID) -> Optional[Message]:
        return await lock_row(self.session, Message, message_id)

    async def count_user_messages(self, thread_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Message)
            .where(Message.thread_id == thread_id, Message.role == "user")
        )
        return int(result.scalar_one())

    async def list_recent(
        self,
        thread_id: uuid.UUID,
        *,
        limit: int,
        roles: Sequence[str] = ("user", "assistant"),
        until: Optional[Message] = None,
        exclude_ids: Iterable[uuid.UUID] = (),
    ) -> List[Message]:
        """
        Get the most recent messages of a thread in chronological order.

        Args:
            limit: Maximum number of messages returned
            roles: Roles to include
            until: Only messages created at or before this one
            exclude_ids: Messages to leave out (e.g. the in-flight user message)
        """
        stmt = select(Message).where(
            Message.thread_id == thread_id, Message.role.in_(list(roles))
        )
        if until is not None:
            stmt = stmt.where(Message.created_at <= until.created_at)
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(Message.id.not_in(excluded))
        stmt = stmt.order_by(Message.created_at.desc()).limit(limit)

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database error listing messages: {e}") from e
        return list(reversed(result.scalars().all()))

    async def list_thread(self, thread_id: uuid.UUID, limit: int = 200) -> List[Message]:
        return await self.list_recent(
            thread_id, limit=limit, roles=("user", "assistant", "tool")
        )

    async def tool_result_messages(
        self, thread_id: uuid.UUID, assistant_message_ids: Iterable[uuid.UUID]
    ) -> Dict[Tuple[str, str], Message]:
        """
        Canonical tool-result messages keyed by (assistant message id, provider call id).

        When a result was emitted twice (job retry after commit) the latest wins.
        """
        wanted = {str(mid) for mid in assistant_message_ids}
        if not wanted:
            return {}

        result = await self.session.execute(
            select(Message)
            .where(Message.thread_id == thread_id, Message.role == "tool")
            .order_by(Message.created_at.asc())
        )

        found: Dict[Tuple[str, str], Message] = {}
        for message in result.scalars().all():
            meta = message.message_metadata or {}
            origin = meta.get("originating_assistant_message_id")
            if origin not in wanted:
                continue
            for call_id in meta.get("provider_tool_call_ids") or [
                meta.get("provider_tool_call_id")
            ]:
                if call_id:
                    found[(origin, call_id)] = message
        return found


class TurnsRepository:
    """Repository for turns."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_user_message(self, user_message_id: uuid.UUID) -> Optional[Turn]:
        result = await self.session.execute(
            select(Turn).where(Turn.user_message_id == user_message_id)
        )
        return result.scalar_one_or_none()

    async def get_by_assistant_message(
        self, assistant_message_id: uuid.UUID
    ) -> Optional[Turn]:
        result = await self.session.execute(
            select(Turn).where(Turn.assistant_message_id == assistant_message_id)
        )
        return result.scalar_one_or_none()

    async def latest_for_thread(self, thread_id: uuid.UUID) -> Optional[Turn]:
        result = await self.session.execute(
            select(Turn)
            .where(Turn.thread_id == thread_id)
            .order_by(Turn.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def reusable_openai_response_id(self, thread_id: uuid.UUID) -> Optional[str]:
        """
        Response id a new OpenAI turn may continue from.

        Only the latest turn qualifies: it must have been answered by OpenAI and
        must not still owe tool outputs. Anything else means the server-side
        conversation is missing turns and the history has to be replayed.
        """
        turn = await self.latest_for_thread(thread_id)
        if turn is None or turn.provider_name != "openai" or turn.status != "success":
            return None
        state = turn.provider_state or {}
        if state.get("awaiting_tool_outputs"):
            return None
        return state.get("response_id")


class ToolExecutionsRepository:
    """Repository for tool executions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, execution_id: uuid.UUID) -> Optional[ToolExecution]:
        result = await self.session.execute(
            select(ToolExecution).where(ToolExecution.id == execution_id)
        )
        return result.scalar_one_or_none()

    async def lock(self, execution_id: uuid.UUID) -> Optional[ToolExecution]:
        return await lock_row(self.session, ToolExecution, execution_id)

    async def find_by_dedup_hash(
        self, assistant_message_id: uuid.UUID, dedup_hash: str
    ) -> Optional[ToolExecution]:
        result = await self.session.execute(
            select(ToolExecution).where(
                ToolExecution.assistant_message_id == assistant_message_id,
                ToolExecution.dedup_hash == dedup_hash,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_message(
        self, assistant_message_id: uuid.UUID
    ) -> List[ToolExecution]:
        result = await self.session.execute(
            select(ToolExecution)
            .where(ToolExecution.assistant_message_id == assistant_message_id)
            .order_by(ToolExecution.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_for_thread(self, thread_id: uuid.UUID) -> List[ToolExecution]:
        result = await self.session.execute(
            select(ToolExecution)
            .where(ToolExecution.thread_id == thread_id)
            .order_by(ToolExecution.created_at.asc())
        )
        return list(result.scalars().all())

    async def count_non_terminal(self, assistant_message_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ToolExecution)
            .where(
                ToolExecution.assistant_message_id == assistant_message_id,
                ToolExecution.status.in_(NON_TERMINAL_TOOL_STATUSES),
            )
        )
        return int(result.scalar_one())


class ToolsRepository:
    """Repository for tool registry entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_enabled(self) -> List[Tool]:
        result = await self.session.execute(
            select(Tool).where(Tool.enabled.is_(True)).order_by(Tool.tool_key)
        )
        return list(result.scalars().all())

    async def get_by_key(self, tool_key: str) -> Optional[Tool]:
        result = await self.session.execute(select(Tool).where(Tool.tool_key == tool_key))
        return result.scalar_one_or_none()

    async def upsert(self, **fields) -> Tool:
        """Create or update a registry entry by tool_key. `enabled` is left alone on update."""
        tool = await self.get_by_key(fields["tool_key"])
        if tool is None:
            tool = Tool(id=uuid.uuid4(), **fields)
            self.session.add(tool)
        else:
            for key, value in fields.items():
                if key != "enabled":
                    setattr(tool, key, value)
        await self.session.flush()
        return tool
