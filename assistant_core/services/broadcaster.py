"""
Realtime push channel for assistant UI updates.

Events are published per thread: message.created, message.updated and
tool_execution.updated. The in-memory implementation fans events out to SSE
subscribers of this process; a multi-process deployment swaps in a
Broadcaster backed by a shared pub/sub.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..db.models import Message, ToolExecution
from ..utils.logging import get_logger
from ..utils.sse_utils import truncate_tool_data

logger = get_logger(__name__)


def message_payload(message: Message) -> Dict[str, Any]:
    meta = message.message_metadata or {}
    return {
        "id": str(message.id),
        "threadId": str(message.thread_id),
        "role": message.role,
        "content": message.content,
        "pendingToolFollowup": bool(meta.get("pending_tool_followup")),
        "traceId": meta.get("trace_id"),
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }


def tool_execution_payload(execution: ToolExecution) -> Dict[str, Any]:
    return truncate_tool_data(
        {
            "id": str(execution.id),
            "threadId": str(execution.thread_id),
            "assistantMessageId": str(execution.assistant_message_id),
            "toolKey": execution.tool_key,
            "status": execution.status,
            "requiresConfirmation": execution.requires_confirmation,
            "args": execution.args,
            "result": execution.result,
            "error": execution.error,
        }
    )


class Broadcaster(ABC):
    """Publishes thread-scoped events to connected UIs."""

    @abstractmethod
    async def publish(self, thread_id: UUID, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def message_created(self, message: Message) -> None:
        await self.publish(message.thread_id, "message.created", message_payload(message))

    async def message_updated(self, message: Message) -> None:
        await self.publish(message.thread_id, "message.updated", message_payload(message))

    async def tool_execution_updated(self, execution: ToolExecution) -> None:
        await self.publish(
            execution.thread_id,
            "tool_execution.updated",
            tool_execution_payload(execution),
        )


class InMemoryBroadcaster(Broadcaster):
    """Per-thread asyncio queues; slow subscribers drop events instead of blocking."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[UUID, List[asyncio.Queue]] = {}

    def subscribe(self, thread_id: UUID) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(thread_id, []).append(queue)
        return queue

    def unsubscribe(self, thread_id: UUID, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(thread_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(thread_id, None)

    async def publish(self, thread_id: UUID, event: str, payload: Dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(thread_id, [])):
            try:
                queue.put_nowait((event, payload))
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping realtime event for slow subscriber",
                    thread_id=str(thread_id),
                    event=event,
                )


_broadcaster: Optional[InMemoryBroadcaster] = None


def get_broadcaster() -> InMemoryBroadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = InMemoryBroadcaster()
    return _broadcaster
