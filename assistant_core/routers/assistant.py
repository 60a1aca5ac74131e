"""
Assistant endpoints: thread messages, tool approvals, and the realtime stream.

Posting a message only persists it and enqueues the turn (202); the answer,
tool executions and follow-ups arrive over /events or on the next fetch.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..db.models import Message, Thread, ToolExecution
from ..services.broadcaster import InMemoryBroadcaster
from ..services.container import AssistantServices
from ..utils.logging import get_logger
from ..utils.sse_utils import sse_format, sse_heartbeat

router = APIRouter()
logger = get_logger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 15.0
NEW_THREAD = "new"


# Pydantic models for request/response validation
class SubmitMessageRequest(BaseModel):
    """Request body for posting a user message."""

    userId: UUID = Field(..., description="Acting user")
    content: str = Field(
        ...,
        description="Message text",
        min_length=1,
        max_length=8000,
        json_schema_extra={"example": "Summarize my profile"},
    )
    pageContext: Optional[Dict[str, Any]] = Field(
        None,
        description="What the user is looking at (page, route, application_uuid, ...)",
        json_schema_extra={"example": {"page": "applications", "route": "/applications"}},
    )
    clientRequestId: Optional[str] = Field(
        None,
        description="Client-provided ID for idempotency",
        max_length=128,
        json_schema_extra={"example": "client-msg-123"},
    )


class ApproveToolExecutionRequest(BaseModel):
    userId: UUID = Field(..., description="User approving the execution")


class MessageOut(BaseModel):
    id: str
    threadId: str
    role: str
    content: str
    pendingToolFollowup: bool = False
    traceId: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    createdAt: Optional[datetime] = None


class ToolExecutionOut(BaseModel):
    id: str
    threadId: str
    assistantMessageId: str
    toolKey: str
    status: str
    requiresConfirmation: bool
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    errorKind: Optional[str] = None
    traceId: Optional[str] = None
    createdAt: Optional[datetime] = None
    finishedAt: Optional[datetime] = None


class ThreadOut(BaseModel):
    id: str
    title: Optional[str] = None
    status: str
    lastActivityAt: Optional[datetime] = None


class SubmitMessageResponse(BaseModel):
    threadId: str
    message: MessageOut
    traceId: Optional[str] = None
    duplicate: bool = False


class ThreadMessagesResponse(BaseModel):
    thread: ThreadOut
    messages: List[MessageOut]
    toolExecutions: List[ToolExecutionOut]


def message_out(message: Message) -> MessageOut:
    meta = message.message_metadata or {}
    return MessageOut(
        id=str(message.id),
        threadId=str(message.thread_id),
        role=message.role,
        content=message.content,
        pendingToolFollowup=bool(meta.get("pending_tool_followup")),
        traceId=meta.get("trace_id"),
        metadata=meta,
        createdAt=message.created_at,
    )


def tool_execution_out(execution: ToolExecution) -> ToolExecutionOut:
    return ToolExecutionOut(
        id=str(execution.id),
        threadId=str(execution.thread_id),
        assistantMessageId=str(execution.assistant_message_id),
        toolKey=execution.tool_key,
        status=execution.status,
        requiresConfirmation=execution.requires_confirmation,
        args=execution.args or {},
        result=execution.result,
        error=execution.error,
        errorKind=execution.error_kind,
        traceId=execution.trace_id,
        createdAt=execution.created_at,
        finishedAt=execution.finished_at,
    )


def thread_out(thread: Thread) -> ThreadOut:
    return ThreadOut(
        id=str(thread.id),
        title=thread.title,
        status=thread.status,
        lastActivityAt=thread.last_activity_at,
    )


# Dependency for API key authentication
async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> str:
    """Verify API key from request header."""
    if not x_api_key or x_api_key != settings.api_key:
        logger.warning(
            "Invalid API key attempt",
            provided_key_prefix=x_api_key[:8] if x_api_key else None,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

    return x_api_key


def get_services(request: Request) -> AssistantServices:
    """Service graph built in the app lifespan."""
    return request.app.state.services


def parse_thread_id(thread_id: str, *, allow_new: bool = False) -> Optional[UUID]:
    if allow_new and thread_id == NEW_THREAD:
        return None
    try:
        return UUID(thread_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Thread {thread_id} not found",
        ) from None


@router.post(
    "/assistant/threads/{thread_id}/messages",
    response_model=SubmitMessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Post a user message",
    description="Persist a user message and enqueue the assistant turn. Use 'new' as thread_id to start a thread.",
)
async def submit_message(
    thread_id: str,
    body: SubmitMessageRequest,
    request: Request,
    api_key: str = Depends(verify_api_key),
    services: AssistantServices = Depends(get_services),  # noqa: B008
) -> SubmitMessageResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.info(
        "Assistant message received",
        request_id=request_id,
        thread_id=thread_id,
        has_page_context=bool(body.pageContext),
        has_client_request_id=bool(body.clientRequestId),
    )

    submitted = await services.threads.submit_message(
        user_id=body.userId,
        content=body.content,
        thread_id=parse_thread_id(thread_id, allow_new=True),
        page_context=body.pageContext,
        client_request_id=body.clientRequestId,
    )
    return SubmitMessageResponse(
        threadId=str(submitted.thread.id),
        message=message_out(submitted.message),
        traceId=submitted.trace_id,
        duplicate=not submitted.created,
    )


@router.get(
    "/assistant/threads/{thread_id}/messages",
    response_model=ThreadMessagesResponse,
    summary="List thread messages",
    description="Messages and tool executions of a thread, oldest first",
)
async def list_messages(
    thread_id: str,
    userId: UUID = Query(..., description="Thread owner"),  # noqa: B008
    api_key: str = Depends(verify_api_key),
    services: AssistantServices = Depends(get_services),  # noqa: B008
) -> ThreadMessagesResponse:
    listing = await services.threads.list_messages(parse_thread_id(thread_id), userId)
    return ThreadMessagesResponse(
        thread=thread_out(listing["thread"]),
        messages=[message_out(m) for m in listing["messages"]],
        toolExecutions=[tool_execution_out(e) for e in listing["tool_executions"]],
    )


@router.post(
    "/assistant/tool-executions/{execution_id}/approve",
    response_model=ToolExecutionOut,
    summary="Approve a gated tool execution",
    description="Moves a proposed execution to queued and enqueues it",
)
async def approve_tool_execution(
    execution_id: UUID,
    body: ApproveToolExecutionRequest,
    api_key: str = Depends(verify_api_key),
    services: AssistantServices = Depends(get_services),  # noqa: B008
) -> ToolExecutionOut:
    execution = await services.threads.approve_tool_execution(execution_id, body.userId)
    logger.info(
        "Tool execution approved",
        tool_execution_id=str(execution.id),
        tool_key=execution.tool_key,
        status=execution.status,
    )
    return tool_execution_out(execution)


@router.get(
    "/assistant/threads/{thread_id}/events",
    summary="Realtime thread events",
    description="Server-sent events: message.created, message.updated, tool_execution.updated",
)
async def thread_events(
    thread_id: str,
    request: Request,
    userId: UUID = Query(..., description="Thread owner"),  # noqa: B008
    api_key: str = Depends(verify_api_key),
    services: AssistantServices = Depends(get_services),  # noqa: B008
) -> StreamingResponse:
    thread = await services.threads.get_thread(parse_thread_id(thread_id), userId)
    broadcaster = services.broadcaster
    if not isinstance(broadcaster, InMemoryBroadcaster):
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="Realtime stream is not served by this process",
        )

    request_id = getattr(request.state, "request_id", "unknown")
    queue = broadcaster.subscribe(thread.id)

    async def event_generator():
        sent = 0
        # Reconnect after 5 seconds if the connection drops
        yield sse_format({"threadId": str(thread.id)}, event="ready", retry=5000)
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(
                        "Client disconnected from thread stream",
                        request_id=request_id,
                        thread_id=str(thread.id),
                        events_sent=sent,
                    )
                    break
                try:
                    event, payload = await asyncio.wait_for(
                        queue.get(), timeout=HEARTBEAT_INTERVAL_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield sse_heartbeat()
                    continue
                sent += 1
                yield sse_format(payload, event=event, id=f"{thread.id}-{sent}")
        finally:
            broadcaster.unsubscribe(thread.id, queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable Nginx buffering
            "X-Request-ID": request_id,
        },
    )
