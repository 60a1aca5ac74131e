"""
Tool Execution Engine.

execute() is safe to call any number of times for the same execution:

1. Claim (own transaction): lock the row; terminal or running rows are left
   alone; the tool is resolved and re-checked against policy; gated calls
   without an approval move to pending_approval; otherwise the row moves
   proposed -> queued -> running.
2. Run (own transaction): validate, authorize, run the body under a timeout,
   then persist the terminal status, the canonical tool-result message and an
   event in the same commit as the tool's own writes.

Tool failures of any kind are recorded on the execution and never raised out
of the engine.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.database import with_unit_of_work
from ..db.models import AssistantEvent, Thread, Tool, ToolExecution, User, utcnow
from ..db.repositories import (
    MessagesRepository,
    ThreadsRepository,
    ToolExecutionsRepository,
    ToolsRepository,
    UsersRepository,
)
from ..errors import (
    ErrorKind,
    InvalidToolExecutionStateError,
    ToolAuthorizationError,
    ToolDisabledError,
    ToolError,
    ToolExecutionNotFoundError,
    ToolNotFoundError,
    ToolTimeoutError,
)
from ..tools.base import AssistantTool, ToolContext, ToolResult
from ..tools.registry import ToolRegistry, get_tool_registry
from ..utils.logging import get_logger, trace_context
from .broadcaster import Broadcaster, get_broadcaster
from .tool_policy import ToolPolicy, requires_confirmation

logger = get_logger(__name__)

MIN_TIMEOUT_SECONDS = 0.1
MAX_TIMEOUT_SECONDS = 60.0
MAX_ERROR_CHARS = 1000


def timeout_seconds(tool: Tool) -> float:
    """Tool timeout budget in seconds, clamped to 0.1-60."""
    seconds = (tool.timeout_ms or 0) / 1000.0
    return max(MIN_TIMEOUT_SECONDS, min(seconds, MAX_TIMEOUT_SECONDS))


@dataclass
class ExecutionOutcome:
    """State of an execution after one engine call."""

    execution: ToolExecution
    ran: bool = False

    @property
    def status(self) -> str:
        return self.execution.status

    @property
    def is_terminal(self) -> bool:
        return self.execution.is_terminal


class ToolExecutionEngine:
    """Runs ToolExecution records exactly once."""

    def __init__(
        self,
        *,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        registry: Optional[ToolRegistry] = None,
        policy: Optional[ToolPolicy] = None,
        broadcaster: Optional[Broadcaster] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry or get_tool_registry()
        self.policy = policy or ToolPolicy(self.registry)
        self.broadcaster = broadcaster or get_broadcaster()

    async def execute(self, execution_id: uuid.UUID) -> ExecutionOutcome:
        """
        Run one execution if it is runnable.

        Raises:
            ToolExecutionNotFoundError: No such execution
        """
        with trace_context(tool_execution_id=str(execution_id)):
            execution, runnable = await self._claim(execution_id)

            if runnable:
                execution = await self._run(execution_id)
                ran = True
            else:
                ran = False

            if ran or execution.status in ("pending_approval", "error"):
                await self.broadcaster.tool_execution_updated(execution)
            return ExecutionOutcome(execution=execution, ran=ran)

    async def approve(
        self, execution_id: uuid.UUID, user_id: uuid.UUID
    ) -> ToolExecution:
        """
        Record a user's approval of a gated execution and queue it.

        Approving an already approved (queued/running/terminal) execution is a
        no-op, so a double click or a retried request is harmless.

        Raises:
            ToolExecutionNotFoundError: Missing or owned by another user
        """
        async with with_unit_of_work(self.session_factory) as session:
            execution = await ToolExecutionsRepository(session).lock(execution_id)
            if execution is None or execution.user_id != user_id:
                raise ToolExecutionNotFoundError(f"Tool execution {execution_id} not found")

            if execution.status in ("proposed", "pending_approval"):
                execution.status = "queued"
                execution.approved_by_user_id = user_id
                execution.approved_at = utcnow()
                logger.info(
                    "Tool execution approved",
                    tool_execution_id=str(execution.id),
                    tool_key=execution.tool_key,
                )
            elif execution.approved_by_user_id is None and execution.requires_confirmation:
                raise InvalidToolExecutionStateError(
                    f"Tool execution {execution_id} cannot be approved from {execution.status}"
                )

        await self.broadcaster.tool_execution_updated(execution)
        return execution

    async def _claim(self, execution_id: uuid.UUID) -> Tuple[ToolExecution, bool]:
        async with with_unit_of_work(self.session_factory) as session:
            execution = await ToolExecutionsRepository(session).lock(execution_id)
            if execution is None:
                raise ToolExecutionNotFoundError(f"Tool execution {execution_id} not found")

            if execution.is_terminal or execution.status == "running":
                logger.info(
                    "Tool execution skipped",
                    tool_execution_id=str(execution.id),
                    status=execution.status,
                )
                return execution, False

            thread = await session.get(Thread, execution.thread_id)
            user = await UsersRepository(session).get_user_by_id(execution.user_id)
            try:
                tool, _ = await self._resolve(session, execution, thread, user)
            except ToolError as e:
                await self._record_failure(session, execution, e)
                return execution, False

            gated = execution.requires_confirmation or requires_confirmation(tool)
            if gated and execution.approved_by_user_id is None:
                # Gated calls only reach `queued` unapproved when the policy
                # rejected them at proposal time (e.g. a read-only page)
                if execution.status not in ("proposed", "pending_approval"):
                    await self._record_failure(
                        session,
                        execution,
                        ToolDisabledError(f"Tool is not available here: {execution.tool_key}"),
                    )
                    return execution, False
                if execution.status == "proposed":
                    execution.status = "pending_approval"
                logger.info(
                    "Tool execution awaiting approval",
                    tool_execution_id=str(execution.id),
                    tool_key=execution.tool_key,
                )
                return execution, False

            # proposed / queued -> running
            execution.status = "running"
            execution.started_at = utcnow()
            return execution, True

    async def _run(self, execution_id: uuid.UUID) -> ToolExecution:
        try:
            async with with_unit_of_work(self.session_factory) as session:
                execution = await ToolExecutionsRepository(session).lock(execution_id)
                thread = await session.get(Thread, execution.thread_id)
                user = await UsersRepository(session).get_user_by_id(execution.user_id)
                tool, impl = await self._resolve(session, execution, thread, user)

                ctx = ToolContext(session=session, user=user, thread=thread, execution=execution)
                result = await self._invoke(impl, tool, ctx, dict(execution.args or {}))

                self._finish(execution, result)
                await self._emit(session, execution)
                logger.info(
                    "Tool execution finished",
                    tool_key=execution.tool_key,
                    status=execution.status,
                    duration_ms=execution.duration_ms,
                )
                return execution
        except ToolError as e:
            # The tool's own writes were rolled back with the failed transaction
            async with with_unit_of_work(self.session_factory) as session:
                execution = await ToolExecutionsRepository(session).lock(execution_id)
                await self._record_failure(session, execution, e)
                return execution

    async def _resolve(
        self,
        session: AsyncSession,
        execution: ToolExecution,
        thread: Optional[Thread],
        user: Optional[User],
    ):
        """
        Registry row and implementation for an execution, re-checked against policy.

        Raises:
            ToolNotFoundError: No row or no implementation
            ToolDisabledError: Disabled, or no longer permitted for this user/thread
            ToolAuthorizationError: Execution user does not own the thread
        """
        tool = await ToolsRepository(session).get_by_key(execution.tool_key)
        if tool is None or execution.tool_key not in self.registry:
            raise ToolNotFoundError(f"Unknown tool: {execution.tool_key}")
        impl = self.registry.get(execution.tool_key)

        if thread is None or user is None or thread.user_id != execution.user_id:
            raise ToolAuthorizationError("Thread does not belong to this user")
        if not tool.enabled:
            raise ToolDisabledError(f"Tool is disabled: {execution.tool_key}")
        if not self.policy.is_permitted(tool, user=user, thread=thread):
            raise ToolDisabledError(f"Tool is not available here: {execution.tool_key}")
        return tool, impl

    async def _invoke(
        self,
        impl: AssistantTool,
        tool: Tool,
        ctx: ToolContext,
        args: Dict[str, Any],
    ) -> ToolResult:
        impl.validate(args, tool.arg_schema or None)
        await impl.authorize(ctx, args)

        budget = timeout_seconds(tool)
        try:
            return await asyncio.wait_for(impl.execute(ctx, args), timeout=budget)
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(f"Tool timed out after {budget:g}s") from e
        except ToolError:
            raise
        except Exception as e:
            logger.exception("Tool body raised", tool_key=tool.tool_key)
            raise ToolError(str(e) or e.__class__.__name__) from e

    @staticmethod
    def _finish(execution: ToolExecution, result: ToolResult) -> None:
        execution.finished_at = utcnow()
        execution.result = result.to_payload()
        if result.success:
            execution.status = "success"
            execution.error = None
            execution.error_kind = None
        else:
            execution.status = "error"
            execution.error = (result.error or "Tool failed")[:MAX_ERROR_CHARS]
            execution.error_kind = ErrorKind.TOOL_FAILED.value

    async def _record_failure(
        self, session: AsyncSession, execution: ToolExecution, error: ToolError
    ) -> None:
        if execution.is_terminal:
            return
        execution.status = "error"
        execution.error = error.message[:MAX_ERROR_CHARS]
        execution.error_kind = error.kind.value
        execution.finished_at = utcnow()
        execution.result = {"success": False, "data": None, "error": execution.error}
        await self._emit(session, execution)
        logger.warning(
            "Tool execution failed",
            tool_key=execution.tool_key,
            error_kind=execution.error_kind,
            error=execution.error,
        )

    async def _emit(self, session: AsyncSession, execution: ToolExecution) -> None:
        """Canonical tool-result message plus an operational event."""
        success = execution.status == "success"
        data = (execution.result or {}).get("data") if success else None
        content = (
            f"{execution.tool_key} succeeded"
            if success
            else f"{execution.tool_key} failed: {execution.error}"
        )
        await MessagesRepository(session).create_message(
            execution.thread_id,
            role="tool",
            content=content,
            metadata={
                "originating_assistant_message_id": str(execution.assistant_message_id),
                "provider_tool_call_id": execution.provider_tool_call_id,
                "provider_tool_call_ids": execution.provider_call_ids,
                "tool_key": execution.tool_key,
                "tool_execution_id": str(execution.id),
                "trace_id": execution.trace_id,
                "success": success,
                "data": data,
                "error": None if success else execution.error,
            },
        )
        session.add(
            AssistantEvent(
                id=uuid.uuid4(),
                trace_id=execution.trace_id,
                thread_id=execution.thread_id,
                event_type="tool_execution.succeeded" if success else "tool_execution.failed",
                severity="info" if success else "warning",
                payload={
                    "tool_execution_id": str(execution.id),
                    "tool_key": execution.tool_key,
                    "error_kind": execution.error_kind,
                    "duration_ms": execution.duration_ms,
                },
            )
        )
        thread = await session.get(Thread, execution.thread_id)
        if thread is not None:
            ThreadsRepository(session).touch(thread)
