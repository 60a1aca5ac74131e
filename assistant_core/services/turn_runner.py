"""
Turn orchestration: one user message -> one assistant message.

run() is idempotent per user message (one Turn per user message). It works in
two short transactions around the provider calls so no database transaction
is held open while waiting on a provider:

1. Read: user, thread, context pack, allowed tools, provider requests.
2. Provider chain (each attempt logged in its own transaction).
3. Write, under the thread lock: assistant message, tool proposals, the
   pending-followup flag, and the Turn, all in one commit.

Auto-runnable tool executions are handed to the job queue after the commit.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings, get_settings
from ..db.database import with_unit_of_work
from ..db.models import AssistantEvent, Message, Thread, Tool, ToolExecution, Turn, User
from ..db.repositories import (
    MessagesRepository,
    ThreadsRepository,
    ToolExecutionsRepository,
    TurnsRepository,
    UsersRepository,
)
from ..errors import MessageNotFoundError
from ..providers.base import LLMProvider, ProviderRequest
from ..providers.router import ProviderRouter
from ..utils.logging import get_logger, get_trace_id, new_trace_id, trace_context
from .broadcaster import Broadcaster, get_broadcaster
from .context_builder import ContextBuilder
from .llm_responder import GENERATION_FAILED_TEXT, LlmResponder, LlmResponse
from .tool_policy import ToolPolicy
from .tool_proposals import RecordedProposal, ToolProposalRecorder

logger = get_logger(__name__)

EMPTY_ANSWER_TEXT = "I couldn't generate a response. Please try again."
PROPOSALS_ONLY_TEXT = "I have some proposed actions for you to review below."
WORKING_TEXT = "Working on it — I'm fetching the latest info now."

EnqueueTool = Callable[[uuid.UUID], Awaitable[Any]]


def finalize_answer(text: Optional[str], proposals: Sequence[RecordedProposal]) -> str:
    """Never-empty assistant text for a provider answer."""
    answer = (text or "").strip()
    if answer:
        return answer
    if any(p.auto_run for p in proposals):
        return WORKING_TEXT
    if proposals:
        return PROPOSALS_ONLY_TEXT
    return EMPTY_ANSWER_TEXT


@dataclass
class TurnOutcome:
    """Persisted result of a turn."""

    turn: Turn
    assistant_message: Optional[Message]
    tool_executions: List[ToolExecution] = field(default_factory=list)
    created: bool = True

    @property
    def auto_execution_ids(self) -> List[uuid.UUID]:
        return [e.id for e in self.tool_executions if e.status == "queued"]


@dataclass
class _Prepared:
    user_message: Message
    thread: Thread
    user: User
    trace_id: str
    page_context: Dict[str, Any]
    context: Dict[str, Any]
    tools: List[Tool]
    requests: List[Tuple[LLMProvider, ProviderRequest]]


class TurnRunner:
    """Runs the assistant turn for a persisted user message."""

    def __init__(
        self,
        *,
        responder: LlmResponder,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        router: Optional[ProviderRouter] = None,
        policy: Optional[ToolPolicy] = None,
        recorder: Optional[ToolProposalRecorder] = None,
        context_builder: Optional[ContextBuilder] = None,
        broadcaster: Optional[Broadcaster] = None,
        enqueue_tool: Optional[EnqueueTool] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.responder = responder
        self.session_factory = session_factory
        self.router = router or ProviderRouter(self.settings)
        self.policy = policy or ToolPolicy()
        self.recorder = recorder or ToolProposalRecorder(self.policy)
        self.context_builder = context_builder or ContextBuilder(
            self.settings.assistant_context_max_chars
        )
        self.broadcaster = broadcaster or get_broadcaster()
        self.enqueue_tool = enqueue_tool

    async def run(self, user_message_id: uuid.UUID) -> TurnOutcome:
        """
        Answer a user message.

        Raises:
            MessageNotFoundError: No such user message
        """
        existing = await self._existing(user_message_id)
        if existing is not None:
            logger.info(
                "Turn already recorded",
                user_message_id=str(user_message_id),
                turn_id=str(existing.turn.id),
            )
            # A retried delivery may follow a commit whose enqueue never happened
            await self._enqueue_auto_executions(existing)
            return existing

        prepared = await self._prepare(user_message_id)

        with trace_context(prepared.trace_id, thread_id=str(prepared.thread.id)):
            started = time.monotonic()
            response = await self.responder.respond(
                prepared.requests, user_id=prepared.user.id
            )
            latency_ms = int((time.monotonic() - started) * 1000)

            outcome = await self._persist(prepared, response, latency_ms)
            if not outcome.created:
                return outcome

            logger.info(
                "Turn finished",
                turn_id=str(outcome.turn.id),
                status=outcome.turn.status,
                provider=outcome.turn.provider_name,
                tool_execution_count=len(outcome.tool_executions),
                latency_ms=latency_ms,
            )

            if outcome.assistant_message is not None:
                await self.broadcaster.message_created(outcome.assistant_message)
            for execution in outcome.tool_executions:
                await self.broadcaster.tool_execution_updated(execution)

            await self._enqueue_auto_executions(outcome)
            return outcome

    async def _enqueue_auto_executions(self, outcome: TurnOutcome) -> None:
        if self.enqueue_tool is None:
            return
        for execution_id in outcome.auto_execution_ids:
            await self.enqueue_tool(execution_id)

    async def _existing(self, user_message_id: uuid.UUID) -> Optional[TurnOutcome]:
        async with with_unit_of_work(self.session_factory) as session:
            return await self._load_outcome(session, user_message_id)

    async def _load_outcome(
        self, session: AsyncSession, user_message_id: uuid.UUID
    ) -> Optional[TurnOutcome]:
        turn = await TurnsRepository(session).get_by_user_message(user_message_id)
        if turn is None:
            return None
        message = None
        executions: List[ToolExecution] = []
        if turn.assistant_message_id is not None:
            message = await MessagesRepository(session).get_message(turn.assistant_message_id)
            executions = await ToolExecutionsRepository(session).list_for_message(
                turn.assistant_message_id
            )
        return TurnOutcome(
            turn=turn, assistant_message=message, tool_executions=executions, created=False
        )

    async def _prepare(self, user_message_id: uuid.UUID) -> _Prepared:
        async with with_unit_of_work(self.session_factory) as session:
            user_message = await MessagesRepository(session).get_message(user_message_id)
            if user_message is None or user_message.role != "user":
                raise MessageNotFoundError(f"User message {user_message_id} not found")

            thread = await session.get(Thread, user_message.thread_id)
            user = await UsersRepository(session).get_user_by_id(thread.user_id)
            meta = user_message.message_metadata or {}
            page_context = dict(meta.get("page_context") or {})
            trace_id = meta.get("trace_id") or get_trace_id() or new_trace_id()

            context = await self.context_builder.build(session, user, page_context)
            tools = await self.policy.allowed_tools(
                session, user=user, thread=thread, page_context=page_context
            )
            system_prompt = self.context_builder.system_prompt(
                context, self.settings.assistant_system_prompt
            )

            requests = []
            for provider in self.responder.providers:
                request = await self.router.build_turn_request(
                    session,
                    provider,
                    thread_id=thread.id,
                    user_message=user_message,
                    system_prompt=system_prompt,
                    tools=tools,
                )
                requests.append((provider, request))

            logger.info(
                "Turn context built",
                thread_id=str(thread.id),
                tool_keys=[t.tool_key for t in tools],
                providers=[p.name for p, _ in requests],
            )
            return _Prepared(
                user_message=user_message,
                thread=thread,
                user=user,
                trace_id=trace_id,
                page_context=page_context,
                context=context,
                tools=tools,
                requests=requests,
            )

    async def _persist(
        self, prepared: _Prepared, response: LlmResponse, latency_ms: int
    ) -> TurnOutcome:
        async with with_unit_of_work(self.session_factory) as session:
            thread = await ThreadsRepository(session).lock_thread(prepared.thread.id)

            # A concurrent delivery of the same job may have finished first
            existing = await self._load_outcome(session, prepared.user_message.id)
            if existing is not None:
                return existing

            user = await UsersRepository(session).get_user_by_id(thread.user_id)
            messages = MessagesRepository(session)
            assistant = await messages.create_message(
                thread.id, role="assistant", content=EMPTY_ANSWER_TEXT
            )

            proposals: List[RecordedProposal] = []
            if response.ok:
                proposals = await self.recorder.record(
                    session,
                    thread=thread,
                    user=user,
                    assistant_message=assistant,
                    tool_calls=response.tool_calls,
                    trace_id=prepared.trace_id,
                    page_context=prepared.page_context,
                )
                pending = (
                    await ToolExecutionsRepository(session).count_non_terminal(assistant.id)
                    > 0
                )
                result = response.result
                assistant.content = finalize_answer(result.text, proposals)
                metadata: Dict[str, Any] = {
                    "trace_id": prepared.trace_id,
                    "provider": response.provider,
                    "model": response.model,
                    "provider_state": dict(result.provider_state),
                    "tool_calls": [
                        {
                            "provider_tool_call_id": call.provider_tool_call_id,
                            "tool_key": call.tool_key,
                            "args": call.args,
                        }
                        for call in result.tool_calls
                    ],
                    "pending_tool_followup": pending,
                    "llm_api_log_id": str(response.llm_api_log_id)
                    if response.llm_api_log_id
                    else None,
                }
                if result.content_blocks:
                    metadata["provider_content_blocks"] = result.content_blocks
                assistant.update_metadata(**metadata)
            else:
                assistant.content = GENERATION_FAILED_TEXT
                assistant.update_metadata(
                    trace_id=prepared.trace_id,
                    provider=response.provider,
                    error=response.error,
                    error_type=response.error_type,
                    pending_tool_followup=False,
                )
                session.add(
                    AssistantEvent(
                        id=uuid.uuid4(),
                        trace_id=prepared.trace_id,
                        thread_id=thread.id,
                        event_type="turn.failed",
                        severity="error",
                        payload={
                            "user_message_id": str(prepared.user_message.id),
                            "providers_tried": response.providers_tried,
                            "error": response.error,
                        },
                    )
                )

            turn = Turn(
                id=uuid.uuid4(),
                thread_id=thread.id,
                user_message_id=prepared.user_message.id,
                assistant_message_id=assistant.id,
                trace_id=prepared.trace_id,
                context_snapshot=prepared.context,
                llm_api_log_id=response.llm_api_log_id,
                latency_ms=response.latency_ms if response.ok else latency_ms,
                status="success" if response.ok else "error",
                provider_name=response.provider if response.ok else None,
                provider_state=dict(response.result.provider_state) if response.ok else {},
                error=response.error,
            )
            session.add(turn)
            ThreadsRepository(session).touch(thread)
            await session.flush()

            return TurnOutcome(
                turn=turn,
                assistant_message=assistant,
                tool_executions=[p.execution for p in proposals if p.created],
                created=True,
            )
