"""
Tool follow-up continuation.

ToolFollowupResponder resumes the provider conversation of an assistant
message once its tool executions are terminal. Each iteration sends the
available tool results (as function_call_output items against the previous
response id, or as a full replay with tool_result adjacency), then either
returns the model's text or records and runs the new tool calls and goes
round again, up to ASSISTANT_FOLLOWUP_MAX_ITERATIONS provider calls.

FollowupCoordinator decides when to run it: after any execution of a message
reaches a terminal status it checks, under the thread lock, that the message
still waits for a follow-up and that no sibling execution is pending, then
claims the follow-up and enqueues exactly one tool_followup job.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings, get_settings
from ..db.database import with_unit_of_work
from ..db.models import Message, Thread, Tool, ToolExecution, utcnow
from ..db.repositories import (
    MessagesRepository,
    ThreadsRepository,
    ToolExecutionsRepository,
    TurnsRepository,
    UsersRepository,
)
from ..errors import ErrorKind, MessageNotFoundError, ProviderStateMissingError
from ..providers.base import LLMProvider, ProviderRequest, ToolCall
from ..providers.message_builders import AnthropicMessageBuilder
from ..providers.router import ProviderRouter
from ..utils.logging import get_logger, trace_context
from .broadcaster import Broadcaster, get_broadcaster
from .context_builder import ContextBuilder
from .llm_responder import LlmResponder
from .tool_execution import ToolExecutionEngine
from .tool_policy import ToolPolicy
from .tool_proposals import ToolProposalRecorder
from .tool_results import (
    execution_result_payload,
    load_tool_result_lookup,
    malformed_call_payload,
)

logger = get_logger(__name__)

DONE_TEXT = "Done."
FOLLOWUP_FAILED_TEXT = "Sorry — I couldn't finish the tool follow-up."
MISSING_STATE_TEXT = (
    "Sorry — I couldn't continue the tool-assisted response (missing provider state)."
)

EnqueueFollowup = Callable[[uuid.UUID, str], Awaitable[Any]]


def confirmation_required_payload(execution: ToolExecution) -> Dict[str, Any]:
    """Result handed to the model for a gated call proposed mid follow-up."""
    return {
        "success": False,
        "tool_key": execution.tool_key,
        "error": "This action requires user confirmation; it has been proposed to the user.",
        "error_kind": ErrorKind.CONFIRMATION_REQUIRED.value,
        "tool_execution_id": str(execution.id),
    }


@dataclass
class FollowupResult:
    """Final text and continuation state of one follow-up run."""

    text: str
    status: str
    provider: Optional[str] = None
    provider_state: Dict[str, Any] = field(default_factory=dict)
    batches: List[List[Dict[str, Any]]] = field(default_factory=list)
    iterations: int = 0
    error_type: Optional[str] = None


@dataclass
class _FollowupState:
    message: Message
    thread: Thread
    user_id: uuid.UUID
    trace_id: Optional[str]
    provider_name: Optional[str]
    previous_response_id: Optional[str]
    system_prompt: str
    tools: List[Tool]
    page_context: Dict[str, Any]
    history: List[Message]
    lookup: Dict[Tuple[str, str], Dict[str, Any]]
    batches: List[List[Dict[str, Any]]]
    outputs: List[Tuple[str, Dict[str, Any]]]


class ToolFollowupResponder:
    """Runs the bounded follow-up loop for one assistant message."""

    def __init__(
        self,
        *,
        responder: LlmResponder,
        engine: ToolExecutionEngine,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        router: Optional[ProviderRouter] = None,
        policy: Optional[ToolPolicy] = None,
        recorder: Optional[ToolProposalRecorder] = None,
        context_builder: Optional[ContextBuilder] = None,
        broadcaster: Optional[Broadcaster] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.responder = responder
        self.engine = engine
        self.session_factory = session_factory
        self.router = router or ProviderRouter(self.settings)
        self.policy = policy or ToolPolicy()
        self.recorder = recorder or ToolProposalRecorder(self.policy)
        self.context_builder = context_builder or ContextBuilder(
            self.settings.assistant_context_max_chars
        )
        self.broadcaster = broadcaster or get_broadcaster()
        self.max_iterations = self.settings.assistant_followup_max_iterations

    async def run(self, assistant_message_id: uuid.UUID) -> FollowupResult:
        """
        Produce the final answer for an assistant message.

        Provider failures, missing continuation state and the iteration cap
        all end in a fixed apology rather than an exception.

        Raises:
            MessageNotFoundError: No such assistant message
        """
        state = await self._load(assistant_message_id)

        with trace_context(
            state.trace_id,
            thread_id=str(state.thread.id),
            assistant_message_id=str(assistant_message_id),
        ):
            provider = self.responder.provider_named(state.provider_name)
            if provider is None:
                logger.error("Follow-up provider unavailable", provider=state.provider_name)
                return FollowupResult(
                    text=FOLLOWUP_FAILED_TEXT,
                    status="error",
                    provider=state.provider_name,
                    error_type=ErrorKind.REQUEST_FAILED.value,
                )
            return await self._loop(provider, state)

    async def _loop(self, provider: LLMProvider, state: _FollowupState) -> FollowupResult:
        previous_response_id = state.previous_response_id
        provider_state: Dict[str, Any] = {}
        new_batches: List[List[Dict[str, Any]]] = []
        outputs = state.outputs

        for iteration in range(1, self.max_iterations + 1):
            try:
                request = self._build_request(
                    provider, state, previous_response_id, outputs, new_batches
                )
            except ProviderStateMissingError:
                logger.error("Follow-up missing provider state", provider=provider.name)
                return FollowupResult(
                    text=MISSING_STATE_TEXT,
                    status="error",
                    provider=provider.name,
                    batches=new_batches,
                    iterations=iteration - 1,
                    error_type=ErrorKind.CONTRACT_VIOLATION.value,
                )

            recorded = await self.responder.call_provider(
                provider, request, user_id=state.user_id
            )
            if not recorded.ok:
                logger.warning(
                    "Follow-up provider call failed",
                    provider=provider.name,
                    iteration=iteration,
                    error_type=recorded.error.kind.value,
                )
                return FollowupResult(
                    text=FOLLOWUP_FAILED_TEXT,
                    status="error",
                    provider=provider.name,
                    provider_state=provider_state,
                    batches=new_batches,
                    iterations=iteration,
                    error_type=recorded.error.kind.value,
                )

            result = recorded.result
            provider_state = dict(result.provider_state)
            previous_response_id = provider_state.get("response_id") or previous_response_id
            if result.content_blocks:
                new_batches.append(result.content_blocks)

            if not result.tool_calls:
                logger.info("Follow-up answered", iteration=iteration)
                return FollowupResult(
                    text=(result.text or "").strip() or DONE_TEXT,
                    status="success",
                    provider=provider.name,
                    provider_state=provider_state,
                    batches=new_batches,
                    iterations=iteration,
                )

            if iteration == self.max_iterations:
                break

            outputs = await self._handle_tool_calls(state, result.tool_calls)
            outputs += [
                (call_id, malformed_call_payload())
                for call_id in provider_state.get("dropped_call_ids") or []
            ]
            for call_id, payload in outputs:
                state.lookup[(str(state.message.id), call_id)] = payload

        logger.warning(
            "Follow-up iteration cap reached", max_iterations=self.max_iterations
        )
        return FollowupResult(
            text=FOLLOWUP_FAILED_TEXT,
            status="error",
            provider=provider.name,
            provider_state=provider_state,
            batches=new_batches,
            iterations=self.max_iterations,
            error_type="iteration_cap",
        )

    def _build_request(
        self,
        provider: LLMProvider,
        state: _FollowupState,
        previous_response_id: Optional[str],
        outputs: List[Tuple[str, Dict[str, Any]]],
        new_batches: List[List[Dict[str, Any]]],
    ) -> ProviderRequest:
        if provider.stateful:
            return self.router.build_stateful_followup(
                provider,
                system_prompt=state.system_prompt,
                tools=state.tools,
                previous_response_id=previous_response_id,
                outputs=outputs,
            )
        return self.router.build_replay_followup(
            provider,
            system_prompt=state.system_prompt,
            tools=state.tools,
            history=state.history,
            tool_results=state.lookup,
            origin_message_id=state.message.id,
            batches=state.batches + new_batches,
        )

    async def _handle_tool_calls(
        self, state: _FollowupState, tool_calls: List[ToolCall]
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """Record new calls, run the auto-runnable ones inline, and collect results."""
        async with with_unit_of_work(self.session_factory) as session:
            thread = await ThreadsRepository(session).lock_thread(state.thread.id)
            user = await UsersRepository(session).get_user_by_id(state.user_id)
            message = await MessagesRepository(session).get_message(state.message.id)
            proposals = await self.recorder.record(
                session,
                thread=thread,
                user=user,
                assistant_message=message,
                tool_calls=tool_calls,
                trace_id=state.trace_id,
                page_context=state.page_context,
            )

        outputs: List[Tuple[str, Dict[str, Any]]] = []
        for proposal in proposals:
            execution = proposal.execution
            if proposal.created and proposal.auto_run:
                execution = (await self.engine.execute(execution.id)).execution
            elif proposal.created:
                await self.broadcaster.tool_execution_updated(execution)

            if execution.is_terminal:
                payload = execution_result_payload(execution)
            elif execution.requires_confirmation and execution.approved_by_user_id is None:
                payload = confirmation_required_payload(execution)
            else:
                payload = execution_result_payload(execution)
            outputs.append((proposal.call_id, payload))

        logger.info(
            "Follow-up tool calls handled",
            tool_keys=[p.execution.tool_key for p in proposals],
        )
        return outputs

    async def _load(self, assistant_message_id: uuid.UUID) -> _FollowupState:
        async with with_unit_of_work(self.session_factory) as session:
            messages = MessagesRepository(session)
            message = await messages.get_message(assistant_message_id)
            if message is None or message.role != "assistant":
                raise MessageNotFoundError(
                    f"Assistant message {assistant_message_id} not found"
                )
            thread = await session.get(Thread, message.thread_id)
            user = await UsersRepository(session).get_user_by_id(thread.user_id)
            turn = await TurnsRepository(session).get_by_assistant_message(message.id)

            meta = message.message_metadata or {}
            turn_state = (turn.provider_state if turn else None) or {}
            message_state = meta.get("provider_state") or {}

            page_context: Dict[str, Any] = {}
            context: Dict[str, Any] = {}
            if turn is not None:
                context = turn.context_snapshot or {}
                user_message = await messages.get_message(turn.user_message_id)
                if user_message is not None:
                    page_context = dict(
                        (user_message.message_metadata or {}).get("page_context") or {}
                    )

            tools = await self.policy.allowed_tools(
                session, user=user, thread=thread, page_context=page_context
            )

            history = await messages.list_recent(
                thread.id,
                limit=self.settings.assistant_anthropic_history_limit,
                until=message,
            )
            if message.id not in {m.id for m in history}:
                history.append(message)
            lookup = await load_tool_result_lookup(
                session, thread.id, [m.id for m in history if m.role == "assistant"]
            )

            outputs: List[Tuple[str, Dict[str, Any]]] = []
            executions = await ToolExecutionsRepository(session).list_for_message(message.id)
            for execution in executions:
                for call_id in execution.provider_call_ids:
                    payload = lookup.get((str(message.id), call_id))
                    outputs.append((call_id, payload or execution_result_payload(execution)))
            # Dropped calls still owe the provider an output
            dropped = (
                turn_state.get("dropped_call_ids")
                or message_state.get("dropped_call_ids")
                or []
            )
            answered = {call_id for call_id, _ in outputs}
            outputs += [
                (call_id, malformed_call_payload())
                for call_id in dropped
                if call_id not in answered
            ]

            return _FollowupState(
                message=message,
                thread=thread,
                user_id=user.id,
                trace_id=meta.get("trace_id") or (turn.trace_id if turn else None),
                provider_name=meta.get("provider") or (turn.provider_name if turn else None),
                previous_response_id=turn_state.get("response_id")
                or message_state.get("response_id"),
                system_prompt=self.context_builder.system_prompt(
                    context, self.settings.assistant_system_prompt
                ),
                tools=tools,
                page_context=page_context,
                history=history,
                lookup=lookup,
                batches=AnthropicMessageBuilder.assistant_batches(message),
                outputs=outputs,
            )


class FollowupCoordinator:
    """Triggers, and later finalizes, the follow-up of an assistant message."""

    def __init__(
        self,
        *,
        responder: Optional[ToolFollowupResponder] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        broadcaster: Optional[Broadcaster] = None,
        enqueue_followup: Optional[EnqueueFollowup] = None,
    ):
        self.responder = responder
        self.session_factory = session_factory
        self.broadcaster = broadcaster or get_broadcaster()
        self.enqueue_followup = enqueue_followup

    async def maybe_trigger(self, assistant_message_id: uuid.UUID) -> Optional[str]:
        """
        Claim and enqueue the follow-up if the message is ready for it.

        The flag check, the sibling check and the claim happen under the
        thread lock, so two siblings finishing together enqueue one job. A
        claim that was committed but never handed to the queue is enqueued
        again with the same claim.

        Returns:
            The claim (job id) when a follow-up was enqueued, else None
        """
        async with with_unit_of_work(self.session_factory) as session:
            messages = MessagesRepository(session)
            message = await messages.get_message(assistant_message_id)
            if message is None:
                return None
            await ThreadsRepository(session).lock_thread(message.thread_id)
            message = await messages.lock_message(assistant_message_id)

            meta = message.message_metadata or {}
            if not meta.get("pending_tool_followup") or meta.get("tool_followup_completed_at"):
                return None

            claim = meta.get("followup_claim")
            if claim:
                if meta.get("followup_enqueued_at"):
                    return None
                logger.warning(
                    "Follow-up claim was never enqueued",
                    assistant_message_id=str(message.id),
                    claim=claim,
                )
            else:
                pending = await ToolExecutionsRepository(session).count_non_terminal(message.id)
                if pending:
                    logger.debug(
                        "Follow-up waiting on siblings",
                        assistant_message_id=str(message.id),
                        pending=pending,
                    )
                    return None

                claim = uuid.uuid4().hex
                message.update_metadata(
                    followup_claim=claim, followup_claimed_at=utcnow().isoformat()
                )

        logger.info(
            "Follow-up claimed",
            assistant_message_id=str(assistant_message_id),
            claim=claim,
        )
        if self.enqueue_followup is not None:
            await self.enqueue_followup(assistant_message_id, claim)
            await self._mark_enqueued(assistant_message_id, claim)
        return claim

    async def _mark_enqueued(self, assistant_message_id: uuid.UUID, claim: str) -> None:
        async with with_unit_of_work(self.session_factory) as session:
            message = await MessagesRepository(session).lock_message(assistant_message_id)
            if message is None:
                return
            if (message.message_metadata or {}).get("followup_claim") == claim:
                message.update_metadata(followup_enqueued_at=utcnow().isoformat())

    async def complete(
        self, assistant_message_id: uuid.UUID, claim: Optional[str] = None
    ) -> Optional[Message]:
        """
        Run the follow-up loop and update the assistant message in place.

        A follow-up that already completed, or whose claim belongs to another
        job, is skipped.
        """
        async with with_unit_of_work(self.session_factory) as session:
            message = await MessagesRepository(session).get_message(assistant_message_id)
            if message is None:
                raise MessageNotFoundError(
                    f"Assistant message {assistant_message_id} not found"
                )
            meta = message.message_metadata or {}
            if meta.get("tool_followup_completed_at"):
                logger.info(
                    "Follow-up already completed",
                    assistant_message_id=str(assistant_message_id),
                )
                return message
            if claim is not None and meta.get("followup_claim") not in (None, claim):
                logger.warning(
                    "Follow-up claim mismatch",
                    assistant_message_id=str(assistant_message_id),
                    claim=claim,
                    current_claim=meta.get("followup_claim"),
                )
                return None

        result = await self.responder.run(assistant_message_id)

        async with with_unit_of_work(self.session_factory) as session:
            messages = MessagesRepository(session)
            message = await messages.get_message(assistant_message_id)
            await ThreadsRepository(session).lock_thread(message.thread_id)
            message = await messages.lock_message(assistant_message_id)
            if (message.message_metadata or {}).get("tool_followup_completed_at"):
                return message

            stored_batches = list(
                (message.message_metadata or {}).get("followup_content_blocks") or []
            )
            metadata_state = dict(
                (message.message_metadata or {}).get("provider_state") or {}
            )
            metadata_state.update(result.provider_state)

            message.content = result.text
            message.update_metadata(
                pending_tool_followup=False,
                tool_followup_completed_at=utcnow().isoformat(),
                followup_content_blocks=stored_batches + result.batches,
                followup_iterations=result.iterations,
                followup_status=result.status,
                followup_error_type=result.error_type,
                provider_state=metadata_state,
            )

            turn = await TurnsRepository(session).get_by_assistant_message(message.id)
            if turn is not None and result.provider_state:
                turn_state = dict(turn.provider_state or {})
                turn_state.update(result.provider_state)
                turn.provider_state = turn_state

            thread = await session.get(Thread, message.thread_id)
            ThreadsRepository(session).touch(thread)

        logger.info(
            "Follow-up completed",
            assistant_message_id=str(assistant_message_id),
            status=result.status,
            iterations=result.iterations,
        )
        await self.broadcaster.message_updated(message)
        return message
