"""
Service graph for one process.

build_services() wires the orchestrator components together around a job
queue; the FastAPI app builds it in its lifespan, tests build it against their
own session factory and scripted providers.
"""

from dataclasses import dataclass
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings, get_settings
from ..jobs.handlers import EXECUTE_TOOL, TOOL_FOLLOWUP, register_handlers
from ..jobs.queue import JobQueue
from ..providers import build_provider_chain
from ..providers.base import LLMProvider
from ..providers.router import ProviderRouter
from ..tools.registry import ToolRegistry, get_tool_registry
from .broadcaster import Broadcaster, get_broadcaster
from .context_builder import ContextBuilder
from .followup import FollowupCoordinator, ToolFollowupResponder
from .llm_logger import LlmCallLogger
from .llm_responder import LlmResponder
from .thread_service import ThreadService
from .tool_execution import ToolExecutionEngine
from .tool_policy import ToolPolicy
from .tool_proposals import ToolProposalRecorder
from .turn_runner import TurnRunner


@dataclass
class AssistantServices:
    settings: Settings
    queue: JobQueue
    broadcaster: Broadcaster
    registry: ToolRegistry
    policy: ToolPolicy
    responder: LlmResponder
    engine: ToolExecutionEngine
    turn_runner: TurnRunner
    followup_responder: ToolFollowupResponder
    coordinator: FollowupCoordinator
    threads: ThreadService


def build_services(
    *,
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    providers: Optional[Sequence[LLMProvider]] = None,
    broadcaster: Optional[Broadcaster] = None,
    queue: Optional[JobQueue] = None,
    registry: Optional[ToolRegistry] = None,
) -> AssistantServices:
    settings = settings or get_settings()
    broadcaster = broadcaster or get_broadcaster()
    registry = registry or get_tool_registry()
    queue = queue or JobQueue(
        workers=settings.assistant_job_workers,
        max_attempts=settings.assistant_job_max_attempts,
    )
    if providers is None:
        providers = build_provider_chain(settings)

    policy = ToolPolicy(registry)
    recorder = ToolProposalRecorder(policy)
    router = ProviderRouter(settings)
    context_builder = ContextBuilder(settings.assistant_context_max_chars)
    responder = LlmResponder(
        providers,
        call_logger=LlmCallLogger(session_factory),
        settings=settings,
    )
    engine = ToolExecutionEngine(
        session_factory=session_factory,
        registry=registry,
        policy=policy,
        broadcaster=broadcaster,
    )

    async def enqueue_tool(execution_id: UUID) -> None:
        await queue.enqueue(EXECUTE_TOOL, tool_execution_id=str(execution_id))

    async def enqueue_followup(assistant_message_id: UUID, claim: str) -> None:
        await queue.enqueue(
            TOOL_FOLLOWUP, assistant_message_id=str(assistant_message_id), claim=claim
        )

    turn_runner = TurnRunner(
        responder=responder,
        session_factory=session_factory,
        router=router,
        policy=policy,
        recorder=recorder,
        context_builder=context_builder,
        broadcaster=broadcaster,
        enqueue_tool=enqueue_tool,
        settings=settings,
    )
    followup_responder = ToolFollowupResponder(
        responder=responder,
        engine=engine,
        session_factory=session_factory,
        router=router,
        policy=policy,
        recorder=recorder,
        context_builder=context_builder,
        broadcaster=broadcaster,
        settings=settings,
    )
    coordinator = FollowupCoordinator(
        responder=followup_responder,
        session_factory=session_factory,
        broadcaster=broadcaster,
        enqueue_followup=enqueue_followup,
    )
    threads = ThreadService(
        engine=engine,
        enqueue=queue.enqueue,
        session_factory=session_factory,
        broadcaster=broadcaster,
    )

    services = AssistantServices(
        settings=settings,
        queue=queue,
        broadcaster=broadcaster,
        registry=registry,
        policy=policy,
        responder=responder,
        engine=engine,
        turn_runner=turn_runner,
        followup_responder=followup_responder,
        coordinator=coordinator,
        threads=threads,
    )
    register_handlers(queue, services)
    return services
