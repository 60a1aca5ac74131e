"""
Shared test fixtures and configuration for assistant-core tests.

Every test gets its own in-memory SQLite database with the tool registry
seeded, a scripted provider chain in place of the SDK clients, and a job
queue that tests drain in their own task with run_until_empty().
"""

import os
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment before importing app
os.environ.update(
    {
        "APP_ENV": "test",
        "LOG_LEVEL": "DEBUG",
        "API_KEY": "test-api-key-0123456789abcdefghijklmnop",
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "OPENAI_API_KEY": "sk-test-openai",
        "ANTHROPIC_API_KEY": "sk-ant-test",
        "ASSISTANT_PROVIDER_CHAIN": "openai,anthropic",
        "ASSISTANT_RATE_LIMIT_MAX_WAIT_SECONDS": "1",
    }
)

from assistant_core.app import app  # noqa: E402
from assistant_core.config import get_settings  # noqa: E402
from assistant_core.db.database import (  # noqa: E402
    build_engine,
    configure_session_factory,
    create_tables,
    drop_tables,
    with_unit_of_work,
)
from assistant_core.db.models import (  # noqa: E402
    InterviewApplication,
    Message,
    Thread,
    User,
)
from assistant_core.db.repositories import (  # noqa: E402
    MessagesRepository,
    ThreadsRepository,
)
from assistant_core.errors import ErrorKind, ProviderError  # noqa: E402
from assistant_core.jobs.queue import JobQueue  # noqa: E402
from assistant_core.providers.base import (  # noqa: E402
    LLMProvider,
    ProviderRequest,
    ProviderResult,
    ToolCall,
)
from assistant_core.services.broadcaster import InMemoryBroadcaster  # noqa: E402
from assistant_core.services.container import build_services  # noqa: E402
from assistant_core.services.tool_policy import ToolPolicy  # noqa: E402
from assistant_core.services.tool_proposals import ToolProposalRecorder  # noqa: E402
from assistant_core.tools.registry import seed_tools  # noqa: E402


class ScriptedProvider(LLMProvider):
    """
    Provider double that replays queued results and records every request.

    Items in the script are ProviderResults or exceptions to raise. An empty
    script fails the call like a provider outage would.
    """

    def __init__(self, name: str = "openai", *, stateful: Optional[bool] = None):
        super().__init__(f"{name}-test-model")
        self.name = name
        self._stateful = (name == "openai") if stateful is None else stateful
        self.script: List[Any] = []
        self.requests: List[ProviderRequest] = []

    @property
    def stateful(self) -> bool:
        return self._stateful

    def queue(self, *items: Any) -> "ScriptedProvider":
        self.script.extend(items)
        return self

    async def run(self, request: ProviderRequest) -> ProviderResult:
        self.requests.append(request)
        if not self.script:
            raise ProviderError(
                "No scripted response left",
                kind=ErrorKind.REQUEST_FAILED,
                provider=self.name,
            )
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class Scripted:
    """Builders for provider results in each provider's continuation shape."""

    @staticmethod
    def openai(
        text: str = "",
        *,
        response_id: str = "resp_1",
        calls: Sequence[Tuple[str, str, Dict[str, Any]]] = (),
    ) -> ProviderResult:
        tool_calls = [ToolCall(cid, key, dict(args)) for cid, key, args in calls]
        return ProviderResult(
            provider="openai",
            model="openai-test-model",
            text=text,
            tool_calls=tool_calls,
            provider_state={
                "response_id": response_id,
                "awaiting_tool_outputs": bool(tool_calls),
            },
            input_tokens=120,
            output_tokens=30,
        )

    @staticmethod
    def anthropic(
        text: str = "",
        *,
        message_id: str = "msg_1",
        calls: Sequence[Tuple[str, str, Dict[str, Any]]] = (),
    ) -> ProviderResult:
        tool_calls = [ToolCall(cid, key, dict(args)) for cid, key, args in calls]
        blocks: List[Dict[str, Any]] = []
        if text:
            blocks.append({"type": "text", "text": text})
        blocks.extend(
            {"type": "tool_use", "id": c.provider_tool_call_id, "name": c.tool_key, "input": c.args}
            for c in tool_calls
        )
        return ProviderResult(
            provider="anthropic",
            model="anthropic-test-model",
            text=text,
            tool_calls=tool_calls,
            provider_state={"message_id": message_id},
            content_blocks=blocks,
        )

    @staticmethod
    def failure(
        provider: str = "openai",
        kind: ErrorKind = ErrorKind.REQUEST_FAILED,
        retry_after: Optional[float] = None,
    ) -> ProviderError:
        return ProviderError(
            f"{provider} scripted failure",
            kind=kind,
            provider=provider,
            retry_after=retry_after,
        )


class RecordingBroadcaster(InMemoryBroadcaster):
    """In-memory broadcaster that also keeps every published event."""

    def __init__(self):
        super().__init__()
        self.events: List[Tuple[uuid.UUID, str, Dict[str, Any]]] = []

    async def publish(self, thread_id, event, payload):
        self.events.append((thread_id, event, payload))
        await super().publish(thread_id, event, payload)

    def names(self) -> List[str]:
        return [event for _, event, _ in self.events]


@pytest.fixture
def settings():
    """Process settings loaded from the test environment."""
    return get_settings()


@pytest.fixture
def scripted():
    return Scripted


@pytest.fixture
async def session_factory(settings):
    """
    Session factory bound to a fresh in-memory database.

    Installed as the process-wide factory so code paths that fall back to
    get_session_factory() hit the same database.
    """
    engine = build_engine("sqlite+aiosqlite:///:memory:", settings)
    await create_tables(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    configure_session_factory(factory)

    async with with_unit_of_work(factory) as session:
        await seed_tools(session)

    yield factory

    configure_session_factory(None)
    await drop_tables(engine)
    await engine.dispose()


@pytest.fixture
async def user(session_factory):
    """User with write tools enabled."""
    async with with_unit_of_work(session_factory) as session:
        user = User(
            id=uuid.uuid4(),
            email=f"test-{uuid.uuid4().hex[:8]}@example.com",
            name="Ada Lovelace",
            headline="Staff Backend Engineer",
            profile_summary="Ten years of distributed systems work.",
            assistant_write_enabled=True,
        )
        session.add(user)
    return user


@pytest.fixture
async def other_user(session_factory):
    async with with_unit_of_work(session_factory) as session:
        user = User(
            id=uuid.uuid4(),
            email=f"other-{uuid.uuid4().hex[:8]}@example.com",
            name="Grace Hopper",
            assistant_write_enabled=True,
        )
        session.add(user)
    return user


@pytest.fixture
async def application(session_factory, user):
    """An application in the user's pipeline."""
    async with with_unit_of_work(session_factory) as session:
        application = InterviewApplication(
            id=uuid.uuid4(),
            user_id=user.id,
            company_name="Acme",
            job_role_title="Backend Engineer",
            status="active",
            pipeline_stage="screening",
            notes="Recruiter call went well.",
        )
        session.add(application)
    return application


@pytest.fixture
async def thread(session_factory, user):
    async with with_unit_of_work(session_factory) as session:
        thread = await ThreadsRepository(session).create_thread(user.id, title="Test thread")
    return thread


@pytest.fixture
async def assistant_message(session_factory, thread):
    """Assistant message waiting on tool results."""
    async with with_unit_of_work(session_factory) as session:
        message = await MessagesRepository(session).create_message(
            thread.id,
            role="assistant",
            content="Working on it",
            metadata={"trace_id": "trace-test", "pending_tool_followup": True},
        )
    return message


@pytest.fixture
def propose(session_factory):
    """Record (call_id, tool_key, args) tool calls against an assistant message."""

    async def record(thread, message, user, calls, *, page_context=None, policy=None):
        recorder = ToolProposalRecorder(policy or ToolPolicy())
        async with with_unit_of_work(session_factory) as session:
            return await recorder.record(
                session,
                thread=await session.get(Thread, thread.id),
                user=await session.get(User, user.id),
                assistant_message=await session.get(Message, message.id),
                tool_calls=[ToolCall(cid, key, dict(args)) for cid, key, args in calls],
                trace_id="trace-test",
                page_context=page_context,
            )

    return record


@pytest.fixture
def openai_provider():
    return ScriptedProvider("openai")


@pytest.fixture
def anthropic_provider():
    return ScriptedProvider("anthropic")


@pytest.fixture
def providers(openai_provider, anthropic_provider):
    """Default chain: OpenAI first, Anthropic as fallback."""
    return [openai_provider, anthropic_provider]


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
async def services(settings, session_factory, providers, broadcaster):
    """Service graph wired to the test database and scripted providers."""
    return build_services(
        settings=settings,
        session_factory=session_factory,
        providers=providers,
        broadcaster=broadcaster,
        queue=JobQueue(max_attempts=3, retry_wait_seconds=0),
    )


@pytest.fixture
def build_test_services(settings, session_factory, broadcaster):
    """Factory for service graphs with a custom provider chain or settings."""

    def build(providers, **overrides):
        custom = settings.model_copy(update=overrides) if overrides else settings
        return build_services(
            settings=custom,
            session_factory=session_factory,
            providers=providers,
            broadcaster=broadcaster,
            queue=JobQueue(max_attempts=3, retry_wait_seconds=0),
        )

    return build


@pytest.fixture
async def async_client(services):
    """
    Async HTTP client against the app with the test service graph installed.

    The app lifespan is not run; the fixtures provide what it would build.
    """
    app.state.services = services
    headers = {"X-API-Key": os.environ["API_KEY"]}
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=headers
    ) as client:
        yield client
    del app.state.services
