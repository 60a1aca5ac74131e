"""
Tests for ThreadService: submission, idempotency, listing, and trace correlation.
"""

import uuid

import pytest
from sqlalchemy import select

from assistant_core.db.database import with_unit_of_work
from assistant_core.db.models import LlmApiLog, Message, ToolExecution, Turn
from assistant_core.errors import ThreadNotFoundError, UserNotFoundError
from assistant_core.jobs.handlers import CHAT_TURN
from assistant_core.services.thread_service import title_from


class TestTitleFrom:
    def test_short_content_kept(self):
        assert title_from("Prep for Acme onsite") == "Prep for Acme onsite"

    def test_whitespace_collapsed(self):
        assert title_from("  Prep\nfor   Acme ") == "Prep for Acme"

    def test_long_content_truncated(self):
        title = title_from("word " * 30)

        assert len(title) <= 50
        assert title.endswith("...")


class TestSubmitMessage:
    """Test suite for ThreadService.submit_message."""

    async def test_new_thread_created_and_turn_enqueued(self, services, broadcaster, user):
        submitted = await services.threads.submit_message(
            user_id=user.id,
            content="Help me prepare for my Acme interview",
            page_context={"page": "applications", "auth_token": "abc"},
        )

        assert submitted.created is True
        assert submitted.thread.title == "Help me prepare for my Acme interview"
        assert submitted.message.role == "user"
        meta = submitted.message.message_metadata
        assert meta["trace_id"] == submitted.trace_id
        assert meta["page_context"]["page"] == "applications"

        assert services.queue.pending() == 1
        job = services.queue._queue.get_nowait()
        assert job.name == CHAT_TURN
        assert job.payload == {"user_message_id": str(submitted.message.id)}
        assert job.trace_id == submitted.trace_id
        assert broadcaster.names() == ["message.created"]

    async def test_existing_thread(self, services, user, thread):
        submitted = await services.threads.submit_message(
            user_id=user.id, content="Next question", thread_id=thread.id
        )

        assert submitted.thread.id == thread.id
        assert submitted.thread.title == "Test thread"

    async def test_duplicate_client_request_id(self, services, session_factory, user, thread):
        first = await services.threads.submit_message(
            user_id=user.id, content="Hi", thread_id=thread.id, client_request_id="req-1"
        )
        second = await services.threads.submit_message(
            user_id=user.id, content="Hi", thread_id=thread.id, client_request_id="req-1"
        )

        assert second.created is False
        assert second.message.id == first.message.id
        assert second.trace_id == first.trace_id
        assert services.queue.pending() == 1

        async with with_unit_of_work(session_factory) as session:
            rows = (await session.execute(select(Message).where(Message.role == "user"))).all()
        assert len(rows) == 1

    async def test_other_users_thread_not_found(self, services, other_user, thread):
        with pytest.raises(ThreadNotFoundError):
            await services.threads.submit_message(
                user_id=other_user.id, content="Hi", thread_id=thread.id
            )
        assert services.queue.pending() == 0

    async def test_unknown_user(self, services, session_factory):
        with pytest.raises(UserNotFoundError):
            await services.threads.submit_message(user_id=uuid.uuid4(), content="Hi")


class TestListMessages:
    async def test_messages_and_executions_oldest_first(
        self, services, openai_provider, user, scripted
    ):
        openai_provider.queue(
            scripted.openai(calls=[("call_1", "get_profile_summary", {})]),
            scripted.openai("You are Ada."),
        )
        submitted = await services.threads.submit_message(user_id=user.id, content="Who am I?")
        await services.queue.run_until_empty()

        listing = await services.threads.list_messages(submitted.thread.id, user.id)

        assert [m.role for m in listing["messages"]] == ["user", "assistant", "tool"]
        assert listing["messages"][1].content == "You are Ada."
        assert [e.status for e in listing["tool_executions"]] == ["success"]

    async def test_other_user_cannot_list(self, services, thread, other_user):
        with pytest.raises(ThreadNotFoundError):
            await services.threads.list_messages(thread.id, other_user.id)


class TestTraceCorrelation:
    async def test_one_trace_id_across_the_pipeline(
        self, services, session_factory, openai_provider, user, scripted
    ):
        openai_provider.queue(
            scripted.openai(calls=[("call_1", "get_profile_summary", {})]),
            scripted.openai("You are Ada."),
        )

        submitted = await services.threads.submit_message(user_id=user.id, content="Who am I?")
        await services.queue.run_until_empty()

        trace_id = submitted.trace_id
        async with with_unit_of_work(session_factory) as session:
            turn = (await session.execute(select(Turn))).scalar_one()
            execution = (await session.execute(select(ToolExecution))).scalar_one()
            logs = (
                (await session.execute(select(LlmApiLog).order_by(LlmApiLog.created_at)))
                .scalars()
                .all()
            )
            messages = (await session.execute(select(Message))).scalars().all()

        assert turn.trace_id == trace_id
        assert execution.trace_id == trace_id
        assert [log.operation for log in logs] == ["assistant_chat", "assistant_tool_followup"]
        assert {log.trace_id for log in logs} == {trace_id}
        assert {m.message_metadata["trace_id"] for m in messages} == {trace_id}
