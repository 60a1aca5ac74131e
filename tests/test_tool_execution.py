"""
Tests for the tool execution engine.

Covers the status machine (proposed -> pending_approval -> queued -> running ->
success|error), approval, idempotent re-execution, the canonical tool-result
message, and every way a tool can fail.
"""

import asyncio
import uuid
from typing import Any, Dict

import pytest
from sqlalchemy import select

from assistant_core.db.database import with_unit_of_work
from assistant_core.db.models import (
    AssistantEvent,
    InterviewApplication,
    Message,
    TargetCompany,
    Tool,
    User,
)
from assistant_core.errors import InvalidToolExecutionStateError, ToolExecutionNotFoundError
from assistant_core.services.tool_execution import ToolExecutionEngine, timeout_seconds
from assistant_core.services.tool_policy import ToolPolicy
from assistant_core.tools.base import AssistantTool, ToolContext, ToolResult
from assistant_core.tools.registry import ToolRegistry, seed_tools


class SlowTool(AssistantTool):
    tool_key = "slow_lookup"
    name = "Slow lookup"
    description = "Never finishes in time"
    timeout_ms = 100

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        await asyncio.sleep(5)
        return ToolResult(success=True, data={})


class PartialWriteTool(AssistantTool):
    tool_key = "partial_write"
    name = "Partial write"
    description = "Writes, then crashes"

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        ctx.session.add(
            TargetCompany(id=uuid.uuid4(), user_id=ctx.user.id, company_name="Initech")
        )
        await ctx.session.flush()
        raise RuntimeError("kaboom")


@pytest.fixture
def engine(session_factory, broadcaster):
    return ToolExecutionEngine(session_factory=session_factory, broadcaster=broadcaster)


@pytest.fixture
async def custom_registry(session_factory):
    registry = ToolRegistry([SlowTool(), PartialWriteTool()])
    async with with_unit_of_work(session_factory) as session:
        await seed_tools(session, registry)
    return registry


async def tool_messages(session_factory):
    async with with_unit_of_work(session_factory) as session:
        result = await session.execute(
            select(Message).where(Message.role == "tool").order_by(Message.created_at)
        )
        return list(result.scalars().all())


class TestExecute:
    """Test suite for ToolExecutionEngine.execute."""

    async def test_read_only_tool_runs_to_success(
        self, engine, propose, session_factory, broadcaster, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "get_profile_summary", {})]
        )

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.ran is True
        assert outcome.status == "success"
        execution = outcome.execution
        assert execution.result["data"]["name"] == "Ada Lovelace"
        assert execution.started_at is not None
        assert execution.finished_at is not None
        assert execution.duration_ms is not None
        assert "tool_execution.updated" in broadcaster.names()

    async def test_success_emits_canonical_tool_message_and_event(
        self, engine, propose, session_factory, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "get_profile_summary", {})]
        )

        await engine.execute(proposal.execution.id)

        [message] = await tool_messages(session_factory)
        meta = message.message_metadata
        assert meta["originating_assistant_message_id"] == str(assistant_message.id)
        assert meta["provider_tool_call_id"] == "call_1"
        assert meta["provider_tool_call_ids"] == ["call_1"]
        assert meta["tool_execution_id"] == str(proposal.execution.id)
        assert meta["success"] is True
        assert meta["trace_id"] == "trace-test"

        async with with_unit_of_work(session_factory) as session:
            events = (await session.execute(select(AssistantEvent))).scalars().all()
        assert [e.event_type for e in events] == ["tool_execution.succeeded"]
        assert events[0].trace_id == "trace-test"

    async def test_second_execute_is_a_no_op(
        self, engine, propose, session_factory, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "get_profile_summary", {})]
        )

        first = await engine.execute(proposal.execution.id)
        second = await engine.execute(proposal.execution.id)

        assert first.ran is True
        assert second.ran is False
        assert second.status == "success"
        assert len(await tool_messages(session_factory)) == 1

    async def test_unknown_execution_raises(self, engine):
        with pytest.raises(ToolExecutionNotFoundError):
            await engine.execute(uuid.uuid4())

    async def test_unknown_tool_recorded_as_error(
        self, engine, propose, session_factory, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "send_email", {})]
        )

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.ran is False
        assert outcome.status == "error"
        assert outcome.execution.error_kind == "tool_not_found"
        [message] = await tool_messages(session_factory)
        assert message.message_metadata["success"] is False

    async def test_disabled_tool_recorded_as_error(
        self, engine, propose, session_factory, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "get_profile_summary", {})]
        )
        async with with_unit_of_work(session_factory) as session:
            tool = (
                await session.execute(select(Tool).where(Tool.tool_key == "get_profile_summary"))
            ).scalar_one()
            tool.enabled = False

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.status == "error"
        assert outcome.execution.error_kind == "tool_disabled"

    async def test_schema_violation_recorded_as_error(
        self, engine, propose, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "list_interview_applications", {"limit": 0})]
        )

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.status == "error"
        assert outcome.execution.error_kind == "schema_invalid"
        assert "limit" in outcome.execution.error

    async def test_foreign_application_fails_authorization(
        self, engine, propose, session_factory, thread, assistant_message, user, other_user
    ):
        async with with_unit_of_work(session_factory) as session:
            foreign = InterviewApplication(
                id=uuid.uuid4(), user_id=other_user.id, company_name="Umbrella"
            )
            session.add(foreign)

        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "get_interview_application", {"application_uuid": str(foreign.id)})],
        )

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.status == "error"
        assert outcome.execution.error_kind == "tool_authorization_failed"
        assert "Umbrella" not in (outcome.execution.error or "")

    async def test_timeout_recorded_as_error(
        self, session_factory, broadcaster, custom_registry, propose, thread, assistant_message, user
    ):
        engine = ToolExecutionEngine(
            session_factory=session_factory,
            registry=custom_registry,
            policy=ToolPolicy(custom_registry),
            broadcaster=broadcaster,
        )
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "slow_lookup", {})],
            policy=ToolPolicy(custom_registry),
        )

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.status == "error"
        assert outcome.execution.error_kind == "tool_timeout"

    async def test_failed_tool_rolls_back_its_writes(
        self, session_factory, broadcaster, custom_registry, propose, thread, assistant_message, user
    ):
        engine = ToolExecutionEngine(
            session_factory=session_factory,
            registry=custom_registry,
            policy=ToolPolicy(custom_registry),
            broadcaster=broadcaster,
        )
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "partial_write", {})],
            policy=ToolPolicy(custom_registry),
        )

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.status == "error"
        assert outcome.execution.error_kind == "tool_failed"
        assert outcome.execution.error == "kaboom"
        async with with_unit_of_work(session_factory) as session:
            targets = (await session.execute(select(TargetCompany))).scalars().all()
        assert targets == []


class TestApproval:
    """Test suite for confirmation-gated tools."""

    async def test_gated_tool_waits_for_approval(
        self, engine, propose, session_factory, thread, assistant_message, user, application
    ):
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [
                (
                    "call_1",
                    "add_note_to_application",
                    {"application_uuid": str(application.id), "note": "Send thank-you email"},
                )
            ],
        )

        waiting = await engine.execute(proposal.execution.id)
        assert waiting.ran is False
        assert waiting.status == "pending_approval"
        assert await tool_messages(session_factory) == []

        approved = await engine.approve(proposal.execution.id, user.id)
        assert approved.status == "queued"
        assert approved.approved_by_user_id == user.id
        assert approved.approved_at is not None

        done = await engine.execute(proposal.execution.id)
        assert done.status == "success"

        async with with_unit_of_work(session_factory) as session:
            refreshed = await session.get(InterviewApplication, application.id)
        assert refreshed.notes == "Recruiter call went well.\n\nSend thank-you email"

    async def test_approve_is_idempotent(
        self, engine, propose, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "add_target_company", {"company_name": "Globex"})],
        )

        first = await engine.approve(proposal.execution.id, user.id)
        second = await engine.approve(proposal.execution.id, user.id)

        assert first.status == second.status == "queued"

    async def test_approve_by_another_user_is_not_found(
        self, engine, propose, thread, assistant_message, user, other_user
    ):
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "add_target_company", {"company_name": "Globex"})],
        )

        with pytest.raises(ToolExecutionNotFoundError):
            await engine.approve(proposal.execution.id, other_user.id)

    async def test_rejected_execution_cannot_be_approved(
        self, engine, propose, session_factory, thread, assistant_message, user
    ):
        async with with_unit_of_work(session_factory) as session:
            (await session.get(User, user.id)).assistant_write_enabled = False

        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "add_target_company", {"company_name": "Globex"})],
        )
        outcome = await engine.execute(proposal.execution.id)
        assert outcome.status == "error"
        assert outcome.execution.error_kind == "tool_disabled"

        with pytest.raises(InvalidToolExecutionStateError):
            await engine.approve(proposal.execution.id, user.id)

    async def test_write_call_on_read_only_page_is_rejected(
        self, engine, propose, session_factory, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "add_target_company", {"company_name": "Globex"})],
            page_context={"read_only": True},
        )
        assert proposal.execution.status == "queued"

        outcome = await engine.execute(proposal.execution.id)

        assert outcome.ran is False
        assert outcome.status == "error"
        assert outcome.execution.error_kind == "tool_disabled"
        again = await engine.execute(proposal.execution.id)
        assert again.status == "error"

        [message] = await tool_messages(session_factory)
        assert message.message_metadata["success"] is False
        assert message.message_metadata["provider_tool_call_id"] == "call_1"
        async with with_unit_of_work(session_factory) as session:
            assert (await session.execute(select(TargetCompany))).scalars().all() == []

    async def test_target_tools_are_idempotent(
        self, engine, propose, session_factory, thread, assistant_message, user
    ):
        proposals = await propose(
            thread,
            assistant_message,
            user,
            [
                ("call_1", "add_target_company", {"company_name": "Globex"}),
                ("call_2", "add_target_company", {"company_name": "globex "}),
            ],
        )
        for proposal in proposals:
            await engine.approve(proposal.execution.id, user.id)

        first = await engine.execute(proposals[0].execution.id)
        second = await engine.execute(proposals[1].execution.id)

        assert first.execution.result["data"]["added"] is True
        assert second.execution.result["data"]["added"] is False
        async with with_unit_of_work(session_factory) as session:
            targets = (await session.execute(select(TargetCompany))).scalars().all()
        assert [t.company_name for t in targets] == ["Globex"]


class TestTimeoutBudget:
    def test_clamped_to_bounds(self):
        assert timeout_seconds(Tool(timeout_ms=10)) == 0.1
        assert timeout_seconds(Tool(timeout_ms=5000)) == 5.0
        assert timeout_seconds(Tool(timeout_ms=600000)) == 60.0
