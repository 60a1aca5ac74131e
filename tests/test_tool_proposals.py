"""
Tests for recording model-proposed tool calls.

Covers initial status by gating, content-hash deduplication with call id
aliases, and calls the policy does not permit.
"""

from sqlalchemy import select

from assistant_core.db.database import with_unit_of_work
from assistant_core.db.models import ToolExecution, User
from assistant_core.services.tool_proposals import dedup_hash, idempotency_key


class TestDedupHash:
    def test_key_order_does_not_matter(self):
        assert dedup_hash("list_interview_applications", {"status": "active", "limit": 5}) == (
            dedup_hash("list_interview_applications", {"limit": 5, "status": "active"})
        )

    def test_tool_key_and_args_both_count(self):
        assert dedup_hash("a", {"x": 1}) != dedup_hash("b", {"x": 1})
        assert dedup_hash("a", {"x": 1}) != dedup_hash("a", {"x": 2})

    def test_idempotency_key_includes_call_id(self, thread, assistant_message):
        first = idempotency_key(thread.id, assistant_message.id, "call_1", {})
        second = idempotency_key(thread.id, assistant_message.id, "call_2", {})

        assert first != second


class TestToolProposalRecorder:
    """Test suite for ToolProposalRecorder."""

    async def test_read_only_call_queued(self, propose, thread, assistant_message, user):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "get_profile_summary", {})]
        )

        assert proposal.created is True
        assert proposal.auto_run is True
        assert proposal.execution.status == "queued"
        assert proposal.execution.requires_confirmation is False
        assert proposal.execution.trace_id == "trace-test"
        assert proposal.execution.provider_tool_call_id == "call_1"

    async def test_gated_call_proposed(
        self, propose, thread, assistant_message, user, application
    ):
        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [
                (
                    "call_1",
                    "add_note_to_application",
                    {"application_uuid": str(application.id), "note": "Send thank-you"},
                )
            ],
        )

        assert proposal.execution.status == "proposed"
        assert proposal.execution.requires_confirmation is True
        assert proposal.auto_run is False

    async def test_duplicate_calls_share_one_execution(
        self, propose, session_factory, thread, assistant_message, user
    ):
        proposals = await propose(
            thread,
            assistant_message,
            user,
            [
                ("call_1", "list_interview_applications", {"status": "active"}),
                ("call_2", "list_interview_applications", {"status": "active"}),
            ],
        )

        assert [p.created for p in proposals] == [True, False]
        assert proposals[0].execution.id == proposals[1].execution.id

        async with with_unit_of_work(session_factory) as session:
            rows = (await session.execute(select(ToolExecution))).scalars().all()
        assert len(rows) == 1
        assert rows[0].alias_tool_call_ids == ["call_2"]
        assert rows[0].provider_call_ids == ["call_1", "call_2"]

    async def test_replayed_call_does_not_duplicate_alias(
        self, propose, thread, assistant_message, user
    ):
        calls = [("call_1", "get_next_interview", {})]
        await propose(thread, assistant_message, user, calls)

        [again] = await propose(thread, assistant_message, user, calls)

        assert again.created is False
        assert again.execution.alias_tool_call_ids == []

    async def test_unknown_tool_queued_for_rejection(
        self, propose, thread, assistant_message, user
    ):
        [proposal] = await propose(
            thread, assistant_message, user, [("call_1", "send_email", {"to": "x"})]
        )

        assert proposal.execution.status == "queued"
        assert proposal.execution.requires_confirmation is False

    async def test_write_call_without_entitlement_queued_for_rejection(
        self, propose, session_factory, thread, assistant_message, user
    ):
        async with with_unit_of_work(session_factory) as session:
            (await session.get(User, user.id)).assistant_write_enabled = False

        [proposal] = await propose(
            thread,
            assistant_message,
            user,
            [("call_1", "add_target_company", {"company_name": "Globex"})],
        )

        # Gated but not permitted: the engine records the rejection as the result
        assert proposal.execution.status == "queued"
        assert proposal.execution.requires_confirmation is True
