"""
Tests for provider conversation builders.

The Anthropic replay must put a tool_result for every tool_use id in the
user message directly after the assistant batch that proposed it, including
for messages that went through several follow-up iterations.
"""

import json
import uuid

from assistant_core.db.models import Message
from assistant_core.providers.message_builders import (
    UNAVAILABLE_RESULT,
    AnthropicMessageBuilder,
    OpenAIMessageBuilder,
)

THREAD_ID = uuid.uuid4()


def user_message(content):
    return Message(id=uuid.uuid4(), thread_id=THREAD_ID, role="user", content=content, message_metadata={})


def assistant_message(content="", **metadata):
    return Message(
        id=uuid.uuid4(),
        thread_id=THREAD_ID,
        role="assistant",
        content=content,
        message_metadata=metadata,
    )


def tool_use(call_id, name="get_profile_summary"):
    return {"type": "tool_use", "id": call_id, "name": name, "input": {}}


def ok(data):
    return {"success": True, "tool_key": "get_profile_summary", "data": data}


def assert_adjacent(messages):
    """Every tool_use batch is answered by the very next message."""
    for index, message in enumerate(messages):
        if message["role"] != "assistant" or isinstance(message["content"], str):
            continue
        ids = [b["id"] for b in message["content"] if b["type"] == "tool_use"]
        if not ids:
            continue
        answer = messages[index + 1]
        assert answer["role"] == "user"
        answered = [b["tool_use_id"] for b in answer["content"] if b["type"] == "tool_result"]
        assert answered == ids


class TestAnthropicHistoryReplay:
    """Test suite for stateless replay with tool_use/tool_result adjacency."""

    def test_single_tool_round(self):
        question = user_message("How does my profile look?")
        answer = assistant_message(
            "Your profile is solid.",
            provider_content_blocks=[{"type": "text", "text": "Checking."}, tool_use("toolu_1")],
        )
        lookup = {(str(answer.id), "toolu_1"): ok({"name": "Ada"})}

        messages = AnthropicMessageBuilder.build_history_messages([question, answer], lookup)

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        result_block = messages[2]["content"][0]
        assert result_block["type"] == "tool_result"
        assert result_block["tool_use_id"] == "toolu_1"
        assert result_block["is_error"] is False
        assert json.loads(result_block["content"])["data"] == {"name": "Ada"}
        assert_adjacent(messages)

    def test_multiple_followup_batches_each_answered(self):
        question = user_message("Prep me for Acme")
        answer = assistant_message(
            "Here is your plan.",
            provider_content_blocks=[tool_use("toolu_1")],
            followup_content_blocks=[
                [tool_use("toolu_2", "list_interview_applications")],
                [tool_use("toolu_3", "get_next_interview"), tool_use("toolu_4")],
                [{"type": "text", "text": "Here is your plan."}],
            ],
        )
        lookup = {
            (str(answer.id), call_id): ok(call_id)
            for call_id in ("toolu_1", "toolu_2", "toolu_3", "toolu_4")
        }

        messages = AnthropicMessageBuilder.build_history_messages([question, answer], lookup)

        assert [m["role"] for m in messages] == [
            "user",
            "assistant",
            "user",
            "assistant",
            "user",
            "assistant",
            "user",
            "assistant",
        ]
        assert_adjacent(messages)
        assert messages[-1]["content"] == [{"type": "text", "text": "Here is your plan."}]

    def test_missing_result_is_reported_unavailable(self):
        question = user_message("Hi")
        answer = assistant_message("", provider_content_blocks=[tool_use("toolu_9")])

        messages = AnthropicMessageBuilder.build_history_messages([question, answer], {})

        block = messages[-1]["content"][0]
        assert block["is_error"] is True
        assert json.loads(block["content"]) == UNAVAILABLE_RESULT

    def test_failed_result_flagged_as_error(self):
        question = user_message("Hi")
        answer = assistant_message("", provider_content_blocks=[tool_use("toolu_1")])
        lookup = {(str(answer.id), "toolu_1"): {"success": False, "error": "Tool timed out"}}

        messages = AnthropicMessageBuilder.build_history_messages([question, answer], lookup)

        assert messages[-1]["content"][0]["is_error"] is True

    def test_plain_text_assistant_message_replayed_as_text(self):
        messages = AnthropicMessageBuilder.build_history_messages(
            [user_message("Hi"), assistant_message("Hello!")], {}
        )

        assert messages == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
        ]

    def test_pending_followup_message_skipped_unless_resumed(self):
        question = user_message("Check my profile")
        pending = assistant_message(
            "Working on it",
            pending_tool_followup=True,
            provider_content_blocks=[tool_use("toolu_1")],
        )
        lookup = {(str(pending.id), "toolu_1"): ok({})}

        skipped = AnthropicMessageBuilder.build_history_messages([question, pending], lookup)
        resumed = AnthropicMessageBuilder.build_history_messages(
            [question, pending], lookup, include_pending_assistant_message_id=pending.id
        )

        assert [m["role"] for m in skipped] == ["user"]
        assert [m["role"] for m in resumed] == ["user", "assistant", "user"]

    def test_batch_overrides_replace_stored_batches(self):
        question = user_message("Check my profile")
        pending = assistant_message(
            "", pending_tool_followup=True, provider_content_blocks=[tool_use("toolu_1")]
        )
        overrides = {pending.id: [[tool_use("toolu_1")], [tool_use("toolu_2")]]}

        messages = AnthropicMessageBuilder.build_history_messages(
            [question, pending],
            {},
            include_pending_assistant_message_id=pending.id,
            batch_overrides=overrides,
        )

        assert len(messages) == 5
        assert_adjacent(messages)

    def test_window_starting_mid_exchange_is_trimmed(self):
        orphan = assistant_message("Earlier answer")
        messages = AnthropicMessageBuilder.build_history_messages(
            [orphan, user_message("Next question")], {}
        )

        assert messages == [{"role": "user", "content": "Next question"}]

    def test_leading_orphan_tool_results_removed(self):
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "toolu_0", "content": "{}"},
                    {"type": "text", "text": "and another thing"},
                ],
            }
        ]

        AnthropicMessageBuilder._trim_leading(messages)

        assert messages == [
            {"role": "user", "content": [{"type": "text", "text": "and another thing"}]}
        ]

    def test_consecutive_user_messages_merged(self):
        messages = AnthropicMessageBuilder.build_history_messages(
            [user_message("First"), user_message("Second")], {}
        )

        assert messages == [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "First"},
                    {"type": "text", "text": "Second"},
                ],
            }
        ]

    def test_turn_question_after_tool_results_shares_user_message(self):
        question = user_message("Check my profile")
        answer = assistant_message("", provider_content_blocks=[tool_use("toolu_1")])
        lookup = {(str(answer.id), "toolu_1"): ok({})}

        messages = AnthropicMessageBuilder.build_turn_messages(
            [question, answer], lookup, "And now?"
        )

        last = messages[-1]
        assert last["role"] == "user"
        assert [b["type"] for b in last["content"]] == ["tool_result", "text"]
        assert last["content"][-1]["text"] == "And now?"


class TestOpenAITurnInput:
    """Test suite for Responses API input items."""

    def test_continuation_sends_only_the_question(self):
        items = OpenAIMessageBuilder.build_turn_input(
            [user_message("Old"), assistant_message("Old answer")],
            "New question",
            previous_response_id="resp_1",
        )

        assert items == [{"role": "user", "content": "New question"}]

    def test_replay_without_response_id(self):
        history = [
            user_message("Old"),
            assistant_message("Old answer"),
            assistant_message("Half done", pending_tool_followup=True),
            Message(id=uuid.uuid4(), thread_id=THREAD_ID, role="tool", content="x", message_metadata={}),
        ]

        items = OpenAIMessageBuilder.build_turn_input(history, "New question")

        assert items == [
            {"role": "user", "content": "Old"},
            {"role": "assistant", "content": "Old answer"},
            {"role": "user", "content": "New question"},
        ]

    def test_tool_outputs(self):
        items = OpenAIMessageBuilder.build_tool_outputs([("call_1", ok({"n": 1}))])

        assert items[0]["type"] == "function_call_output"
        assert items[0]["call_id"] == "call_1"
        assert json.loads(items[0]["output"])["data"] == {"n": 1}
