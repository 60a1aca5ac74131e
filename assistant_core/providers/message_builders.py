"""
Provider-specific conversation payload builders.

OpenAIMessageBuilder produces Responses API input items; with a reusable
response id only the new question (or the tool outputs) is sent.

AnthropicMessageBuilder replays stored history. Each assistant message is
expanded into its stored content-block batches (the initial response plus one
batch per follow-up iteration); every batch containing tool_use blocks is
immediately followed by a user message holding a tool_result block for each
of its tool_use ids.
"""

import json
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..db.models import Message
from .anthropic_provider import sanitize_content_blocks, tool_use_ids
from .openai_provider import function_call_output

ToolResultLookup = Mapping[Tuple[str, str], Dict[str, Any]]

UNAVAILABLE_RESULT = {"success": False, "error": "Tool result unavailable"}


def _skip_pending(message: Message, include_pending_id: Optional[uuid.UUID]) -> bool:
    return (
        message.role == "assistant"
        and message.pending_tool_followup
        and message.id != include_pending_id
    )


class OpenAIMessageBuilder:
    """Input items for the Responses API."""

    @staticmethod
    def build_turn_input(
        history: Sequence[Message],
        question: str,
        *,
        previous_response_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Input for a new turn.

        With a previous response id the server already holds the history, so
        only the question is sent.
        """
        if previous_response_id:
            return [{"role": "user", "content": question}]

        items: List[Dict[str, Any]] = []
        for message in history:
            if message.role not in ("user", "assistant"):
                continue
            if _skip_pending(message, None):
                continue
            text = (message.content or "").strip()
            if text:
                items.append({"role": message.role, "content": text})
        items.append({"role": "user", "content": question})
        return items

    @staticmethod
    def build_tool_outputs(
        results: Iterable[Tuple[str, Dict[str, Any]]],
    ) -> List[Dict[str, Any]]:
        """function_call_output items for (call_id, payload) pairs."""
        return [function_call_output(call_id, payload) for call_id, payload in results]


class AnthropicMessageBuilder:
    """Message lists for the Messages API."""

    @staticmethod
    def tool_result_block(call_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": call_id,
            "content": json.dumps(payload, default=str),
            "is_error": payload.get("success") is not True,
        }

    @classmethod
    def tool_result_message(
        cls, results: Iterable[Tuple[str, Dict[str, Any]]]
    ) -> Dict[str, Any]:
        return {
            "role": "user",
            "content": [cls.tool_result_block(cid, payload) for cid, payload in results],
        }

    @staticmethod
    def assistant_batches(message: Message) -> List[List[Dict[str, Any]]]:
        """Stored content-block batches of an assistant message, oldest first."""
        meta = message.message_metadata or {}
        batches = []
        initial = sanitize_content_blocks(meta.get("provider_content_blocks"))
        if initial:
            batches.append(initial)
        for batch in meta.get("followup_content_blocks") or []:
            blocks = sanitize_content_blocks(batch)
            if blocks:
                batches.append(blocks)
        return batches

    @classmethod
    def build_history_messages(
        cls,
        history: Sequence[Message],
        tool_results: ToolResultLookup,
        *,
        include_pending_assistant_message_id: Optional[uuid.UUID] = None,
        batch_overrides: Optional[Mapping[uuid.UUID, List[List[Dict[str, Any]]]]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Replay history with tool_use/tool_result adjacency restored.

        Args:
            history: user/assistant messages in chronological order
            tool_results: payloads keyed by (assistant message id, tool call id)
            include_pending_assistant_message_id: assistant message awaiting
                follow-up that must still be replayed (the one being resumed)
            batch_overrides: content-block batches to use instead of the stored
                ones, by message id (a follow-up loop's not yet persisted batches)
        """
        batch_overrides = batch_overrides or {}
        messages: List[Dict[str, Any]] = []

        for message in history:
            if message.role == "user":
                text = (message.content or "").strip()
                if text:
                    cls._append(messages, "user", text)
                continue
            if message.role != "assistant":
                continue
            if _skip_pending(message, include_pending_assistant_message_id):
                continue

            if message.id in batch_overrides:
                batches = [
                    blocks
                    for blocks in (
                        sanitize_content_blocks(b) for b in batch_overrides[message.id]
                    )
                    if blocks
                ]
            else:
                batches = cls.assistant_batches(message)
            if not batches:
                text = (message.content or "").strip()
                if text:
                    cls._append(messages, "assistant", text)
                continue

            for blocks in batches:
                cls._append(messages, "assistant", blocks)
                ids = tool_use_ids(blocks)
                if ids:
                    cls._append(
                        messages,
                        "user",
                        cls.tool_result_message(
                            (cid, tool_results.get((str(message.id), cid), UNAVAILABLE_RESULT))
                            for cid in ids
                        )["content"],
                    )

        cls._trim_leading(messages)
        return messages

    @classmethod
    def build_turn_messages(
        cls,
        history: Sequence[Message],
        tool_results: ToolResultLookup,
        question: str,
    ) -> List[Dict[str, Any]]:
        """Replayed history followed by the new question."""
        messages = cls.build_history_messages(history, tool_results)
        cls._append(messages, "user", question)
        return messages

    @staticmethod
    def _trim_leading(messages: List[Dict[str, Any]]) -> None:
        """
        Make the list open with a plain user turn.

        A history window can start mid-exchange; orphaned assistant turns and
        tool_result blocks whose tool_use fell outside the window are removed.
        """
        while messages:
            first = messages[0]
            if first["role"] != "user":
                messages.pop(0)
                continue
            if isinstance(first["content"], list):
                kept = [b for b in first["content"] if b.get("type") != "tool_result"]
                if not kept:
                    messages.pop(0)
                    continue
                first["content"] = kept
            return

    @staticmethod
    def _append(messages: List[Dict[str, Any]], role: str, content: Any) -> None:
        """Append a message, merging consecutive same-role messages into one."""
        if messages and messages[-1]["role"] == role:
            previous = messages[-1]["content"]
            if isinstance(previous, str):
                previous = [{"type": "text", "text": previous}]
            addition = (
                [{"type": "text", "text": content}] if isinstance(content, str) else content
            )
            messages[-1]["content"] = list(previous) + list(addition)
            return
        messages.append(
            {"role": role, "content": content if isinstance(content, str) else list(content)}
        )
