"""
Provider-specific request building for assistant turns and tool follow-ups.

Keeps the stateful/stateless protocol branching out of the orchestration
services: they ask for a request, hand it to provider.run(), and get a
ProviderResult back either way.
"""

import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..db.models import Message, Tool
from ..db.repositories import MessagesRepository, TurnsRepository
from ..errors import ProviderStateMissingError
from ..services.tool_results import load_tool_result_lookup
from ..utils.logging import get_logger
from .base import LLMProvider, ProviderRequest
from .message_builders import AnthropicMessageBuilder, OpenAIMessageBuilder, ToolResultLookup
from .tool_schemas import ToolSchemaAdapter

logger = get_logger(__name__)


class ProviderRouter:
    """Builds ProviderRequests for either continuation protocol."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _request(
        self,
        provider: LLMProvider,
        *,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: Sequence[Tool],
        previous_response_id: Optional[str] = None,
        operation: str,
    ) -> ProviderRequest:
        return ProviderRequest(
            system_prompt=system_prompt,
            messages=messages,
            tools=ToolSchemaAdapter.for_provider(provider.name, tools),
            previous_response_id=previous_response_id,
            max_output_tokens=self.settings.assistant_max_output_tokens,
            temperature=self.settings.assistant_temperature,
            operation=operation,
        )

    async def build_turn_request(
        self,
        session: AsyncSession,
        provider: LLMProvider,
        *,
        thread_id: uuid.UUID,
        user_message: Message,
        system_prompt: str,
        tools: Sequence[Tool],
    ) -> ProviderRequest:
        """
        Request answering a new user message.

        Stateful: continue from the thread's reusable response id, or replay
        the recent history when there is none. Stateless: always replay.
        """
        messages_repo = MessagesRepository(session)

        if provider.stateful:
            previous = await TurnsRepository(session).reusable_openai_response_id(thread_id)
            history: List[Message] = []
            if not previous:
                history = await messages_repo.list_recent(
                    thread_id,
                    limit=self.settings.assistant_openai_history_limit,
                    until=user_message,
                    exclude_ids=[user_message.id],
                )
            logger.debug(
                "Built stateful turn input",
                provider=provider.name,
                continued=bool(previous),
                history_count=len(history),
            )
            return self._request(
                provider,
                system_prompt=system_prompt,
                messages=OpenAIMessageBuilder.build_turn_input(
                    history, user_message.content, previous_response_id=previous
                ),
                tools=tools,
                previous_response_id=previous,
                operation="assistant_chat",
            )

        history = await messages_repo.list_recent(
            thread_id,
            limit=self.settings.assistant_anthropic_history_limit,
            until=user_message,
            exclude_ids=[user_message.id],
        )
        lookup = await load_tool_result_lookup(
            session, thread_id, [m.id for m in history if m.role == "assistant"]
        )
        return self._request(
            provider,
            system_prompt=system_prompt,
            messages=AnthropicMessageBuilder.build_turn_messages(
                history, lookup, user_message.content
            ),
            tools=tools,
            operation="assistant_chat",
        )

    def build_stateful_followup(
        self,
        provider: LLMProvider,
        *,
        system_prompt: str,
        tools: Sequence[Tool],
        previous_response_id: Optional[str],
        outputs: Iterable[Tuple[str, Dict[str, Any]]],
    ) -> ProviderRequest:
        """
        Tool outputs sent against the previous response id; history is never replayed.

        Raises:
            ProviderStateMissingError: No response id to continue from
        """
        if not previous_response_id:
            raise ProviderStateMissingError("No previous response id to continue from")
        return self._request(
            provider,
            system_prompt=system_prompt,
            messages=OpenAIMessageBuilder.build_tool_outputs(outputs),
            tools=tools,
            previous_response_id=previous_response_id,
            operation="assistant_tool_followup",
        )

    def build_replay_followup(
        self,
        provider: LLMProvider,
        *,
        system_prompt: str,
        tools: Sequence[Tool],
        history: Sequence[Message],
        tool_results: ToolResultLookup,
        origin_message_id: uuid.UUID,
        batches: List[List[Dict[str, Any]]],
    ) -> ProviderRequest:
        """Full history replay with the resumed message's batches so far."""
        overrides: Mapping[uuid.UUID, List[List[Dict[str, Any]]]] = {
            origin_message_id: batches
        }
        return self._request(
            provider,
            system_prompt=system_prompt,
            messages=AnthropicMessageBuilder.build_history_messages(
                history,
                tool_results,
                include_pending_assistant_message_id=origin_message_id,
                batch_overrides=overrides,
            ),
            tools=tools,
            operation="assistant_tool_followup",
        )
