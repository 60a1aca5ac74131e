"""
Shared types for LLM provider adapters.

Every provider maps its own response object into ProviderResult at the adapter
boundary; nothing downstream branches on a provider's response shape.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ToolCall:
    """A normalized tool call proposed by the model."""

    provider_tool_call_id: str
    tool_key: str
    args: Dict[str, Any]


@dataclass
class ProviderRequest:
    """
    One provider call.

    messages holds provider-native input: OpenAI Responses input items or
    Anthropic message dicts. tools holds provider-native tool schemas.
    """

    system_prompt: str
    messages: List[Dict[str, Any]]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    previous_response_id: Optional[str] = None
    max_output_tokens: int = 1200
    temperature: float = 0.2
    operation: str = "assistant_chat"


@dataclass
class ProviderResult:
    """Normalized result of a provider call."""

    provider: str
    model: str
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    provider_state: Dict[str, Any] = field(default_factory=dict)
    content_blocks: List[Dict[str, Any]] = field(default_factory=list)
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class LLMProvider(ABC):
    """
    Provider adapter interface.

    run() returns a ProviderResult or raises ProviderError with one of the
    rate_limited / request_failed / contract_violation kinds.
    """

    name: str = "base"

    def __init__(self, model: str):
        self.model = model

    @property
    def stateful(self) -> bool:
        """True when the server keeps conversation state between calls."""
        return False

    @abstractmethod
    async def run(self, request: ProviderRequest) -> ProviderResult:
        raise NotImplementedError

    def request_payload_for_log(self, request: ProviderRequest) -> Dict[str, Any]:
        """Compact request summary stored on the LLM call log."""
        return {
            "provider": self.name,
            "model": self.model,
            "operation": request.operation,
            "message_count": len(request.messages),
            "tool_names": [
                t.get("name") or t.get("function", {}).get("name") for t in request.tools
            ],
            "previous_response_id": request.previous_response_id,
            "system_prompt_chars": len(request.system_prompt or ""),
        }
