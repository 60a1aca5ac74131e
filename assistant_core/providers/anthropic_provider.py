"""
Anthropic Messages API adapter (stateless full replay).

Every call carries the full message list. The assistant content blocks of
each response are returned so the caller can persist them and replay the
tool_use -> tool_result interleaving exactly on later calls.
"""

from typing import Any, Dict, List, Optional

import httpx
from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    RateLimitError,
)

from ..errors import ErrorKind, ProviderError
from ..utils.logging import get_logger
from .base import LLMProvider, ProviderRequest, ProviderResult
from .normalization import normalize_tool_calls
from .openai_provider import CONNECT_TIMEOUT_SECONDS, retry_after_seconds

logger = get_logger(__name__)


def sanitize_content_blocks(blocks: Any) -> List[Dict[str, Any]]:
    """
    Reduce content blocks to the fields the Messages API accepts on replay.

    Keeps text blocks with non-blank text and tool_use blocks with an id and
    name; everything else (thinking, citations, SDK extras) is dropped.
    """
    sanitized: List[Dict[str, Any]] = []
    for block in blocks or []:
        if hasattr(block, "model_dump"):
            block = block.model_dump()
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                sanitized.append({"type": "text", "text": text})
        elif block_type == "tool_use":
            if not block.get("id") or not block.get("name"):
                continue
            tool_input = block.get("input")
            sanitized.append(
                {
                    "type": "tool_use",
                    "id": block["id"],
                    "name": block["name"],
                    "input": tool_input if isinstance(tool_input, dict) else {},
                }
            )
    return sanitized


def tool_use_ids(blocks: List[Dict[str, Any]]) -> List[str]:
    return [b["id"] for b in blocks if b.get("type") == "tool_use" and b.get("id")]


class AnthropicProvider(LLMProvider):
    """Adapter for the Anthropic Messages API."""

    name = "anthropic"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 60,
        client: Optional[AsyncAnthropic] = None,
    ):
        super().__init__(model)
        self.client = client or AsyncAnthropic(
            api_key=api_key,
            timeout=httpx.Timeout(timeout_seconds, connect=CONNECT_TIMEOUT_SECONDS),
            max_retries=0,
        )

    async def run(self, request: ProviderRequest) -> ProviderResult:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "system": request.system_prompt,
            "messages": request.messages,
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }
        if request.tools:
            kwargs["tools"] = request.tools

        try:
            response = await self.client.messages.create(**kwargs)
        except RateLimitError as e:
            raise ProviderError(
                f"Anthropic rate limit: {e}",
                kind=ErrorKind.RATE_LIMITED,
                provider=self.name,
                retry_after=retry_after_seconds(e.response),
                status_code=429,
            ) from e
        except APITimeoutError as e:
            raise ProviderError(
                "Anthropic request timed out", provider=self.name
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                f"Anthropic connection error: {e}", provider=self.name
            ) from e
        except APIStatusError as e:
            raise ProviderError(
                f"Anthropic API error ({e.status_code}): {e.message}",
                provider=self.name,
                status_code=e.status_code,
            ) from e
        except APIError as e:
            raise ProviderError(f"Anthropic API error: {e}", provider=self.name) from e

        return self.parse_response(response)

    def parse_response(self, response: Any) -> ProviderResult:
        """Map a Messages API object (or its dict form) into ProviderResult."""
        data = response.model_dump() if hasattr(response, "model_dump") else response
        if not isinstance(data, dict) or not isinstance(data.get("content"), list):
            raise ProviderError(
                "Anthropic response missing content",
                kind=ErrorKind.CONTRACT_VIOLATION,
                provider=self.name,
            )

        blocks = sanitize_content_blocks(data["content"])
        text = "\n".join(b["text"] for b in blocks if b["type"] == "text").strip()
        raw_calls = [
            {"id": b["id"], "name": b["name"], "input": b["input"]}
            for b in blocks
            if b["type"] == "tool_use"
        ]
        tool_calls = normalize_tool_calls(raw_calls, provider=self.name)

        # Keep only tool_use blocks whose call survived normalization so replayed
        # history never references a call that has no recorded result.
        kept_ids = {c.provider_tool_call_id for c in tool_calls}
        blocks = [b for b in blocks if b["type"] != "tool_use" or b["id"] in kept_ids]

        usage = data.get("usage")
        if hasattr(usage, "model_dump"):
            usage = usage.model_dump()
        if not isinstance(usage, dict):
            usage = {}
        return ProviderResult(
            provider=self.name,
            model=data.get("model") or self.model,
            text=text,
            tool_calls=tool_calls,
            provider_state={"message_id": data.get("id")},
            content_blocks=blocks,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )
