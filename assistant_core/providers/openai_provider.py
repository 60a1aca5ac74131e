"""
OpenAI Responses API adapter (stateful continuation).

The server keeps prior turns keyed by response id. A continuation call sends
previous_response_id plus the new input items (function_call_output items for
tool results) and never replays history.
"""

import json
from typing import Any, Dict, List, Optional

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from ..errors import ErrorKind, ProviderError
from ..utils.logging import get_logger
from .base import LLMProvider, ProviderRequest, ProviderResult
from .normalization import normalize_tool_calls

logger = get_logger(__name__)

CONNECT_TIMEOUT_SECONDS = 5.0


def retry_after_seconds(response: Any) -> Optional[float]:
    """Read a Retry-After header (seconds) from an httpx response, if present."""
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _as_dict(obj: Any) -> Optional[Dict[str, Any]]:
    """Dict form of an SDK model or dict; None for anything else."""
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        dumped = obj.model_dump()
        return dumped if isinstance(dumped, dict) else None
    return None


class OpenAIProvider(LLMProvider):
    """Adapter for the OpenAI Responses API."""

    name = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 60,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(model)
        # Retries are handled by the responder so every attempt gets its own log row
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            timeout=httpx.Timeout(timeout_seconds, connect=CONNECT_TIMEOUT_SECONDS),
            max_retries=0,
        )

    @property
    def stateful(self) -> bool:
        return True

    async def run(self, request: ProviderRequest) -> ProviderResult:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "instructions": request.system_prompt,
            "input": request.messages,
            "max_output_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }
        if request.tools:
            kwargs["tools"] = request.tools
        if request.previous_response_id:
            kwargs["previous_response_id"] = request.previous_response_id

        try:
            response = await self.client.responses.create(**kwargs)
        except RateLimitError as e:
            raise ProviderError(
                f"OpenAI rate limit: {e}",
                kind=ErrorKind.RATE_LIMITED,
                provider=self.name,
                retry_after=retry_after_seconds(e.response),
                status_code=429,
            ) from e
        except APITimeoutError as e:
            raise ProviderError(
                "OpenAI request timed out", provider=self.name
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                f"OpenAI connection error: {e}", provider=self.name
            ) from e
        except APIStatusError as e:
            raise ProviderError(
                f"OpenAI API error ({e.status_code}): {e.message}",
                provider=self.name,
                status_code=e.status_code,
            ) from e
        except APIError as e:
            raise ProviderError(f"OpenAI API error: {e}", provider=self.name) from e

        return self.parse_response(response)

    def parse_response(self, response: Any) -> ProviderResult:
        """
        Map a Responses API object (or its dict form) into ProviderResult.

        Output items and content parts that are not objects are skipped. A
        function_call that fails normalization still owes an output on the
        server, so its call id is kept in provider_state["dropped_call_ids"]
        and the response is marked as awaiting tool outputs.

        Raises:
            ProviderError: contract_violation when the response has no id or output
        """
        data = _as_dict(response)
        response_id = data.get("id") if data is not None else None
        output = data.get("output") if data is not None else None
        if not response_id or not isinstance(output, list):
            raise ProviderError(
                "OpenAI response missing id or output",
                kind=ErrorKind.CONTRACT_VIOLATION,
                provider=self.name,
            )

        text_parts: List[str] = []
        raw_calls: List[Dict[str, Any]] = []
        for item in output:
            item = _as_dict(item)
            if item is None:
                logger.warning("Skipping malformed output item", provider=self.name)
                continue
            item_type = item.get("type")
            if item_type == "message":
                content = item.get("content")
                for part in content if isinstance(content, list) else []:
                    part = _as_dict(part)
                    if part is None:
                        continue
                    text = part.get("text")
                    if part.get("type") == "output_text" and isinstance(text, str) and text:
                        text_parts.append(text)
            elif item_type == "function_call":
                raw_calls.append(
                    {
                        "call_id": item.get("call_id"),
                        "name": item.get("name"),
                        "arguments": item.get("arguments"),
                    }
                )

        usage = _as_dict(data.get("usage")) or {}
        tool_calls = normalize_tool_calls(raw_calls, provider=self.name)
        kept_ids = {c.provider_tool_call_id for c in tool_calls}
        dropped_ids = [
            c["call_id"]
            for c in raw_calls
            if isinstance(c["call_id"], str) and c["call_id"] and c["call_id"] not in kept_ids
        ]

        provider_state: Dict[str, Any] = {
            "response_id": response_id,
            "awaiting_tool_outputs": bool(raw_calls),
        }
        if dropped_ids:
            provider_state["dropped_call_ids"] = dropped_ids

        return ProviderResult(
            provider=self.name,
            model=data.get("model") or self.model,
            text="\n".join(text_parts).strip(),
            tool_calls=tool_calls,
            provider_state=provider_state,
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )


def function_call_output(call_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Responses API input item answering one function call."""
    return {
        "type": "function_call_output",
        "call_id": call_id,
        "output": json.dumps(payload, default=str),
    }
