"""
Tool call normalization and runtime contract checks.

OpenAI emits function_call items (call_id, name, arguments as a JSON string);
Anthropic emits tool_use blocks (id, name, input). Both are folded into
ToolCall. Calls without a tool key are dropped; calls that fail the contract
are logged and discarded rather than propagated.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..utils.logging import get_logger
from .base import ToolCall

logger = get_logger(__name__)


class ToolCallContract(BaseModel):
    """Shape every normalized tool call must satisfy before it is trusted."""

    model_config = ConfigDict(extra="forbid", strict=True)

    provider_tool_call_id: str = Field(min_length=1, max_length=128)
    tool_key: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_\-]+$")
    args: Dict[str, Any]


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _coerce_args(value: Any) -> Any:
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            # Leave it to the contract check to reject
            return value
    return value


def normalize_tool_call(raw: Dict[str, Any], *, provider: str) -> Optional[ToolCall]:
    """
    Normalize one raw provider tool call.

    Returns None when the call has no tool key or violates the contract.
    """
    tool_key = _first(raw, "tool_key", "name")
    if not tool_key:
        logger.warning(
            "Dropping tool call without tool key",
            provider=provider,
            raw_keys=sorted(raw.keys()),
        )
        return None

    candidate = {
        "provider_tool_call_id": _first(raw, "provider_tool_call_id", "call_id", "id", "tool_use_id"),
        "tool_key": tool_key,
        "args": _coerce_args(_first(raw, "args", "input", "arguments")),
    }

    try:
        contract = ToolCallContract.model_validate(candidate)
    except ValidationError as e:
        logger.warning(
            "Tool call failed contract check",
            provider=provider,
            tool_key=tool_key,
            errors=[err["msg"] for err in e.errors()],
        )
        return None

    return ToolCall(
        provider_tool_call_id=contract.provider_tool_call_id,
        tool_key=contract.tool_key,
        args=contract.args,
    )


def normalize_tool_calls(
    raw_calls: Iterable[Dict[str, Any]], *, provider: str
) -> List[ToolCall]:
    calls = []
    for raw in raw_calls:
        if not isinstance(raw, dict):
            logger.warning("Dropping non-object tool call", provider=provider)
            continue
        call = normalize_tool_call(raw, provider=provider)
        if call is not None:
            calls.append(call)
    return calls
