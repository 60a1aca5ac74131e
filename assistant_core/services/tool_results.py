"""
Tool result payloads as the model sees them.

The canonical tool-result message is preferred; the execution record is the
fallback when no message exists (older rows, or a result not yet emitted).
"""

import uuid
from typing import Any, Dict, Iterable, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Message, ToolExecution
from ..db.repositories import MessagesRepository, ToolExecutionsRepository
from ..errors import ErrorKind


def execution_result_payload(execution: ToolExecution) -> Dict[str, Any]:
    """Payload for one execution, whatever its status."""
    if execution.status == "success":
        return {
            "success": True,
            "tool_key": execution.tool_key,
            "data": (execution.result or {}).get("data"),
        }
    if execution.status == "error":
        return {
            "success": False,
            "tool_key": execution.tool_key,
            "error": execution.error or "Tool failed",
            "error_kind": execution.error_kind,
        }
    if execution.requires_confirmation and execution.approved_by_user_id is None:
        return {
            "success": False,
            "tool_key": execution.tool_key,
            "pending": True,
            "error": "Awaiting user confirmation; the proposal is shown to the user",
        }
    return {
        "success": False,
        "tool_key": execution.tool_key,
        "pending": True,
        "error": "Tool result not yet available",
    }


def malformed_call_payload() -> Dict[str, Any]:
    """Result for a provider call id whose tool call failed the contract check."""
    return {
        "success": False,
        "error": "Malformed tool call; it was not executed",
        "error_kind": ErrorKind.CONTRACT_VIOLATION.value,
    }


def message_result_payload(message: Message) -> Dict[str, Any]:
    meta = message.message_metadata or {}
    payload = {
        "success": bool(meta.get("success")),
        "tool_key": meta.get("tool_key"),
    }
    if payload["success"]:
        payload["data"] = meta.get("data")
    else:
        payload["error"] = meta.get("error") or "Tool failed"
    return payload


async def load_tool_result_lookup(
    session: AsyncSession,
    thread_id: uuid.UUID,
    assistant_message_ids: Iterable[uuid.UUID],
) -> Dict[Tuple[str, str], Dict[str, Any]]:
    """Payloads keyed by (assistant message id, provider tool call id)."""
    message_ids = list(assistant_message_ids)
    lookup: Dict[Tuple[str, str], Dict[str, Any]] = {}

    executions = ToolExecutionsRepository(session)
    for message_id in message_ids:
        for execution in await executions.list_for_message(message_id):
            payload = execution_result_payload(execution)
            for call_id in execution.provider_call_ids:
                lookup[(str(message_id), call_id)] = payload

    canonical = await MessagesRepository(session).tool_result_messages(
        thread_id, message_ids
    )
    for key, message in canonical.items():
        lookup[key] = message_result_payload(message)

    return lookup
