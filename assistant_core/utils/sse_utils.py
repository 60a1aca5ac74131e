"""
SSE (Server-Sent Events) helpers for the realtime assistant stream.

Formats broadcaster events with the correct wire framing so the UI can
follow message and tool execution updates for a thread.
"""

import json
from typing import Any, Dict, Optional


def sse_format(
    data: Any,
    event: Optional[str] = None,
    id: Optional[str] = None,
    retry: Optional[int] = None,
) -> str:
    """
    Format data as a Server-Sent Event with proper wire format.

    Args:
        data: The data to send (will be JSON-encoded if not a string)
        event: Optional event type (e.g., "message.updated")
        id: Optional event ID for client-side tracking
        retry: Optional retry interval in milliseconds

    Returns:
        Properly formatted SSE message string

    Examples:
        >>> sse_format({"content": "Hello"}, event="message.created")
        'event: message.created\\ndata: {"content":"Hello"}\\n\\n'
    """
    lines = []

    if event:
        lines.append(f"event: {event}")

    if id:
        lines.append(f"id: {id}")

    if retry is not None:
        lines.append(f"retry: {retry}")

    if isinstance(data, str):
        data_str = data
    else:
        # JSON encode with no newlines to avoid SSE format issues
        data_str = json.dumps(data, separators=(",", ":"), default=str)

    # Each line of a multi-line payload needs its own "data: " prefix
    for line in data_str.split("\n"):
        lines.append(f"data: {line}")

    return "\n".join(lines) + "\n\n"


def sse_heartbeat() -> str:
    """SSE comment line that keeps idle connections open."""
    return ": hb\n\n"


def truncate_tool_data(
    data: Dict[str, Any],
    max_length: int = 1000,
    fields_to_truncate: Optional[list] = None,
) -> Dict[str, Any]:
    """
    Truncate bulky tool payload fields before pushing them to the UI.

    Example:
        >>> data = {"tool_key": "list_interview_applications", "result": "x" * 2000}
        >>> len(truncate_tool_data(data)["result"])
        1003
    """
    if fields_to_truncate is None:
        fields_to_truncate = ["result", "data", "content"]

    result = data.copy()

    for field in fields_to_truncate:
        if field not in result:
            continue
        value = result[field]

        if isinstance(value, str) and len(value) > max_length:
            result[field] = value[:max_length] + "..."
            result[f"{field}_truncated"] = True

        elif isinstance(value, (dict, list)):
            value_str = json.dumps(value, default=str)
            if len(value_str) > max_length:
                result[field] = value_str[:max_length] + "..."
                result[f"{field}_truncated"] = True

    return result
