"""Assistant tool implementations and the typed registry."""

from .base import AssistantTool, ToolContext, ToolResult
from .registry import DEFAULT_TOOLS, ToolRegistry, get_tool_registry, seed_tools

__all__ = [
    "AssistantTool",
    "DEFAULT_TOOLS",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "get_tool_registry",
    "seed_tools",
]
