"""
Typed tool registry: tool key -> implementation.

The database row (assistant_tools) controls enablement and policy; this
registry supplies the code. A key with a row but no implementation, or an
implementation with no row, is treated as not found.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Tool
from ..db.repositories import ToolsRepository
from ..errors import ToolNotFoundError
from ..utils.logging import get_logger
from .applications import (
    AddNoteToApplicationTool,
    CreateInterviewRoundTool,
    GetInterviewApplicationTool,
    GetNextInterviewTool,
    ListInterviewApplicationsTool,
)
from .base import AssistantTool
from .profile import GetProfileSummaryTool, UpdateProfileTool
from .targets import (
    AddTargetCompanyTool,
    AddTargetDomainTool,
    AddTargetJobRoleTool,
    RemoveTargetCompanyTool,
    RemoveTargetDomainTool,
    RemoveTargetJobRoleTool,
)

logger = get_logger(__name__)

DEFAULT_TOOLS = (
    GetProfileSummaryTool,
    ListInterviewApplicationsTool,
    GetInterviewApplicationTool,
    GetNextInterviewTool,
    AddNoteToApplicationTool,
    CreateInterviewRoundTool,
    AddTargetCompanyTool,
    RemoveTargetCompanyTool,
    AddTargetJobRoleTool,
    RemoveTargetJobRoleTool,
    AddTargetDomainTool,
    RemoveTargetDomainTool,
    UpdateProfileTool,
)


class ToolRegistry:
    """Maps tool keys to AssistantTool instances."""

    def __init__(self, tools: Iterable[AssistantTool] = ()):
        self._tools: Dict[str, AssistantTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: AssistantTool) -> None:
        if tool.tool_key in self._tools:
            raise ValueError(f"Tool already registered: {tool.tool_key}")
        self._tools[tool.tool_key] = tool

    def get(self, tool_key: str) -> AssistantTool:
        """
        Look up an implementation.

        Raises:
            ToolNotFoundError: Unknown key
        """
        tool = self._tools.get(tool_key)
        if tool is None:
            raise ToolNotFoundError(f"Unknown tool: {tool_key}")
        return tool

    def __contains__(self, tool_key: object) -> bool:
        return tool_key in self._tools

    def keys(self) -> List[str]:
        return sorted(self._tools)

    def definitions(self) -> List[dict]:
        return [self._tools[key].definition() for key in self.keys()]


_registry: Optional[ToolRegistry] = None


def get_tool_registry() -> ToolRegistry:
    """Process-wide registry with the built-in tools."""
    global _registry
    if _registry is None:
        _registry = ToolRegistry(tool_cls() for tool_cls in DEFAULT_TOOLS)
    return _registry


async def seed_tools(
    session: AsyncSession, registry: Optional[ToolRegistry] = None
) -> List[Tool]:
    """
    Upsert registry rows for every implemented tool.

    Existing rows keep their `enabled` flag so an operator can switch a tool
    off without a deploy reverting it.
    """
    registry = registry or get_tool_registry()
    repo = ToolsRepository(session)
    rows = []
    for definition in registry.definitions():
        rows.append(await repo.upsert(enabled=True, **definition))
    logger.info("Assistant tools seeded", tool_count=len(rows))
    return rows
