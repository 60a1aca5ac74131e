"""
Tool policy: which tools a user may see, and which need human approval.

requires_confirmation() is the single source of truth for gating; the proposal
recorder, the execution engine, and the API payload all call it.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Thread, Tool, User
from ..db.repositories import ToolsRepository
from ..tools.registry import ToolRegistry, get_tool_registry


def requires_confirmation(tool: Tool) -> bool:
    """True if the tool's flag is set or it is anything other than read-only."""
    return bool(tool.requires_confirmation) or tool.risk_level != "read_only"


class ToolPolicy:
    """Computes the allowed tool set for a user/thread/page context."""

    def __init__(self, registry: Optional[ToolRegistry] = None):
        self.registry = registry or get_tool_registry()

    def is_permitted(
        self,
        tool: Tool,
        *,
        user: User,
        thread: Thread,
        page_context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Whether this user may invoke the tool in this context right now."""
        if not tool.enabled or tool.tool_key not in self.registry:
            return False
        if tool.risk_level == "read_only":
            return True
        if not user.assistant_write_enabled or not thread.is_open:
            return False
        if (page_context or {}).get("read_only"):
            return False
        return True

    async def allowed_tools(
        self,
        session: AsyncSession,
        *,
        user: User,
        thread: Thread,
        page_context: Optional[Dict[str, Any]] = None,
    ) -> List[Tool]:
        tools = await ToolsRepository(session).list_enabled()
        return [
            tool
            for tool in tools
            if self.is_permitted(tool, user=user, thread=thread, page_context=page_context)
        ]
