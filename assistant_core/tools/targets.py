"""
Career target tools: companies, job roles and domains.

Each add/remove pair is idempotent: adding an existing target (matched
case-insensitively) or removing a missing one is a successful no-op.
"""

import uuid
from typing import Any, ClassVar, Dict, Optional

from sqlalchemy import func, select

from ..db.models import TargetCompany, TargetDomain, TargetJobRole
from .base import AssistantTool, ToolContext, ToolResult

TARGET_NAME = {"type": "string", "minLength": 1, "maxLength": 200}
PRIORITY = {"type": "integer", "minimum": 1, "maximum": 5}


async def find_target(ctx: ToolContext, column, value: str) -> Optional[Any]:
    """The user's row whose `column` matches `value`, ignoring case."""
    model = column.class_
    result = await ctx.session.execute(
        select(model).where(
            model.user_id == ctx.user.id,
            func.lower(column) == value.strip().lower(),
        )
    )
    return result.scalar_one_or_none()


class AddTargetTool(AssistantTool):
    """Find-or-create one target row; subclasses name the model column and arg."""

    column: ClassVar[Any]
    arg_name: ClassVar[str]
    risk_level = "write"
    requires_confirmation = True

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        value = args[self.arg_name].strip()
        existing = await find_target(ctx, self.column, value)
        if existing is not None:
            return ToolResult(
                success=True,
                data={"added": False, self.arg_name: getattr(existing, self.column.key)},
            )

        ctx.session.add(
            self.column.class_(
                id=uuid.uuid4(),
                user_id=ctx.user.id,
                priority=args.get("priority"),
                **{self.column.key: value},
            )
        )
        await ctx.session.flush()
        return ToolResult(success=True, data={"added": True, self.arg_name: value})


class RemoveTargetTool(AssistantTool):
    column: ClassVar[Any]
    arg_name: ClassVar[str]
    risk_level = "destructive"
    requires_confirmation = True

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        target = await find_target(ctx, self.column, args[self.arg_name])
        if target is None:
            return ToolResult(
                success=True,
                data={"removed": False, self.arg_name: args[self.arg_name].strip()},
            )

        await ctx.session.delete(target)
        await ctx.session.flush()
        return ToolResult(
            success=True,
            data={"removed": True, self.arg_name: getattr(target, self.column.key)},
        )


class AddTargetCompanyTool(AddTargetTool):
    tool_key = "add_target_company"
    name = "Add target company"
    description = "Add a company to the user's target companies (priority 1 is highest)."
    arg_schema = {
        "type": "object",
        "properties": {"company_name": TARGET_NAME, "priority": PRIORITY},
        "required": ["company_name"],
    }
    column = TargetCompany.company_name
    arg_name = "company_name"


class RemoveTargetCompanyTool(RemoveTargetTool):
    tool_key = "remove_target_company"
    name = "Remove target company"
    description = "Remove a company from the user's target companies."
    arg_schema = {
        "type": "object",
        "properties": {"company_name": TARGET_NAME},
        "required": ["company_name"],
    }
    column = TargetCompany.company_name
    arg_name = "company_name"


class AddTargetJobRoleTool(AddTargetTool):
    tool_key = "add_target_job_role"
    name = "Add target job role"
    description = (
        "Add a job title the user is aiming for, e.g. 'Staff Engineer' "
        "(priority 1 is highest)."
    )
    arg_schema = {
        "type": "object",
        "properties": {"job_role_title": TARGET_NAME, "priority": PRIORITY},
        "required": ["job_role_title"],
    }
    column = TargetJobRole.title
    arg_name = "job_role_title"


class RemoveTargetJobRoleTool(RemoveTargetTool):
    tool_key = "remove_target_job_role"
    name = "Remove target job role"
    description = "Remove a job title from the user's target job roles."
    arg_schema = {
        "type": "object",
        "properties": {"job_role_title": TARGET_NAME},
        "required": ["job_role_title"],
    }
    column = TargetJobRole.title
    arg_name = "job_role_title"


class AddTargetDomainTool(AddTargetTool):
    tool_key = "add_target_domain"
    name = "Add target domain"
    description = (
        "Add an industry or domain the user wants to work in, e.g. 'Fintech' "
        "(priority 1 is highest)."
    )
    arg_schema = {
        "type": "object",
        "properties": {"domain_name": TARGET_NAME, "priority": PRIORITY},
        "required": ["domain_name"],
    }
    column = TargetDomain.name
    arg_name = "domain_name"


class RemoveTargetDomainTool(RemoveTargetTool):
    tool_key = "remove_target_domain"
    name = "Remove target domain"
    description = "Remove an industry or domain from the user's target domains."
    arg_schema = {
        "type": "object",
        "properties": {"domain_name": TARGET_NAME},
        "required": ["domain_name"],
    }
    column = TargetDomain.name
    arg_name = "domain_name"
