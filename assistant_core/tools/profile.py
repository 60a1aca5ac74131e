"""Profile tools: the read-only summary and the profile editor."""

from typing import Any, Dict

from sqlalchemy import func, select

from ..db.models import InterviewApplication, TargetCompany, TargetDomain, TargetJobRole, User
from .base import AssistantTool, ToolContext, ToolResult

MAX_YEARS_OF_EXPERIENCE = 60

PROFILE_FIELDS = (
    "name",
    "headline",
    "profile_summary",
    "years_of_experience",
    "current_company_name",
    "current_job_role_title",
)


def profile_fields(user: User) -> Dict[str, Any]:
    return {field: getattr(user, field) for field in PROFILE_FIELDS}


class GetProfileSummaryTool(AssistantTool):
    tool_key = "get_profile_summary"
    name = "Get profile summary"
    description = (
        "Summarize the user's profile: headline, summary, current position, "
        "pipeline counts by stage, and target companies, job roles and domains."
    )
    arg_schema = {"type": "object", "properties": {}, "additionalProperties": False}
    risk_level = "read_only"
    timeout_ms = 5000

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        user = ctx.user

        rows = await ctx.session.execute(
            select(InterviewApplication.pipeline_stage, func.count())
            .where(InterviewApplication.user_id == user.id)
            .group_by(InterviewApplication.pipeline_stage)
        )
        by_stage = {stage: count for stage, count in rows.all()}

        targets = await ctx.session.execute(
            select(TargetCompany)
            .where(TargetCompany.user_id == user.id)
            .order_by(TargetCompany.priority.asc(), TargetCompany.company_name.asc())
        )
        roles = await ctx.session.execute(
            select(TargetJobRole)
            .where(TargetJobRole.user_id == user.id)
            .order_by(TargetJobRole.priority.asc(), TargetJobRole.title.asc())
        )
        domains = await ctx.session.execute(
            select(TargetDomain)
            .where(TargetDomain.user_id == user.id)
            .order_by(TargetDomain.priority.asc(), TargetDomain.name.asc())
        )

        return ToolResult(
            success=True,
            data={
                **profile_fields(user),
                "pipeline": {"total": sum(by_stage.values()), "by_stage": by_stage},
                "target_companies": [
                    {"company_name": t.company_name, "priority": t.priority}
                    for t in targets.scalars().all()
                ],
                "target_job_roles": [
                    {"job_role_title": r.title, "priority": r.priority}
                    for r in roles.scalars().all()
                ],
                "target_domains": [
                    {"domain_name": d.name, "priority": d.priority}
                    for d in domains.scalars().all()
                ],
            },
        )


class UpdateProfileTool(AssistantTool):
    """
    Edit the user's own profile fields.

    Strings are trimmed and a blank string clears the field. Years of
    experience is clamped to 0-60.
    """

    tool_key = "update_profile"
    name = "Update profile"
    description = (
        "Update the user's profile. Pass only the fields to change: name, headline, "
        "profile_summary, years_of_experience, current_company_name, "
        "current_job_role_title. An empty string clears a field."
    )
    arg_schema = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "maxLength": 200},
            "headline": {"type": "string", "maxLength": 300},
            "profile_summary": {"type": "string", "maxLength": 5000},
            "years_of_experience": {"type": "integer"},
            "current_company_name": {"type": "string", "maxLength": 200},
            "current_job_role_title": {"type": "string", "maxLength": 200},
        },
        "minProperties": 1,
        "additionalProperties": False,
    }
    risk_level = "write"
    requires_confirmation = True

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        user = ctx.user
        for field, value in args.items():
            if field == "years_of_experience":
                value = max(0, min(value, MAX_YEARS_OF_EXPERIENCE))
            else:
                value = value.strip() or None
            setattr(user, field, value)
        await ctx.session.flush()

        return ToolResult(
            success=True,
            data={"updated_attributes": sorted(args), "profile": profile_fields(user)},
        )
