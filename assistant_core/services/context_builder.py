"""
Context pack for assistant turns.

The pack is a plain dict (stored on the turn as context_snapshot) and is
rendered into the system prompt below the base instructions. Rendering is
bounded by ASSISTANT_CONTEXT_MAX_CHARS.
"""

from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import InterviewApplication, TargetCompany, TargetDomain, TargetJobRole, User
from ..tools.base import iso

DEFAULT_SYSTEM_PROMPT = """\
You are an assistant embedded in a job-search app. You help the user with \
interview preparation and debriefs, organizing and updating their application \
pipeline, and planning which companies to target.

Rules:
- Use ONLY the provided USER CONTEXT and tool results. If needed data is missing, \
ask a clarifying question or call a tool.
- Never claim you executed an action unless a tool result confirms it.
- Use tools when they help you answer with up-to-date or user-specific data.
- Write actions are proposed to the user and only run after they confirm in the UI.
- Keep responses concise, structured, and actionable. Use Markdown.
"""

# Page context keys that reach the model; anything else the UI sends is dropped
PAGE_CONTEXT_KEYS = (
    "page",
    "route",
    "section",
    "application_uuid",
    "company_name",
    "read_only",
)

RECENT_APPLICATIONS = 5
TRUNCATION_MARKER = "\n[context truncated]"


def whitelist_page_context(page_context: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in (page_context or {}).items()
        if key in PAGE_CONTEXT_KEYS and value not in (None, "")
    }


class ContextBuilder:
    """Gathers the user-specific context pack for one turn."""

    def __init__(self, max_chars: int = 6000):
        self.max_chars = max_chars

    async def build(
        self,
        session: AsyncSession,
        user: User,
        page_context: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        counts = await session.execute(
            select(InterviewApplication.pipeline_stage, func.count())
            .where(InterviewApplication.user_id == user.id)
            .group_by(InterviewApplication.pipeline_stage)
        )
        by_stage = {stage: count for stage, count in counts.all()}

        recent = await session.execute(
            select(InterviewApplication)
            .where(InterviewApplication.user_id == user.id)
            .order_by(InterviewApplication.created_at.desc())
            .limit(RECENT_APPLICATIONS)
        )
        targets = await session.execute(
            select(TargetCompany)
            .where(TargetCompany.user_id == user.id)
            .order_by(TargetCompany.priority.asc(), TargetCompany.company_name.asc())
        )
        roles = await session.execute(
            select(TargetJobRole.title)
            .where(TargetJobRole.user_id == user.id)
            .order_by(TargetJobRole.priority.asc(), TargetJobRole.title.asc())
        )
        domains = await session.execute(
            select(TargetDomain.name)
            .where(TargetDomain.user_id == user.id)
            .order_by(TargetDomain.priority.asc(), TargetDomain.name.asc())
        )

        return {
            "user": {
                "id": str(user.id),
                "name": user.name,
                "headline": user.headline,
            },
            "profile": {
                "summary": user.profile_summary,
                "years_of_experience": user.years_of_experience,
                "current_company": user.current_company_name,
                "current_job_role": user.current_job_role_title,
            },
            "pipeline": {
                "applications_count": sum(by_stage.values()),
                "by_stage": by_stage,
                "recent_applications": [
                    {
                        "uuid": str(app.id),
                        "company": app.company_name,
                        "job_role": app.job_role_title,
                        "status": app.status,
                        "pipeline_stage": app.pipeline_stage,
                        "applied_at": iso(app.applied_at),
                    }
                    for app in recent.scalars().all()
                ],
            },
            "targets": [t.company_name for t in targets.scalars().all()],
            "target_job_roles": list(roles.scalars().all()),
            "target_domains": list(domains.scalars().all()),
            "page": whitelist_page_context(page_context),
        }

    def render(self, context: Mapping[str, Any]) -> str:
        """Readable USER CONTEXT section, cut at max_chars."""
        lines: List[str] = []

        user = context.get("user") or {}
        if user.get("name"):
            lines.append(f"User: {user['name']}")
        if user.get("headline"):
            lines.append(f"Headline: {user['headline']}")

        profile = context.get("profile") or {}
        if profile.get("current_job_role") or profile.get("current_company"):
            lines.append(
                f"Current Position: {profile.get('current_job_role') or 'Role'} "
                f"at {profile.get('current_company') or 'unknown company'}"
            )
        if profile.get("years_of_experience") is not None:
            lines.append(f"Experience: {profile['years_of_experience']} years")
        if profile.get("summary"):
            lines.append(f"\nProfile Summary: {profile['summary']}")

        pipeline = context.get("pipeline") or {}
        if pipeline:
            lines.append(f"\nPipeline: {pipeline.get('applications_count', 0)} applications")
            by_stage = pipeline.get("by_stage") or {}
            if by_stage:
                lines.append(
                    "By stage: " + ", ".join(f"{k}={v}" for k, v in sorted(by_stage.items()))
                )
            recent = pipeline.get("recent_applications") or []
            if recent:
                # Ids let the model call application tools without guessing
                entries = [
                    f"{app.get('job_role') or 'Role'} at {app.get('company')} "
                    f"({app.get('pipeline_stage')}) [uuid={app.get('uuid')}]"
                    for app in recent
                ]
                lines.append("Recent: " + "; ".join(entries))

        targets = context.get("targets") or []
        if targets:
            lines.append("\nTarget Companies: " + ", ".join(targets))
        roles = context.get("target_job_roles") or []
        if roles:
            lines.append("Target Roles: " + ", ".join(roles))
        domains = context.get("target_domains") or []
        if domains:
            lines.append("Target Domains: " + ", ".join(domains))

        page = context.get("page") or {}
        if page:
            lines.append(
                "\nCurrent Page: " + ", ".join(f"{k}: {v}" for k, v in page.items())
            )

        text = "\n".join(lines)
        if len(text) > self.max_chars:
            text = text[: self.max_chars - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
        return text

    def system_prompt(
        self, context: Mapping[str, Any], base_prompt: Optional[str] = None
    ) -> str:
        base = (base_prompt or DEFAULT_SYSTEM_PROMPT).rstrip()
        return f"{base}\n\n---\n\nUSER CONTEXT:\n{self.render(context)}\n\n---\n"
