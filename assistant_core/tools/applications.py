"""Interview application tools (pipeline reads, notes, and rounds)."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import select

from ..db.models import InterviewApplication, InterviewRound
from ..errors import ToolArgumentError
from .base import (
    AssistantTool,
    ToolContext,
    ToolResult,
    iso,
    load_owned_application,
    normalize_filter_value,
)

APPLICATION_UUID = {
    "type": "string",
    "description": "UUID of the interview application",
}

ROUND_STAGES = ["screening", "technical", "hiring_manager", "onsite", "other"]


def serialize_round(round_: InterviewRound) -> Dict[str, Any]:
    return {
        "id": str(round_.id),
        "stage": round_.stage,
        "scheduled_at": iso(round_.scheduled_at),
        "interviewer": round_.interviewer_name,
        "duration_minutes": round_.duration_minutes,
        "result": round_.result,
    }


def serialize_application(app: InterviewApplication) -> Dict[str, Any]:
    return {
        "uuid": str(app.id),
        "company": app.company_name,
        "job_role": app.job_role_title,
        "status": app.status,
        "pipeline_stage": app.pipeline_stage,
        "applied_at": iso(app.applied_at),
    }


class ListInterviewApplicationsTool(AssistantTool):
    tool_key = "list_interview_applications"
    name = "List interview applications"
    description = (
        "List the user's interview applications, newest first. Optional filters: "
        "status and pipeline_stage."
    )
    arg_schema = {
        "type": "object",
        "properties": {
            "status": {"type": "string"},
            "pipeline_stage": {"type": "string"},
            "limit": {"type": "integer", "minimum": 1},
        },
    }

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        status = normalize_filter_value(args.get("status"))
        stage = normalize_filter_value(args.get("pipeline_stage"))
        limit = max(1, min(int(args.get("limit") or 20), 50))

        stmt = (
            select(InterviewApplication)
            .where(InterviewApplication.user_id == ctx.user.id)
            .order_by(InterviewApplication.created_at.desc())
            .limit(limit)
        )
        if status:
            stmt = stmt.where(InterviewApplication.status == status)
        if stage:
            stmt = stmt.where(InterviewApplication.pipeline_stage == stage)

        apps = (await ctx.session.execute(stmt)).scalars().all()
        return ToolResult(
            success=True,
            data={
                "count": len(apps),
                "applications": [serialize_application(a) for a in apps],
            },
        )


class GetInterviewApplicationTool(AssistantTool):
    tool_key = "get_interview_application"
    name = "Get interview application"
    description = "Get one application with its notes and interview rounds."
    arg_schema = {
        "type": "object",
        "properties": {"application_uuid": APPLICATION_UUID},
        "required": ["application_uuid"],
    }

    async def authorize(self, ctx: ToolContext, args: Dict[str, Any]) -> None:
        ctx.extras["application"] = await load_owned_application(
            ctx, args["application_uuid"]
        )

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        app = ctx.extras["application"]
        rounds = await ctx.session.execute(
            select(InterviewRound)
            .where(InterviewRound.application_id == app.id)
            .order_by(InterviewRound.scheduled_at.asc())
        )
        data = serialize_application(app)
        data["notes"] = app.notes
        data["rounds"] = [serialize_round(r) for r in rounds.scalars().all()]
        return ToolResult(success=True, data=data)


class GetNextInterviewTool(AssistantTool):
    tool_key = "get_next_interview"
    name = "Get next interview"
    description = "Find the user's next scheduled interview round."

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        row = (
            await ctx.session.execute(
                select(InterviewRound, InterviewApplication)
                .join(
                    InterviewApplication,
                    InterviewRound.application_id == InterviewApplication.id,
                )
                .where(
                    InterviewApplication.user_id == ctx.user.id,
                    InterviewRound.scheduled_at >= datetime.now(timezone.utc),
                )
                .order_by(InterviewRound.scheduled_at.asc())
                .limit(1)
            )
        ).first()

        if row is None:
            return ToolResult(success=True, data={"next_interview": None})

        round_, app = row
        return ToolResult(
            success=True,
            data={
                "next_interview": serialize_round(round_),
                "application": serialize_application(app),
            },
        )


class AddNoteToApplicationTool(AssistantTool):
    tool_key = "add_note_to_application"
    name = "Add note to application"
    description = "Append a note to an application (or replace its notes)."
    arg_schema = {
        "type": "object",
        "properties": {
            "application_uuid": APPLICATION_UUID,
            "note": {"type": "string", "minLength": 1, "maxLength": 5000},
            "mode": {"type": "string", "enum": ["append", "replace"]},
        },
        "required": ["application_uuid", "note"],
    }
    risk_level = "write"
    requires_confirmation = True

    async def authorize(self, ctx: ToolContext, args: Dict[str, Any]) -> None:
        ctx.extras["application"] = await load_owned_application(
            ctx, args["application_uuid"]
        )

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        app = ctx.extras["application"]
        note = args["note"].strip()
        if args.get("mode") == "replace" or not app.notes:
            app.notes = note
        else:
            app.notes = f"{app.notes.rstrip()}\n\n{note}"
        await ctx.session.flush()

        return ToolResult(
            success=True,
            data={"application_uuid": str(app.id), "notes": app.notes},
        )


class CreateInterviewRoundTool(AssistantTool):
    tool_key = "create_interview_round"
    name = "Create interview round"
    description = "Schedule a new interview round on an application."
    arg_schema = {
        "type": "object",
        "properties": {
            "application_uuid": APPLICATION_UUID,
            "stage": {"type": "string", "enum": ROUND_STAGES},
            "scheduled_at": {
                "type": "string",
                "description": "ISO 8601 date-time",
            },
            "interviewer_name": {"type": "string"},
            "duration_minutes": {"type": "integer", "minimum": 5, "maximum": 480},
        },
        "required": ["application_uuid", "stage"],
    }
    risk_level = "write"
    requires_confirmation = True

    async def authorize(self, ctx: ToolContext, args: Dict[str, Any]) -> None:
        ctx.extras["application"] = await load_owned_application(
            ctx, args["application_uuid"]
        )

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> ToolResult:
        app = ctx.extras["application"]

        scheduled_at = None
        if args.get("scheduled_at"):
            try:
                scheduled_at = datetime.fromisoformat(args["scheduled_at"])
            except ValueError as e:
                raise ToolArgumentError("scheduled_at must be an ISO 8601 date-time") from e
            if scheduled_at.tzinfo is None:
                scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)

        round_ = InterviewRound(
            id=uuid.uuid4(),
            application_id=app.id,
            stage=args["stage"],
            scheduled_at=scheduled_at,
            interviewer_name=args.get("interviewer_name"),
            duration_minutes=args.get("duration_minutes"),
        )
        ctx.session.add(round_)

        if app.pipeline_stage in ("applied", "screening"):
            app.pipeline_stage = "interviewing"
        await ctx.session.flush()

        return ToolResult(
            success=True,
            data={
                "application_uuid": str(app.id),
                "pipeline_stage": app.pipeline_stage,
                "round": serialize_round(round_),
            },
        )
