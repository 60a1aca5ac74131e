"""
Recording of model-proposed tool calls as ToolExecution rows.

Calls are deduplicated per assistant message by a content hash of
(tool_key, args). A duplicate call keeps its provider call id as an alias on
the surviving record so that every call the provider made still gets answered.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Message, Thread, Tool, ToolExecution, User
from ..db.repositories import ToolExecutionsRepository, ToolsRepository
from ..providers.base import ToolCall
from ..utils.logging import get_logger
from .tool_policy import ToolPolicy, requires_confirmation

logger = get_logger(__name__)


def canonical_args(args: Dict[str, Any]) -> str:
    return json.dumps(args or {}, sort_keys=True, separators=(",", ":"), default=str)


def dedup_hash(tool_key: str, args: Dict[str, Any]) -> str:
    """Content hash of a call: identical (tool_key, args) pairs hash equal."""
    material = json.dumps(
        {"tool_key": tool_key, "args": json.loads(canonical_args(args))},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def idempotency_key(
    thread_id: uuid.UUID, assistant_message_id: uuid.UUID, call_id: str, args: Dict[str, Any]
) -> str:
    material = f"{thread_id}:{assistant_message_id}:{call_id}:{canonical_args(args)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass
class RecordedProposal:
    """One provider call mapped onto its execution record."""

    call_id: str
    execution: ToolExecution
    created: bool

    @property
    def auto_run(self) -> bool:
        return self.execution.status == "queued"


class ToolProposalRecorder:
    """Turns normalized tool calls into ToolExecution rows."""

    def __init__(self, policy: Optional[ToolPolicy] = None):
        self.policy = policy or ToolPolicy()

    async def record(
        self,
        session: AsyncSession,
        *,
        thread: Thread,
        user: User,
        assistant_message: Message,
        tool_calls: Iterable[ToolCall],
        trace_id: Optional[str],
        page_context: Optional[Mapping[str, Any]] = None,
    ) -> List[RecordedProposal]:
        """
        Record tool calls against an assistant message.

        Gated tools start as `proposed`; everything else starts as `queued`.
        Calls the policy does not permit (unknown, disabled, or not allowed in
        this context) are queued too, so the engine records the rejection as
        the call's result instead of leaving it unanswered.
        """
        executions = ToolExecutionsRepository(session)
        tools = ToolsRepository(session)
        recorded: List[RecordedProposal] = []
        tool_rows: Dict[str, Optional[Tool]] = {}

        for call in tool_calls:
            content_hash = dedup_hash(call.tool_key, call.args)
            existing = await executions.find_by_dedup_hash(
                assistant_message.id, content_hash
            )
            if existing is not None:
                if call.provider_tool_call_id not in existing.provider_call_ids:
                    existing.alias_tool_call_ids = list(existing.alias_tool_call_ids or []) + [
                        call.provider_tool_call_id
                    ]
                    await session.flush()
                logger.info(
                    "Duplicate tool proposal merged",
                    tool_key=call.tool_key,
                    tool_execution_id=str(existing.id),
                    provider_tool_call_id=call.provider_tool_call_id,
                )
                recorded.append(
                    RecordedProposal(
                        call_id=call.provider_tool_call_id, execution=existing, created=False
                    )
                )
                continue

            if call.tool_key not in tool_rows:
                tool_rows[call.tool_key] = await tools.get_by_key(call.tool_key)
            tool = tool_rows[call.tool_key]

            gated = tool is not None and requires_confirmation(tool)
            permitted = tool is not None and self.policy.is_permitted(
                tool, user=user, thread=thread, page_context=dict(page_context or {})
            )
            status = "proposed" if gated and permitted else "queued"

            execution = ToolExecution(
                id=uuid.uuid4(),
                thread_id=thread.id,
                assistant_message_id=assistant_message.id,
                user_id=user.id,
                tool_key=call.tool_key,
                args=dict(call.args),
                status=status,
                trace_id=trace_id,
                requires_confirmation=gated,
                idempotency_key=idempotency_key(
                    thread.id, assistant_message.id, call.provider_tool_call_id, call.args
                ),
                dedup_hash=content_hash,
                provider_tool_call_id=call.provider_tool_call_id,
                alias_tool_call_ids=[],
            )
            session.add(execution)
            await session.flush()

            logger.info(
                "Tool proposal recorded",
                tool_key=call.tool_key,
                tool_execution_id=str(execution.id),
                status=status,
                requires_confirmation=gated,
                permitted=permitted,
            )
            recorded.append(
                RecordedProposal(
                    call_id=call.provider_tool_call_id, execution=execution, created=True
                )
            )

        return recorded
