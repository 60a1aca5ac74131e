"""
Job handlers.

chat_turn(user_message_id)           -> TurnRunner.run
execute_tool(tool_execution_id)      -> ToolExecutionEngine.execute, then the follow-up trigger
tool_followup(assistant_message_id)  -> FollowupCoordinator.complete
"""

from typing import TYPE_CHECKING
from uuid import UUID

from ..utils.logging import get_logger
from .queue import Job, JobQueue

if TYPE_CHECKING:
    from ..services.container import AssistantServices

logger = get_logger(__name__)

CHAT_TURN = "chat_turn"
EXECUTE_TOOL = "execute_tool"
TOOL_FOLLOWUP = "tool_followup"


def register_handlers(queue: JobQueue, services: "AssistantServices") -> None:
    """Bind the assistant job names to the service graph."""

    async def chat_turn(job: Job) -> None:
        await services.turn_runner.run(UUID(job.payload["user_message_id"]))

    async def execute_tool(job: Job) -> None:
        outcome = await services.engine.execute(UUID(job.payload["tool_execution_id"]))
        # Re-checked even when this delivery was a no-op: a retry after a crash
        # between the terminal commit and the trigger must still trigger.
        if outcome.is_terminal:
            await services.coordinator.maybe_trigger(outcome.execution.assistant_message_id)

    async def tool_followup(job: Job) -> None:
        await services.coordinator.complete(
            UUID(job.payload["assistant_message_id"]), job.payload.get("claim")
        )

    queue.register(CHAT_TURN, chat_turn)
    queue.register(EXECUTE_TOOL, execute_tool)
    queue.register(TOOL_FOLLOWUP, tool_followup)
    logger.debug("Job handlers registered", jobs=[CHAT_TURN, EXECUTE_TOOL, TOOL_FOLLOWUP])
