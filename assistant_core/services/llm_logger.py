"""
LLM call logging with latency measurement and trace correlation.

Each provider attempt is written to llm_api_logs in its own short transaction,
so the log survives even when the surrounding turn later fails. Errors raised
by the call are captured in the returned RecordedCall rather than re-raised.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.database import with_unit_of_work
from ..db.models import LlmApiLog
from ..errors import ErrorKind, ProviderError
from ..providers.base import ProviderResult
from ..utils.logging import get_logger, get_trace_id

logger = get_logger(__name__)

MAX_LOGGED_TEXT = 4000


@dataclass
class RecordedCall:
    """Result of a logged provider call: exactly one of result/error is set."""

    result: Optional[ProviderResult]
    error: Optional[ProviderError]
    latency_ms: int
    log_id: Optional[uuid.UUID]

    @property
    def ok(self) -> bool:
        return self.result is not None


class LlmCallLogger:
    """Records provider calls to llm_api_logs."""

    def __init__(
        self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    ):
        self.session_factory = session_factory

    async def record(
        self,
        *,
        provider: str,
        model: str,
        operation: str,
        request_payload: Dict[str, Any],
        call: Callable[[], Awaitable[ProviderResult]],
        user_id: Optional[uuid.UUID] = None,
    ) -> RecordedCall:
        """
        Run a provider call, time it, and persist one log row.

        Args:
            provider: Provider name
            model: Model name
            operation: Logical operation (assistant_chat, assistant_tool_followup)
            request_payload: Compact request summary
            call: Zero-argument coroutine factory performing the call
            user_id: Acting user, if known
        """
        start = time.monotonic()
        result: Optional[ProviderResult] = None
        error: Optional[ProviderError] = None
        try:
            result = await call()
        except ProviderError as e:
            error = e
        except Exception as e:
            # An adapter bug must not stop the chain from falling back
            logger.exception("Provider call raised unexpectedly", provider=provider)
            error = ProviderError(
                f"{provider} call failed: {e.__class__.__name__}: {e}",
                kind=ErrorKind.REQUEST_FAILED,
                provider=provider,
            )
        latency_ms = int((time.monotonic() - start) * 1000)

        log = LlmApiLog(
            id=uuid.uuid4(),
            provider=provider,
            model=model,
            operation=operation,
            trace_id=get_trace_id(),
            user_id=user_id,
            request_payload=request_payload,
            status="success" if result is not None else "error",
            latency_ms=latency_ms,
        )
        if result is not None:
            log.response_text = (result.text or "")[:MAX_LOGGED_TEXT]
            log.input_tokens = result.input_tokens
            log.output_tokens = result.output_tokens
        else:
            log.error_type = error.kind.value
            log.error_message = error.message[:MAX_LOGGED_TEXT]

        log_id = await self._persist(log)

        logger.info(
            "LLM call recorded",
            provider=provider,
            model=model,
            operation=operation,
            status=log.status,
            error_type=log.error_type,
            latency_ms=latency_ms,
            input_tokens=log.input_tokens,
            output_tokens=log.output_tokens,
        )
        return RecordedCall(result=result, error=error, latency_ms=latency_ms, log_id=log_id)

    async def record_synthetic_failure(
        self,
        *,
        operation: str,
        providers_tried: list,
        errors: list,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[uuid.UUID]:
        """Write the turn-level log entry for an exhausted provider chain."""
        log = LlmApiLog(
            id=uuid.uuid4(),
            provider=providers_tried[-1] if providers_tried else "none",
            model=None,
            operation=operation,
            trace_id=get_trace_id(),
            user_id=user_id,
            request_payload={"providers_tried": providers_tried, "errors": errors},
            status="error",
            error_type=ErrorKind.ALL_PROVIDERS_EXHAUSTED.value,
            error_message="All providers failed",
            latency_ms=0,
            synthetic=True,
        )
        log_id = await self._persist(log)
        logger.error(
            "All providers exhausted",
            operation=operation,
            providers_tried=providers_tried,
            errors=errors,
        )
        return log_id

    async def _persist(self, log: LlmApiLog) -> Optional[uuid.UUID]:
        # Usage logging must not fail the call it describes
        try:
            async with with_unit_of_work(self.session_factory) as session:
                session.add(log)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to persist LLM call log",
                provider=log.provider,
                operation=log.operation,
                error=str(e),
            )
            return None
        return log.id
