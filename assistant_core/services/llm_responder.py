"""
Provider chain execution with logging, rate-limit retries, and fallback.

Every attempt is written to llm_api_logs. A rate limit is retried on the same
provider (bounded by ASSISTANT_RATE_LIMIT_RETRIES, honouring the provider's
backoff hint up to ASSISTANT_RATE_LIMIT_MAX_WAIT_SECONDS); any other failure
moves on to the next provider. When the chain is exhausted a synthetic log
row is written so the failed turn still has something to point at.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings, get_settings
from ..providers.base import LLMProvider, ProviderRequest, ProviderResult, ToolCall
from ..utils.logging import get_logger
from .llm_logger import LlmCallLogger, RecordedCall

logger = get_logger(__name__)

GENERATION_FAILED_TEXT = "Sorry — I ran into an issue generating a response. Please try again."


class _RateLimited(Exception):
    """Carries a rate-limited RecordedCall through tenacity."""

    def __init__(self, recorded: RecordedCall):
        super().__init__(recorded.error.message if recorded.error else "rate limited")
        self.recorded = recorded


@dataclass
class LlmResponse:
    """Outcome of running the provider chain once."""

    status: str
    provider: Optional[str] = None
    model: Optional[str] = None
    result: Optional[ProviderResult] = None
    llm_api_log_id: Optional[uuid.UUID] = None
    latency_ms: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    providers_tried: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def text(self) -> str:
        return self.result.text if self.result else ""

    @property
    def tool_calls(self) -> List[ToolCall]:
        return list(self.result.tool_calls) if self.result else []


class LlmResponder:
    """Runs prepared requests against the configured provider chain."""

    def __init__(
        self,
        providers: Sequence[LLMProvider],
        *,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        call_logger: Optional[LlmCallLogger] = None,
        settings: Optional[Settings] = None,
    ):
        self.providers = list(providers)
        self.settings = settings or get_settings()
        self.call_logger = call_logger or LlmCallLogger(session_factory)

    def provider_named(self, name: Optional[str]) -> Optional[LLMProvider]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    def _rate_limit_wait(self, retry_state: RetryCallState) -> float:
        """Provider backoff hint when present, exponential otherwise."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        hint = None
        if isinstance(exc, _RateLimited) and exc.recorded.error is not None:
            hint = exc.recorded.error.retry_after
        if hint is not None:
            return min(float(hint), self.settings.assistant_rate_limit_max_wait_seconds)
        fallback = wait_exponential(
            multiplier=0.5, max=self.settings.assistant_rate_limit_max_wait_seconds
        )
        return fallback(retry_state)

    def _should_retry_rate_limit(self, recorded: RecordedCall) -> bool:
        error = recorded.error
        if error is None or not error.retryable:
            return False
        # A hint longer than we are willing to wait means fall back instead
        return (error.retry_after or 0) <= self.settings.assistant_rate_limit_max_wait_seconds

    async def call_provider(
        self,
        provider: LLMProvider,
        request: ProviderRequest,
        *,
        user_id: Optional[uuid.UUID] = None,
    ) -> RecordedCall:
        """One logged provider call, retried on rate limits."""
        payload = provider.request_payload_for_log(request)

        async def attempt_call() -> RecordedCall:
            recorded = await self.call_logger.record(
                provider=provider.name,
                model=provider.model,
                operation=request.operation,
                request_payload=payload,
                call=lambda: provider.run(request),
                user_id=user_id,
            )
            if self._should_retry_rate_limit(recorded):
                raise _RateLimited(recorded)
            return recorded

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.settings.assistant_rate_limit_retries + 1),
            wait=self._rate_limit_wait,
            retry=retry_if_exception_type(_RateLimited),
        )
        try:
            return await retrying(attempt_call)
        except _RateLimited as e:
            logger.warning(
                "Rate limit retries exhausted",
                provider=provider.name,
                retry_after=e.recorded.error.retry_after if e.recorded.error else None,
            )
            return e.recorded

    async def respond(
        self,
        requests: Sequence[Tuple[LLMProvider, ProviderRequest]],
        *,
        user_id: Optional[uuid.UUID] = None,
        operation: str = "assistant_chat",
    ) -> LlmResponse:
        """
        Try each (provider, request) pair in order until one succeeds.

        Returns:
            LlmResponse with status "success", or "error" after a synthetic
            all_providers_exhausted log row has been written
        """
        tried: List[str] = []
        errors: List[Dict[str, Any]] = []

        for provider, request in requests:
            tried.append(provider.name)
            recorded = await self.call_provider(provider, request, user_id=user_id)
            if recorded.ok:
                return LlmResponse(
                    status="success",
                    provider=provider.name,
                    model=recorded.result.model or provider.model,
                    result=recorded.result,
                    llm_api_log_id=recorded.log_id,
                    latency_ms=recorded.latency_ms,
                    providers_tried=tried,
                )

            errors.append(
                {
                    "provider": provider.name,
                    "error_type": recorded.error.kind.value,
                    "error": recorded.error.message,
                }
            )
            logger.warning(
                "Provider attempt failed",
                provider=provider.name,
                error_type=recorded.error.kind.value,
                remaining=len(requests) - len(tried),
            )

        log_id = await self.call_logger.record_synthetic_failure(
            operation=operation, providers_tried=tried, errors=errors, user_id=user_id
        )
        last = errors[-1] if errors else {}
        return LlmResponse(
            status="error",
            provider=tried[-1] if tried else None,
            llm_api_log_id=log_id,
            error=last.get("error") or "No providers configured",
            error_type="all_providers_exhausted",
            providers_tried=tried,
        )
