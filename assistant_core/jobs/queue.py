"""
In-process asyncio job queue.

Delivery is at-least-once: a failing handler is retried with tenacity up to
ASSISTANT_JOB_MAX_ATTEMPTS times, so handlers must be idempotent (every job
handler in this service is). Domain errors (AssistantError) are not retried;
they mean the job refers to something that does not exist or cannot run.

The trace id active when a job is enqueued is carried to the handler, so a
turn, its tool executions, and its follow-up share one trace.

run_until_empty() drains the queue in the calling task; tests and scripts use
it instead of background workers for deterministic processing.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import AssistantError
from ..utils.logging import get_logger, get_trace_id, trace_context

logger = get_logger(__name__)


@dataclass
class Job:
    """A named unit of background work."""

    name: str
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    trace_id: Optional[str] = None
    attempts: int = 0


JobHandler = Callable[[Job], Awaitable[None]]


class JobQueue:
    """Named-handler job queue with bounded retries."""

    def __init__(
        self,
        *,
        workers: int = 2,
        max_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
    ):
        self.workers = workers
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds
        self.failed: List[Job] = []
        self._handlers: Dict[str, JobHandler] = {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

    def register(self, name: str, handler: JobHandler) -> None:
        self._handlers[name] = handler

    async def enqueue(self, name: str, **payload: Any) -> Job:
        if name not in self._handlers:
            raise ValueError(f"No handler registered for job: {name}")
        job = Job(name=name, payload=payload, trace_id=get_trace_id())
        await self._queue.put(job)
        logger.info("Job enqueued", job=name, job_id=job.id)
        return job

    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start background workers."""
        if self._tasks:
            return
        for index in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(index)))
        logger.info("Job workers started", workers=self.workers)

    async def stop(self) -> None:
        """Cancel background workers; queued jobs are left in place."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Job workers stopped")

    async def run_until_empty(self) -> int:
        """
        Process jobs in this task until none are left.

        Jobs enqueued by handlers are processed too.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while not self._queue.empty():
            job = self._queue.get_nowait()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()
            processed += 1
        return processed

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    def _log_retry(self, retry_state: RetryCallState) -> None:
        job = retry_state.args[0] if retry_state.args else None
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Job attempt failed, retrying",
            job=getattr(job, "name", None),
            job_id=getattr(job, "id", None),
            attempt=retry_state.attempt_number,
            error=str(exc),
        )

    async def _attempt(self, job: Job) -> None:
        job.attempts += 1
        await self._handlers[job.name](job)

    async def _process(self, job: Job) -> None:
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=30),
            retry=retry_if_not_exception_type(AssistantError),
            before_sleep=self._log_retry,
        )
        with trace_context(job.trace_id, job_id=job.id, job=job.name):
            try:
                await retrying(self._attempt, job)
            except AssistantError as e:
                logger.warning(
                    "Job rejected",
                    job=job.name,
                    error_kind=e.kind.value,
                    error=e.message,
                )
                self.failed.append(job)
            except Exception:
                # Worker boundary: the job is dropped after its last attempt
                logger.exception("Job failed", job=job.name, attempts=job.attempts)
                self.failed.append(job)
