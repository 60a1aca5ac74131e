"""Tests for the in-process job queue: retries, rejection, and trace propagation."""

import pytest

from assistant_core.errors import ThreadNotFoundError
from assistant_core.jobs.queue import JobQueue
from assistant_core.utils.logging import get_trace_id, trace_context


@pytest.fixture
def queue():
    return JobQueue(max_attempts=3, retry_wait_seconds=0)


class TestJobQueue:
    """Test suite for JobQueue."""

    async def test_transient_failure_retried_until_success(self, queue):
        calls = []

        async def flaky(job):
            calls.append(job.attempts)
            if len(calls) < 3:
                raise RuntimeError("database went away")

        queue.register("flaky", flaky)
        await queue.enqueue("flaky")

        assert await queue.run_until_empty() == 1
        assert calls == [1, 2, 3]
        assert queue.failed == []

    async def test_job_dropped_after_max_attempts(self, queue):
        attempts = []

        async def broken(job):
            attempts.append(job.attempts)
            raise RuntimeError("still broken")

        queue.register("broken", broken)
        job = await queue.enqueue("broken")

        await queue.run_until_empty()

        assert attempts == [1, 2, 3]
        assert queue.failed == [job]

    async def test_domain_errors_not_retried(self, queue):
        attempts = []

        async def missing(job):
            attempts.append(job.attempts)
            raise ThreadNotFoundError("Thread gone")

        queue.register("missing", missing)
        await queue.enqueue("missing")

        await queue.run_until_empty()

        assert attempts == [1]
        assert len(queue.failed) == 1

    async def test_unknown_job_rejected_at_enqueue(self, queue):
        with pytest.raises(ValueError):
            await queue.enqueue("nope")

    async def test_trace_id_carried_to_handler(self, queue):
        seen = []

        async def handler(job):
            seen.append(get_trace_id())

        queue.register("traced", handler)
        with trace_context("trace-abc"):
            await queue.enqueue("traced")

        assert get_trace_id() is None
        await queue.run_until_empty()

        assert seen == ["trace-abc"]

    async def test_jobs_enqueued_by_handlers_are_drained(self, queue):
        order = []

        async def first(job):
            order.append("first")
            await queue.enqueue("second", value=job.payload["value"] + 1)

        async def second(job):
            order.append(f"second:{job.payload['value']}")

        queue.register("first", first)
        queue.register("second", second)
        await queue.enqueue("first", value=1)

        assert await queue.run_until_empty() == 2
        assert order == ["first", "second:2"]
        assert queue.pending() == 0

    async def test_background_workers_start_and_stop(self, queue):
        await queue.start()
        assert len(queue._tasks) == queue.workers

        await queue.stop()
        assert queue._tasks == []
