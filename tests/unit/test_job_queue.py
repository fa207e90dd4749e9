"""Unit tests for the in-process job queue."""

import asyncio

import pytest

from mergeflow.application.queue import JobQueue, QueueSettings, priority_key
from mergeflow.core.models import JobKind, JobStatus


def make_queue(processor, metrics=None, **overrides) -> JobQueue:
    settings = QueueSettings(name="query_processing", backoff_delay_ms=1, **overrides)
    return JobQueue(JobKind.QUERY_PROCESSING, settings, processor, metrics)


def test_backoff():
    fixed = QueueSettings(name="q", backoff_type="fixed", backoff_delay_ms=1000)
    exponential = QueueSettings(name="q", backoff_type="exponential", backoff_delay_ms=2000)

    assert fixed.backoff_ms(3) == 1000
    assert [exponential.backoff_ms(n) for n in (1, 2, 3)] == [2000, 6000, 14000]


def test_settings_from_config():
    settings = QueueSettings.from_config(
        "evaluation", {"concurrency": 5, "attempts": 2, "backoff": {"type": "fixed", "delay_ms": 10}}
    )
    assert (settings.concurrency, settings.attempts, settings.backoff_delay_ms) == (5, 2, 10)
    assert settings.keep_completed == 100


def test_priority_ordering():
    keys = sorted([priority_key(0), priority_key(5), priority_key(1)])
    assert keys == [priority_key(1), priority_key(5), priority_key(0)]


@pytest.mark.asyncio
async def test_job_completes(wait_for, metrics):
    async def processor(job):
        job.update_progress(50)
        return {"echo": job.payload["value"]}

    queue = make_queue(processor, metrics)
    queue.start()
    try:
        job = await queue.add({"value": 42})
        await wait_for(lambda: job.is_terminal)

        assert job.status == JobStatus.COMPLETED
        assert job.result == {"echo": 42}
        assert job.progress == 100
        assert job.attempts_made == 1
        assert metrics.get_metrics()["jobs{queue=query_processing,status=completed}_total"] == 1
    finally:
        await queue.close()


@pytest.mark.asyncio
async def test_failing_job_is_retried_then_exhausted(wait_for):
    attempts = []

    async def processor(job):
        attempts.append(job.attempts_made)
        raise RuntimeError("provider down")

    queue = make_queue(processor, attempts=3)
    queue.start()
    try:
        job = await queue.add({})
        await wait_for(lambda: job.is_terminal)

        assert job.status == JobStatus.FAILED
        assert job.attempts_made == 3
        assert attempts == [1, 2, 3]
        assert job.failed_reason == "provider down"
    finally:
        await queue.close()


@pytest.mark.asyncio
async def test_job_recovers_on_retry(wait_for):
    async def processor(job):
        if job.attempts_made == 1:
            raise RuntimeError("transient")
        return "ok"

    queue = make_queue(processor, attempts=3)
    queue.start()
    try:
        job = await queue.add({})
        await wait_for(lambda: job.is_terminal)

        assert job.status == JobStatus.COMPLETED
        assert job.attempts_made == 2
        assert job.failed_reason is None
    finally:
        await queue.close()


@pytest.mark.asyncio
async def test_progress_does_not_regress_on_retry(wait_for):
    seen = []

    async def processor(job):
        if job.attempts_made == 1:
            job.update_progress(60)
            raise RuntimeError("transient")
        job.update_progress(10)
        seen.append(job.progress)
        return "ok"

    queue = make_queue(processor, attempts=2)
    queue.start()
    try:
        job = await queue.add({})
        await wait_for(lambda: job.is_terminal)

        assert seen == [60]
        assert job.progress == 100
    finally:
        await queue.close()


@pytest.mark.asyncio
async def test_priority_jobs_run_first(wait_for):
    order = []

    async def processor(job):
        order.append(job.payload["name"])

    queue = make_queue(processor, concurrency=1)
    await queue.add({"name": "plain"})
    await queue.add({"name": "low"}, priority=5)
    await queue.add({"name": "urgent"}, priority=1)

    queue.start()
    try:
        await wait_for(lambda: len(order) == 3)
        assert order == ["urgent", "low", "plain"]
    finally:
        await queue.close()


@pytest.mark.asyncio
async def test_pause_and_resume(wait_for):
    done = []

    async def processor(job):
        done.append(job.id)

    queue = make_queue(processor)
    queue.start()
    try:
        queue.pause()
        job = await queue.add({})
        await asyncio.sleep(0.05)
        assert done == []
        assert job.status == JobStatus.WAITING
        assert queue.counts()["waiting"] == 1

        queue.resume()
        await wait_for(lambda: job.is_terminal)
        assert done == [job.id]
    finally:
        await queue.close()


@pytest.mark.asyncio
async def test_clear_removes_waiting_and_delayed_jobs():
    async def processor(job):
        return None

    queue = make_queue(processor)
    queue.pause()
    queue.start()
    try:
        waiting = await queue.add({})
        delayed = await queue.add({}, delay_ms=60000)

        assert await queue.clear() == 2
        assert queue.get_job(waiting.id) is None
        assert queue.get_job(delayed.id) is None
        assert queue.counts()["total"] == 0
    finally:
        await queue.close()


@pytest.mark.asyncio
async def test_retention_drops_oldest_completed(wait_for):
    async def processor(job):
        return None

    queue = make_queue(processor, keep_completed=2)
    queue.start()
    try:
        jobs = [await queue.add({"n": n}) for n in range(4)]
        await wait_for(lambda: all(job.is_terminal for job in jobs))

        kept = [job for job in jobs if queue.get_job(job.id) is not None]
        assert len(kept) == 2
        assert queue.counts()["completed"] == 2
    finally:
        await queue.close()
