"""In-process job queue with a worker pool, priorities, retries and retention."""

import asyncio
import itertools
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from mergeflow.core.models import ErrorKind, Job, JobKind, JobStatus
from mergeflow.infrastructure.observability.metrics import MetricsCollector
from mergeflow.utils.logger import get_logger, log_context

logger = get_logger(__name__)

Processor = Callable[[Job], Awaitable[Any]]


@dataclass
class QueueSettings:
    """Per-queue worker and retry settings."""

    name: str
    concurrency: int = 1
    attempts: int = 3
    backoff_type: str = "fixed"
    backoff_delay_ms: int = 1000
    keep_completed: int = 100
    keep_failed: int = 50

    @classmethod
    def from_config(cls, name: str, config: Dict[str, Any]) -> "QueueSettings":
        backoff = config.get("backoff") or {}
        return cls(
            name=name,
            concurrency=int(config.get("concurrency", 1)),
            attempts=int(config.get("attempts", 3)),
            backoff_type=backoff.get("type", "fixed"),
            backoff_delay_ms=int(backoff.get("delay_ms", 1000)),
            keep_completed=int(config.get("keep_completed", 100)),
            keep_failed=int(config.get("keep_failed", 50)),
        )

    def backoff_ms(self, attempts_made: int) -> int:
        """Delay before retrying after the ``attempts_made``-th failure."""
        if self.backoff_type == "exponential":
            return (2 ** attempts_made - 1) * self.backoff_delay_ms
        return self.backoff_delay_ms


def priority_key(priority: int):
    # Prioritised jobs (lower value first) run before unprioritised ones
    return (0, priority) if priority > 0 else (1, 0)


class JobQueue:
    """
    One typed queue and its workers.

    A job moves ``waiting -> active -> completed | failed``; a failed attempt
    with attempts left goes back to ``waiting`` after the backoff delay.
    Terminal jobs are kept up to the retention limits, oldest dropped first.
    """

    def __init__(
        self,
        kind: JobKind,
        settings: QueueSettings,
        processor: Processor,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.kind = kind
        self.settings = settings
        self.processor = processor
        self.metrics = metrics

        self._pending: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        self._jobs: Dict[str, Job] = {}
        self._completed: deque = deque()
        self._failed: deque = deque()
        self._lock = asyncio.Lock()

        self._running = asyncio.Event()
        self._running.set()
        self._workers: Set[asyncio.Task] = set()
        self._timers: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def name(self) -> str:
        return self.settings.name

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    def start(self) -> None:
        """Spawn the worker pool."""
        if self._workers:
            return
        for index in range(self.settings.concurrency):
            task = asyncio.create_task(self._worker(), name=f"{self.name}-worker-{index}")
            self._workers.add(task)
        logger.info(
            f"Queue {self.name} started with {self.settings.concurrency} workers",
            extra={"queue": self.name},
        )

    async def add(
        self,
        payload: Dict[str, Any],
        priority: int = 0,
        delay_ms: int = 0,
        max_attempts: Optional[int] = None,
    ) -> Job:
        """Create a job; it becomes runnable after ``delay_ms``."""
        job = Job(
            id=uuid.uuid4().hex,
            kind=self.kind,
            payload=payload,
            max_attempts=max_attempts or self.settings.attempts,
            priority=max(0, int(priority or 0)),
        )
        async with self._lock:
            self._jobs[job.id] = job

        self._schedule(job, delay_ms)
        logger.debug(f"Job added to {self.name}", extra={"job_id": job.id, "queue": self.name})
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        counts["total"] = len(self._jobs)
        return counts

    def pause(self) -> None:
        """Stop starting new jobs; running ones finish."""
        self._running.clear()
        logger.info(f"Queue {self.name} paused", extra={"queue": self.name})

    def resume(self) -> None:
        self._running.set()
        logger.info(f"Queue {self.name} resumed", extra={"queue": self.name})

    async def clear(self) -> int:
        """Drop every waiting job, delayed ones included."""
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()

        while not self._pending.empty():
            self._pending.get_nowait()
            self._pending.task_done()

        async with self._lock:
            waiting = [job_id for job_id, job in self._jobs.items() if job.status == JobStatus.WAITING]
            for job_id in waiting:
                del self._jobs[job_id]

        logger.info(f"Queue {self.name} cleared ({len(waiting)} jobs)", extra={"queue": self.name})
        return len(waiting)

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._workers) + list(self._timers)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._timers.clear()

    def _schedule(self, job: Job, delay_ms: int) -> None:
        if delay_ms and delay_ms > 0:
            timer = asyncio.create_task(self._enqueue_later(job, delay_ms))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
        else:
            self._enqueue(job)

    def _enqueue(self, job: Job) -> None:
        self._pending.put_nowait((priority_key(job.priority), next(self._sequence), job.id))

    async def _enqueue_later(self, job: Job, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000.0)
        if job.id in self._jobs and not self._closed:
            self._enqueue(job)

    async def _worker(self) -> None:
        while True:
            await self._running.wait()
            item = await self._pending.get()
            try:
                if not self._running.is_set():
                    # Paused while we were waiting; put it back in order
                    self._pending.put_nowait(item)
                    continue

                job = self._jobs.get(item[2])
                if job is None or job.status != JobStatus.WAITING:
                    continue
                fields = {"job_id": job.id, "queue": self.name}
                if job.payload.get("request_id"):
                    fields["request_id"] = job.payload["request_id"]
                with log_context(**fields):
                    await self._run(job)
            finally:
                self._pending.task_done()

    async def _run(self, job: Job) -> None:
        job.status = JobStatus.ACTIVE
        job.attempts_made += 1
        job.processed_at = datetime.utcnow()
        start_time = time.monotonic()

        try:
            result = await self.processor(job)

        except asyncio.CancelledError:
            raise

        except Exception as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            job.failed_reason = str(e) or type(e).__name__

            if job.attempts_made < job.max_attempts:
                delay_ms = self.settings.backoff_ms(job.attempts_made)
                job.status = JobStatus.WAITING
                logger.warning(
                    f"Job failed in {self.name}, retrying in {delay_ms}ms: {e}",
                    extra={"job_id": job.id, "queue": self.name, "attempt": job.attempts_made},
                )
                self._record(job, "retry", duration_ms)
                self._schedule(job, delay_ms)
                return

            job.status = JobStatus.FAILED
            job.finished_at = datetime.utcnow()
            logger.error(
                f"Job exhausted in {self.name}: {e}",
                extra={
                    "job_id": job.id,
                    "queue": self.name,
                    "attempt": job.attempts_made,
                    "error_kind": ErrorKind.JOB_EXHAUSTED.value,
                },
            )
            self._record(job, "failed", duration_ms)
            await self._retain(job, self._failed, self.settings.keep_failed)
            return

        duration_ms = int((time.monotonic() - start_time) * 1000)
        job.result = result
        job.failed_reason = None
        job.update_progress(100)
        job.status = JobStatus.COMPLETED
        job.finished_at = datetime.utcnow()
        logger.info(
            f"Job completed in {self.name}",
            extra={"job_id": job.id, "queue": self.name, "latency_ms": duration_ms},
        )
        self._record(job, "completed", duration_ms)
        await self._retain(job, self._completed, self.settings.keep_completed)

    async def _retain(self, job: Job, finished: deque, limit: int) -> None:
        async with self._lock:
            finished.append(job.id)
            while len(finished) > limit:
                self._jobs.pop(finished.popleft(), None)

    def _record(self, job: Job, status: str, duration_ms: int) -> None:
        if self.metrics:
            self.metrics.record_job(self.name, status, duration_ms)
