"""
In-memory task queue - no broker.
Jobs live in this process only and run when `run_pending` is called.

Mirrors the arq semantics the worker relies on: a job id is deduplicated
while its job is queued or retrying, and a job that raises `arq.Retry` is
queued again after the requested delay until it runs out of tries.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from arq import Retry

from rental_booking.core.logging import get_logger
from rental_booking.services.interfaces.task_queue import TaskQueue

logger = get_logger(__name__)

JobFunction = Callable[..., Awaitable[Any]]

DEFAULT_MAX_TRIES = 5


@dataclass
class QueuedJob:
    name: str
    payload: dict[str, Any]
    job_id: Optional[str] = None
    defer_until: Optional[datetime] = None
    tries: int = 0
    error: Optional[str] = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_due(self, now: datetime) -> bool:
        return self.defer_until is None or self.defer_until <= now


class InMemoryTaskQueue(TaskQueue):
    """
    Single-process queue.

    Use when:
    - Running the API locally without Redis
    - Tests that inspect what was scheduled
    """

    def __init__(self, max_tries: int = DEFAULT_MAX_TRIES):
        self.max_tries = max_tries
        self.jobs: list[QueuedJob] = []
        self.failed: list[QueuedJob] = []
        self._active_ids: set[str] = set()

    async def enqueue(self, job_name, payload, *, job_id=None, defer_until=None) -> bool:
        if job_id is not None:
            if job_id in self._active_ids:
                logger.info("job_deduplicated", job=job_name, job_id=job_id)
                return False
            self._active_ids.add(job_id)
        self.jobs.append(QueuedJob(job_name, dict(payload), job_id, defer_until))
        return True

    def find(self, job_name: str) -> list[QueuedJob]:
        return [job for job in self.jobs if job.name == job_name]

    async def run_pending(
        self,
        functions: dict[str, JobFunction],
        ctx: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Run every job due at `now` once, in enqueue order.

        A job raising `Retry` is queued again with its delay (counted from
        `now`) unless it has used `max_tries`. Other failures, and retries past
        the limit, move the job to `failed` with its error. Returns the number
        of jobs run.
        """
        now = now or datetime.now(timezone.utc)
        due = [job for job in self.jobs if job.is_due(now)]
        ran = 0
        for job in due:
            self.jobs.remove(job)
            job.tries += 1
            try:
                await functions[job.name]({**ctx, "job_try": job.tries, "job_id": job.job_id}, **job.payload)
            except Retry as e:
                if job.tries < self.max_tries:
                    job.defer_until = now + timedelta(milliseconds=e.defer_score or 0)
                    self.jobs.append(job)
                    logger.info("memory_job_retry", job=job.name, job_id=job.job_id, tries=job.tries)
                else:
                    self._fail(job, f"max {self.max_tries} retries exceeded")
            except Exception as e:
                self._fail(job, str(e))
            else:
                self._release(job)
            ran += 1
        return ran

    def _fail(self, job: QueuedJob, error: str) -> None:
        job.error = error
        self.failed.append(job)
        self._release(job)
        logger.error("memory_job_failed", job=job.name, job_id=job.job_id, error=error)

    def _release(self, job: QueuedJob) -> None:
        if job.job_id is not None:
            self._active_ids.discard(job.job_id)
