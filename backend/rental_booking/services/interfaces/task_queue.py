"""
Durable task queue interface.
Lets the booking core schedule work without knowing which broker runs it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional


class TaskQueue(ABC):
    """
    Interface for background job submission.

    Implementations:
    - InMemoryTaskQueue: process-local, for development and tests
    - ArqTaskQueue: Redis-backed arq pool shared with the worker process
    """

    @abstractmethod
    async def enqueue(
        self,
        job_name: str,
        payload: dict[str, Any],
        *,
        job_id: Optional[str] = None,
        defer_until: Optional[datetime] = None,
    ) -> bool:
        """
        Submit a job.

        Args:
            job_name: Registered worker function name
            payload: Keyword arguments for the job
            job_id: Deduplication key; a second enqueue with the same key is dropped
            defer_until: Earliest time the job may run (None = immediately)

        Returns:
            True if the job was queued, False if it was a duplicate
        """
        pass

    async def close(self) -> None:
        """Release broker connections."""
        pass
