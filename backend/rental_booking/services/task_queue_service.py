"""
arq-backed task queue.

Jobs land in the same Redis the worker (`arq rental_booking.worker.WorkerSettings`)
consumes from. arq drops an enqueue whose `_job_id` is already queued, running
or still holding a result, which gives dedup-by-key for free.
"""

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings

from rental_booking.core.config import get_settings
from rental_booking.core.logging import get_logger
from rental_booking.services.interfaces.task_queue import TaskQueue

logger = get_logger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis settings shared by the API-side pool and the worker."""
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    redis_settings.conn_timeout = 15
    redis_settings.conn_retry_delay = 1
    return redis_settings


class ArqTaskQueue(TaskQueue):
    def __init__(self, pool: ArqRedis):
        self._pool = pool

    @classmethod
    async def connect(cls) -> "ArqTaskQueue":
        return cls(await create_pool(get_redis_settings()))

    async def enqueue(self, job_name, payload, *, job_id=None, defer_until=None) -> bool:
        job = await self._pool.enqueue_job(
            job_name,
            _job_id=job_id,
            _defer_until=defer_until,
            **payload,
        )
        if job is None:
            logger.info("job_deduplicated", job=job_name, job_id=job_id)
            return False
        logger.debug("job_enqueued", job=job_name, job_id=job.job_id, defer_until=defer_until)
        return True

    async def close(self) -> None:
        await self._pool.aclose()
