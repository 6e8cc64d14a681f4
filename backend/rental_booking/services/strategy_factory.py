"""
Collaborator factory.
Builds the task queue, payment provider and rate limiter once at process
start; the API keeps them on `app.state` and the worker in its context.
"""

from rental_booking.core.config import get_settings
from rental_booking.core.logging import get_logger
from rental_booking.infrastructure.redis_client import get_redis
from rental_booking.services.interfaces.memory_task_queue import InMemoryTaskQueue
from rental_booking.services.interfaces.payment_provider import PaymentProvider
from rental_booking.services.interfaces.rate_limiter import InMemoryRateLimiter, RateLimiter
from rental_booking.services.interfaces.task_queue import TaskQueue
from rental_booking.services.payment_provider_service import StripePaymentProvider
from rental_booking.services.rate_limit_service import RedisRateLimiter
from rental_booking.services.task_queue_service import ArqTaskQueue

logger = get_logger(__name__)


async def build_task_queue() -> TaskQueue:
    """
    Strategy selection via TASK_QUEUE_BACKEND:
    - arq: durable, shared with the worker process (default)
    - memory: process-local, jobs only run when drained
    """
    backend = get_settings().TASK_QUEUE_BACKEND
    if backend == "memory":
        logger.warning("task_queue_in_memory", message="Background jobs will not survive a restart")
        return InMemoryTaskQueue()
    return await ArqTaskQueue.connect()


async def build_rate_limiter() -> RateLimiter:
    """
    Strategy selection via RATE_LIMIT_BACKEND, falling back to per-process
    windows when Redis is unavailable.
    """
    if get_settings().RATE_LIMIT_BACKEND == "redis":
        client = await get_redis()
        if client is not None:
            return RedisRateLimiter(client)
        logger.warning("rate_limiter_in_memory", message="Redis unavailable, limits are per instance")
    return InMemoryRateLimiter()


def build_payment_provider() -> PaymentProvider:
    return StripePaymentProvider.from_settings()
