"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .task_queue import TaskQueue
from .memory_task_queue import InMemoryTaskQueue
from .payment_provider import PaymentProvider, WebhookSignatureError
from .rate_limiter import RateLimiter, InMemoryRateLimiter

__all__ = [
    'TaskQueue', 'InMemoryTaskQueue',
    'PaymentProvider', 'WebhookSignatureError',
    'RateLimiter', 'InMemoryRateLimiter',
]
