"""
Redis-backed sliding-window rate limiter.
Implements RateLimiter so every API instance enforces the same window.

Circuit Breaker Pattern:
  On Redis failure, the limiter "fails open" (allows the request).
  Rate limiting is abuse protection, not a correctness guarantee, so a
  Redis outage must not take booking traffic down with it.
"""

import time
import uuid
from pathlib import Path

import redis.asyncio as redis

from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import redis_connection_errors
from rental_booking.services.interfaces.rate_limiter import RateLimiter, RateLimitResult

logger = get_logger(__name__)

SCRIPT_PATH = Path(__file__).resolve().parent.parent / "infrastructure" / "sliding_window.lua"
SLIDING_WINDOW_SCRIPT = SCRIPT_PATH.read_text()

KEY_PREFIX = "ratelimit:"


class RedisRateLimiter(RateLimiter):
    def __init__(self, client: redis.Redis):
        self.redis = client
        self.script = client.register_script(SLIDING_WINDOW_SCRIPT)

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now_ms = int(time.time() * 1000)
        try:
            allowed, retry_after_ms = await self.script(
                keys=[KEY_PREFIX + key],
                args=[now_ms, window_seconds * 1000, limit, f"{now_ms}:{uuid.uuid4().hex}"],
            )
        except redis.RedisError as e:
            redis_connection_errors.inc()
            logger.warning("rate_limit_fail_open", key=key, error=str(e))
            return RateLimitResult(True)

        if int(allowed):
            return RateLimitResult(True)
        return RateLimitResult(False, max(1, -(-int(retry_after_ms) // 1000)))
