"""
Rate limiter interface and the single-process implementation.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int = 0


class RateLimiter(ABC):
    """
    Sliding-window limiter keyed by an identity string.

    Implementations:
    - InMemoryRateLimiter: per-process windows, for development and tests
    - RedisRateLimiter: windows shared by every API instance
    """

    @abstractmethod
    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one request for `key`; reject if `limit` was already reached in the window."""
        pass


class InMemoryRateLimiter(RateLimiter):
    # Idle keys are dropped once their window has passed, like the EXPIRE in sliding_window.lua
    PRUNE_EVERY = 1000

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._windows: dict[str, deque] = {}
        self._expires_at: dict[str, float] = {}
        self._hits = 0
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = self._clock()
        async with self._lock:
            self._hits += 1
            if self._hits % self.PRUNE_EVERY == 0:
                self._prune(now)

            window = self._windows.setdefault(key, deque())
            while window and window[0] <= now - window_seconds:
                window.popleft()
            if len(window) >= limit:
                retry_after = window[0] + window_seconds - now
                return RateLimitResult(False, max(1, int(retry_after + 0.999)))
            window.append(now)
            self._expires_at[key] = now + window_seconds
        return RateLimitResult(True)

    def _prune(self, now: float) -> None:
        for key in [k for k, expires_at in self._expires_at.items() if expires_at <= now]:
            del self._windows[key]
            del self._expires_at[key]

    @property
    def tracked_keys(self) -> int:
        return len(self._windows)

    def reset(self) -> None:
        self._windows.clear()
        self._expires_at.clear()
