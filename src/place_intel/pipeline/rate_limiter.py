"""Per-provider sliding-window rate limiting.

Limiters are owned by the executor and shared across requests so that
concurrent reports do not multiply the request rate seen by an upstream.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
import time

log = logging.getLogger(__name__)


class AsyncRateLimiter:
    """Allows at most `max_requests` starts per `window_seconds`."""

    def __init__(self, max_requests: int, window_seconds: float = 60.0) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def request_context(self) -> AsyncIterator[None]:
        """Wait for a free slot, then run the request."""
        await self._acquire()
        yield

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    async def _acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            self._evict(now)
            if len(self._timestamps) >= self.max_requests:
                sleep_time = self.window_seconds - (now - self._timestamps[0])
                if sleep_time > 0:
                    log.debug("Rate limit reached; waiting %.2fs", sleep_time)
                    await asyncio.sleep(sleep_time)
                now = time.monotonic()
                self._evict(now)
            # Record at start so waiters see the slot as taken
            self._timestamps.append(now)

    @property
    def in_window(self) -> int:
        """Requests started within the current window."""
        self._evict(time.monotonic())
        return len(self._timestamps)


class RateLimiterRegistry:
    """Maps provider ids to their shared limiter, created on first use."""

    def __init__(self, requests_per_minute: int) -> None:
        self._requests_per_minute = requests_per_minute
        self._limiters: dict[str, AsyncRateLimiter] = {}

    def get(self, provider_id: str) -> AsyncRateLimiter:
        """Return the limiter for `provider_id`."""
        limiter = self._limiters.get(provider_id)
        if limiter is None:
            limiter = AsyncRateLimiter(self._requests_per_minute)
            self._limiters[provider_id] = limiter
        return limiter

    def set(self, provider_id: str, limiter: AsyncRateLimiter) -> None:
        """Install a specific limiter for `provider_id`."""
        self._limiters[provider_id] = limiter
