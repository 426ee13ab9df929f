"""Bounded concurrency shared by every request of an executor."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable


class WorkerPool:
    """Caps the number of external calls in flight at once."""

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight = 0
        self._peak = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak(self) -> int:
        """Highest number of simultaneous calls observed."""
        return self._peak

    async def run[T](self, call: Callable[[], Awaitable[T]]) -> T:
        """Run `call()` once a slot is free."""
        async with self._semaphore:
            self._in_flight += 1
            self._peak = max(self._peak, self._in_flight)
            try:
                return await call()
            finally:
                self._in_flight -= 1
