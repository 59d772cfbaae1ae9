"""Bounded-concurrency request gate with a politeness pause before every request"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestDispatcher:
    """Admission control for outbound fetches.

    At most `max_concurrent` requests are in flight; each admitted request
    waits `rate_limit_delay_ms` before running. Order is not guaranteed.
    """

    def __init__(self, max_concurrent: int = 5, rate_limit_delay_ms: int = 1000):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self.rate_limit_delay_ms = rate_limit_delay_ms
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self.peak_active = 0

    @property
    def active_requests(self) -> int:
        return self._active

    async def run(self, request: Callable[[], Awaitable[T]]) -> T:
        """Run one request factory under the concurrency ceiling"""
        async with self._semaphore:
            self._active += 1
            self.peak_active = max(self.peak_active, self._active)
            try:
                if self.rate_limit_delay_ms > 0:
                    await asyncio.sleep(self.rate_limit_delay_ms / 1000)
                return await request()
            finally:
                self._active -= 1
