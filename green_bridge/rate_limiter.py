"""
Rate Limiter for the provider gateway.
Sliding window admission gate shared by every provider call.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window limiter.

    Default: 8 requests per 60s, matching the provider's free-tier quota.
    Grants are issued in FIFO order; a caller that would exceed the window
    is suspended until the oldest grant leaves it.
    """

    def __init__(
        self,
        max_requests: int = 8,
        time_window_ms: int = 60_000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.time_window = time_window_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._grants: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float):
        while self._grants and now - self._grants[0] >= self.time_window:
            self._grants.popleft()

    @property
    def current_count(self) -> int:
        """Number of grants inside the current window."""
        self._prune(self._clock())
        return len(self._grants)

    def wait_time(self) -> float:
        """Seconds until a new grant would be admitted (0 when free)."""
        now = self._clock()
        self._prune(now)
        if len(self._grants) < self.max_requests:
            return 0.0
        return max(0.0, self.time_window - (now - self._grants[0]))

    async def admit(self) -> float:
        """
        Wait until a request may be issued, then record the grant.
        Returns the number of seconds spent waiting.
        """
        async with self._lock:
            waited = 0.0
            while True:
                wait = self.wait_time()
                if wait <= 0:
                    break
                logger.debug(f"Rate limit window full, waiting {wait:.2f}s")
                await self._sleep(wait)
                waited += wait
            self._grants.append(self._clock())
            return waited
