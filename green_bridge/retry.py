"""
Retry helpers for on-demand provider calls.
Bounded attempts with a fixed backoff schedule; stops at the first success.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple, Type, TypeVar

from .errors import RateLimitError, TransportError

T = TypeVar("T")

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    RateLimitError,
    TransportError,
    asyncio.TimeoutError,
)


async def with_deadline(awaitable: Awaitable[T], timeout_sec: Optional[float]) -> T:
    """Race a call against a timer; raises asyncio.TimeoutError on expiry."""
    if not timeout_sec:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout_sec)


def backoff_delay(schedule_ms: Sequence[int], attempt: int) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based)."""
    if not schedule_ms:
        return 0.0
    index = min(attempt - 1, len(schedule_ms) - 1)
    return schedule_ms[index] / 1000.0


async def retry_call(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    backoff_schedule_ms: Sequence[int],
    timeout_sec: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    label: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Call ``func`` up to ``max_retries`` times.

    Errors outside ``retry_on`` propagate immediately. The last retryable
    error propagates once attempts are exhausted.
    """
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            logger.debug(f"{label}: attempt {attempt} of {attempts}")
            return await with_deadline(func(), timeout_sec)
        except retry_on as e:
            if attempt >= attempts:
                logger.warning(f"{label}: giving up after {attempt} attempts ({e!r})")
                raise
            delay = backoff_delay(backoff_schedule_ms, attempt)
            if isinstance(e, RateLimitError) and e.retry_after:
                delay = max(delay, float(e.retry_after))
            logger.info(f"{label}: attempt {attempt} failed ({e!r}), retrying in {delay:.1f}s")
            await sleep(delay)
