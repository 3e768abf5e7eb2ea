"""Process-wide spacing gate for outbound market data requests."""

import asyncio
import logging
import time
from typing import Callable, Optional

from portfolio_ledger.lib.config import MIN_REQUEST_INTERVAL

logger = logging.getLogger(__name__)


class MinIntervalRateLimiter:
    """Enforce a minimum interval between outbound provider calls.

    Callers are serialized on an ``asyncio.Lock``: each ``acquire()`` waits
    for the previous caller's slot, sleeps out the remainder of the
    interval, then stamps its own request time before releasing.
    """

    def __init__(
        self,
        min_interval: float = MIN_REQUEST_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between two requests
            clock: Monotonic clock (injectable for tests)
        """
        self.min_interval = min_interval
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    async def acquire(self) -> None:
        """Wait until a request may be sent, then claim the slot."""
        async with self._lock:
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                wait = self.min_interval - elapsed
                if wait > 0:
                    logger.debug(f"Rate limiter sleeping {wait:.3f}s")
                    await asyncio.sleep(wait)
            self._last_request = self._clock()

    def reset(self) -> None:
        """Forget the last request time."""
        self._last_request = None


_rate_limiter: Optional[MinIntervalRateLimiter] = None


def get_rate_limiter() -> MinIntervalRateLimiter:
    """Return the shared process-wide limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = MinIntervalRateLimiter()
    return _rate_limiter
