"""Fixed-window request budget for quota-constrained providers.

Each provider owns one ``RateLimiter``.  The window starts at construction
(or at the last reset) and rolls over once ``window_seconds`` have elapsed,
at which point the request counter drops back to zero.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Tracks request count and window start for one provider."""

    def __init__(
        self,
        name: str,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")

        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self.request_count = 0
        self.window_start = clock()

    def _roll_window(self, now: float) -> None:
        if now - self.window_start >= self.window_seconds:
            self.request_count = 0
            self.window_start = now

    def should_wait_before_next_call(self) -> float:
        """Return seconds to wait before the next call (``0.0`` if none)."""
        now = self._clock()
        self._roll_window(now)
        if self.request_count >= self.limit:
            return self.window_seconds - (now - self.window_start)
        return 0.0

    def record_call(self) -> None:
        """Count one request against the current window."""
        self._roll_window(self._clock())
        self.request_count += 1

    def reset(self) -> None:
        """Start a fresh window now."""
        self.request_count = 0
        self.window_start = self._clock()

    def is_exhausted(self) -> bool:
        """True when the current window has no budget left."""
        return self.should_wait_before_next_call() > 0

    async def acquire(
        self,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        """Wait out the window if the budget is spent, then record a call."""
        wait = self.should_wait_before_next_call()
        if wait > 0:
            logger.info("%s rate limit reached, waiting %.1fs", self.name, wait)
            await sleep(wait)
            self.reset()
        self.record_call()
