"""
CompScan - Sliding-Window Rate Limiter (Section 4.4)

Admits at most ``max_requests`` upstream calls per ``window_seconds``. The
default (1 call / 5 s) keeps a single process well under the marketplace's
daily quota.

State is a deque of admission timestamps behind a threading.Lock, so one
limiter can be shared by every request in the process. Clock and sleep are
injectable for tests.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from collections import deque
from typing import Awaitable, Callable

import structlog

from compscan.config import settings
from compscan.models.scan import RateLimitStatus

logger = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """At most ``max_requests`` admissions in any trailing ``window_seconds``."""

    def __init__(
        self,
        max_requests: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        buffer_seconds: float | None = None,
    ) -> None:
        self.max_requests = (
            max_requests if max_requests is not None else settings.EBAY_RATE_LIMIT_MAX_REQUESTS
        )
        self.window_seconds = (
            window_seconds if window_seconds is not None
            else settings.EBAY_RATE_LIMIT_WINDOW_SECONDS
        )
        if self.max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {self.max_requests}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds}")
        self.buffer_seconds = (
            buffer_seconds if buffer_seconds is not None
            else settings.RATE_LIMIT_WAIT_BUFFER_SECONDS
        )
        self._clock = clock
        self._sleep = sleep
        self._admitted: deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        # Caller holds the lock.
        window_start = now - self.window_seconds
        while self._admitted and self._admitted[0] <= window_start:
            self._admitted.popleft()

    def try_acquire(self) -> bool:
        """Admit and record one request if the window has room."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._admitted) < self.max_requests:
                self._admitted.append(now)
                return True
            return False

    def retry_after_ms(self) -> int:
        """Milliseconds until the oldest admission leaves the window (0 if free now)."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if len(self._admitted) < self.max_requests:
                return 0
            remaining = self._admitted[0] + self.window_seconds - now
            return max(0, math.ceil(remaining * 1000))

    async def acquire(self) -> None:
        """Wait until a slot is free, then take it."""
        while not self.try_acquire():
            wait_ms = self.retry_after_ms()
            logger.debug(
                "rate_limiter_waiting",
                wait_ms=wait_ms,
                source="rate_limiter",
            )
            await self._sleep(wait_ms / 1000 + self.buffer_seconds)

    def snapshot(self) -> RateLimitStatus:
        with self._lock:
            now = self._clock()
            self._evict(now)
            current = len(self._admitted)
            oldest = self._admitted[0] if self._admitted else None
        next_available = 0
        if current >= self.max_requests and oldest is not None:
            next_available = max(0, math.ceil((oldest + self.window_seconds - now) * 1000))
        return RateLimitStatus(
            current_requests=current,
            max_requests=self.max_requests,
            window_ms=int(self.window_seconds * 1000),
            next_available_ms=next_available,
        )

    def reset(self) -> None:
        with self._lock:
            self._admitted.clear()
