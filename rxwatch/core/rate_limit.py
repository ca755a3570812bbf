"""In-memory sliding-window rate limiting for the public API.

Each identifier gets its own pyrate-limiter ``InMemoryBucket``; this module
adds the per-identifier table, idle sweeping and ``Retry-After`` math the
middleware needs.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from pyrate_limiter import InMemoryBucket, Rate, RateItem

from rxwatch.core.config import settings
from rxwatch.core.logging import get_logger

log = get_logger("rate_limit")


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    current_count: int
    max_requests: int
    window_seconds: float
    retry_after: int = 0

    @property
    def remaining(self) -> int:
        """Number of requests remaining in the current window."""
        return max(0, self.max_requests - self.current_count)


class SlidingWindowRateLimiter:
    """Admits at most ``max_requests`` per identifier in any trailing window.

    Requests older than the window are leaked from an identifier's bucket
    whenever it is checked. Identifiers that stopped sending requests are
    swept every ``gc_interval_seconds`` so the table does not grow without
    bound.
    """

    def __init__(
        self,
        max_requests: int = 120,
        window_seconds: float = 60.0,
        gc_interval_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.gc_interval_seconds = gc_interval_seconds if gc_interval_seconds is not None else window_seconds
        self._clock = clock
        self._window_ms = max(1, round(window_seconds * 1000))
        # pyrate-limiter counts both ends of an interval; a request exactly one
        # window old has expired
        self._rate = Rate(max_requests, max(1, self._window_ms - 1))
        self._buckets: Dict[str, InMemoryBucket] = {}
        self._lock = threading.Lock()
        self._last_gc = clock()

    @classmethod
    def from_settings(cls) -> "SlidingWindowRateLimiter":
        return cls(
            max_requests=settings.RATE_LIMIT_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )

    def hit(self, identifier: str) -> RateLimitResult:
        """Record a request from ``identifier`` if it is within the limit."""
        with self._lock:
            now = self._clock()
            if now - self._last_gc >= self.gc_interval_seconds:
                self._collect_garbage(now)

            now_ms = self._to_ms(now)
            bucket = self._buckets.get(identifier)
            if bucket is None:
                bucket = self._buckets[identifier] = InMemoryBucket([self._rate])
            bucket.leak(now_ms)

            if not bucket.put(RateItem(identifier, now_ms)):
                oldest = bucket.items[0].timestamp
                retry_after = math.ceil((oldest + self._window_ms - now_ms) / 1000)
                return RateLimitResult(
                    allowed=False,
                    current_count=bucket.count(),
                    max_requests=self.max_requests,
                    window_seconds=self.window_seconds,
                    retry_after=max(1, retry_after),
                )

            return RateLimitResult(
                allowed=True,
                current_count=bucket.count(),
                max_requests=self.max_requests,
                window_seconds=self.window_seconds,
            )

    def tracked_identifiers(self) -> int:
        with self._lock:
            return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()

    @staticmethod
    def _to_ms(seconds: float) -> int:
        return round(seconds * 1000)

    def _collect_garbage(self, now: float) -> None:
        now_ms = self._to_ms(now)
        stale = []
        for key, bucket in self._buckets.items():
            bucket.leak(now_ms)
            if bucket.count() == 0:
                stale.append(key)
        for key in stale:
            del self._buckets[key]
        self._last_gc = now
        if stale:
            log.debug(f"Rate limiter dropped {len(stale)} idle identifiers")
