"""
Rate limiting for upload requests.

The limiter is an injected capability rather than module state. The
in-memory implementation counts per process only: behind several
instances each one enforces its own window, which bounds abuse without
giving an exact global quota.
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, NamedTuple


class RateLimitResult(NamedTuple):
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    retry_after: int  # seconds until the next request would be admitted
    limit: int


class RateLimiter(ABC):
    """Admission check keyed by an arbitrary string (e.g. source address)."""

    @abstractmethod
    def hit(self, key: str) -> RateLimitResult:
        """Record a request for ``key`` and report whether it is admitted."""
        pass

    def allow(self, key: str) -> bool:
        return self.hit(key).allowed


class SlidingWindowRateLimiter(RateLimiter):
    """
    Sliding window log limiter.

    Each key keeps the timestamps of its admitted requests inside the
    window. Denied requests are not recorded, so a client that backs off
    for ``retry_after`` seconds is admitted again.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10_000,
    ):
        """
        Initialize rate limiter.

        Args:
            limit: Maximum requests admitted per window
            window_seconds: Length of the sliding window
            clock: Monotonic time source
            max_keys: Tracked keys above which idle keys are pruned
        """
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self.max_keys = max_keys
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _expire(self, hits: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def _prune(self, now: float) -> None:
        for key in list(self._hits):
            self._expire(self._hits[key], now)
            if not self._hits[key]:
                del self._hits[key]

    def hit(self, key: str) -> RateLimitResult:
        with self._lock:
            now = self.clock()
            if len(self._hits) >= self.max_keys:
                self._prune(now)

            hits = self._hits.setdefault(key, deque())
            self._expire(hits, now)

            if len(hits) >= self.limit:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=retry_after,
                    limit=self.limit,
                )

            hits.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=self.limit - len(hits),
                retry_after=0,
                limit=self.limit,
            )
