"""Token-bucket rate limiting for desktop-sync pushes."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable


class _TokenBucket:
    def __init__(self, tokens: float, updated_at: float) -> None:
        self.tokens = tokens
        self.updated_at = updated_at


class RateLimiter:
    """One bucket per key, refilled at ``rps`` up to ``burst``.

    Keys are evicted least-recently-used past ``max_entries``.
    """

    def __init__(
        self,
        rps: float,
        burst: int,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rps = rps
        self._burst = burst
        self._max_entries = max_entries
        self._clock = clock
        self._buckets: OrderedDict[str, _TokenBucket] = OrderedDict()
        self._lock = threading.Lock()

    def allow(self, key: str) -> tuple[bool, float]:
        """Take one token for ``key``. Returns (allowed, seconds until retry)."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _TokenBucket(tokens=self._burst, updated_at=now)
                self._buckets[key] = bucket
            else:
                elapsed = max(0.0, now - bucket.updated_at)
                bucket.tokens = min(self._burst, bucket.tokens + elapsed * self._rps)
                bucket.updated_at = now
                self._buckets.move_to_end(key)
            if len(self._buckets) > self._max_entries:
                self._buckets.popitem(last=False)
            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True, 0.0
            return False, max(0.0, (1.0 - bucket.tokens) / self._rps)
