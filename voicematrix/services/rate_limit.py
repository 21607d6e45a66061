"""Per-client sliding window rate limiting for the webhook endpoint."""

import time
from typing import Callable, Dict, List, Optional, Protocol

from voicematrix.config import settings


class CounterStore(Protocol):
    """Storage for request timestamps per key.

    The in-memory store only limits a single process. A shared backend
    implementing the same two methods can replace it.
    """

    def hits(self, key: str, since: float) -> List[float]:
        ...

    def record(self, key: str, at: float, since: float) -> None:
        ...


class InMemoryCounterStore:
    def __init__(self, cleanup_every: int = 1000):
        self._buckets: Dict[str, List[float]] = {}
        self._cleanup_every = cleanup_every
        self._writes = 0

    def hits(self, key: str, since: float) -> List[float]:
        return [ts for ts in self._buckets.get(key, []) if ts > since]

    def record(self, key: str, at: float, since: float) -> None:
        bucket = self.hits(key, since)
        bucket.append(at)
        self._buckets[key] = bucket

        self._writes += 1
        if self._writes % self._cleanup_every == 0:
            self._evict(since)

    def _evict(self, since: float) -> None:
        stale = [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] <= since]
        for key in stale:
            del self._buckets[key]

    def __len__(self) -> int:
        return len(self._buckets)


class SlidingWindowRateLimiter:
    def __init__(
        self,
        store: Optional[CounterStore] = None,
        limit: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store if store is not None else InMemoryCounterStore()
        self.limit = limit if limit is not None else settings.webhook_rate_limit
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.webhook_rate_window_seconds
        )
        self._clock = clock

    def hit(self, key: str) -> bool:
        """Record a request for ``key``. Returns False when over the limit."""
        now = self._clock()
        since = now - self.window_seconds
        if len(self.store.hits(key, since)) >= self.limit:
            return False
        self.store.record(key, now, since)
        return True


_webhook_rate_limiter = SlidingWindowRateLimiter()


def get_webhook_rate_limiter() -> SlidingWindowRateLimiter:
    return _webhook_rate_limiter
