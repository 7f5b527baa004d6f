"""Fixed-window rate limiter for credential requests.

The default store keeps buckets in process memory, which is only correct for
a single broker instance. Multi-instance deployments need a shared store
(e.g. Redis INCR + EXPIRE) implementing RateLimitStore.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from voicelink.exceptions import RateLimitExceeded
from voicelink.logging_config import get_logger
from voicelink.observability.metrics import RATE_LIMIT_REJECTIONS

logger: Any = get_logger(__name__)


@dataclass(slots=True)
class RateLimitBucket:
    """Request count for one caller identity within the current window."""

    identity: str
    count: int
    window_start: float

    def expired(self, now: float, window_seconds: float) -> bool:
        return now > self.window_start + window_seconds


class RateLimitStore(Protocol):
    """Storage for rate limit buckets keyed by caller identity."""

    async def hit(self, identity: str, now: float, window_seconds: float) -> RateLimitBucket:
        """Atomically count one request, starting a new window if the old one rolled over."""
        ...

    async def evict_expired(self, now: float, window_seconds: float) -> int:
        """Drop buckets whose window has rolled over. Returns the number evicted."""
        ...


@dataclass
class InMemoryRateLimitStore:
    """Process-local bucket store."""

    _buckets: dict[str, RateLimitBucket] = field(default_factory=dict, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def hit(self, identity: str, now: float, window_seconds: float) -> RateLimitBucket:
        async with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None or bucket.expired(now, window_seconds):
                bucket = RateLimitBucket(identity=identity, count=0, window_start=now)
                self._buckets[identity] = bucket
            bucket.count += 1
            return RateLimitBucket(bucket.identity, bucket.count, bucket.window_start)

    async def evict_expired(self, now: float, window_seconds: float) -> int:
        async with self._lock:
            stale = [k for k, b in self._buckets.items() if b.expired(now, window_seconds)]
            for identity in stale:
                del self._buckets[identity]
            return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)


@dataclass
class FixedWindowRateLimiter:
    """Allow max_requests per caller identity per window.

    Defaults match the broker quota: 10 requests per 60 seconds.
    """

    max_requests: int = 10
    window_seconds: float = 60.0
    store: RateLimitStore = field(default_factory=InMemoryRateLimitStore)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _last_sweep: float = field(default=0.0, init=False, repr=False)

    async def check(self, identity: str) -> RateLimitBucket:
        """Count a request for identity.

        Raises:
            RateLimitExceeded: When the identity is over quota for this window
        """
        now = self.clock()
        await self._sweep(now)

        bucket = await self.store.hit(identity, now, self.window_seconds)
        if bucket.count > self.max_requests:
            retry_after = max(0.0, bucket.window_start + self.window_seconds - now)
            RATE_LIMIT_REJECTIONS.labels(service="broker").inc()
            logger.warning(
                f"Rate limit exceeded for {identity} "
                f"({bucket.count}/{self.max_requests}, retry in {retry_after:.0f}s)"
            )
            raise RateLimitExceeded("Rate limit exceeded", retry_after=retry_after)
        return bucket

    async def _sweep(self, now: float) -> None:
        """Evict rolled-over windows at most once per window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        evicted = await self.store.evict_expired(now, self.window_seconds)
        if evicted:
            logger.debug(f"Evicted {evicted} expired rate limit buckets")
