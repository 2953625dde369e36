"""Per-client token bucket rate limiting for the planning endpoint."""

import threading
import time
from typing import Callable, Dict, Optional

from common.constants import RATE_LIMIT_CAPACITY, RATE_LIMIT_PERIOD_SECONDS
from common.logging_config import get_logger

logger = get_logger(__name__)


class TokenBucket:
    """Token bucket refilled continuously at rate tokens per second."""

    def __init__(self, rate: float, capacity: float, now: float):
        self.rate = rate
        self.capacity = capacity
        self.tokens = capacity
        self.updated_at = now

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.updated_at = now

    def try_consume(self, now: float, tokens: float = 1.0) -> bool:
        self._refill(now)
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def is_full(self, now: float) -> bool:
        elapsed = max(0.0, now - self.updated_at)
        return self.tokens + elapsed * self.rate >= self.capacity


class RateLimiter:
    """
    Token buckets keyed by client identity.

    Buckets are created lazily on first sight. The default configuration
    admits a burst of 10 requests and refills 10 tokens per minute.
    """

    def __init__(
        self,
        capacity: int = RATE_LIMIT_CAPACITY,
        period_seconds: float = RATE_LIMIT_PERIOD_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            capacity: Burst size and number of tokens refilled per period
            period_seconds: Length of the refill period
            clock: Monotonic time source
        """
        self.capacity = capacity
        self.period_seconds = period_seconds
        self.rate = capacity / period_seconds
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def allow(self, identity: str) -> bool:
        """Consume one token for identity; False when the bucket is empty."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                bucket = TokenBucket(self.rate, self.capacity, now)
                self._buckets[identity] = bucket
            allowed = bucket.try_consume(now)

        if not allowed:
            logger.warning(f"Rate limit exceeded for client {identity}")
        return allowed

    def evict_idle(self, idle_seconds: float, now: Optional[float] = None) -> int:
        """
        Drop buckets that are full again and untouched for idle_seconds.

        A full bucket behaves exactly like a freshly created one, so evicting
        it does not change what a returning client is allowed to do.

        Returns:
            Number of evicted identities
        """
        if now is None:
            now = self._clock()
        with self._lock:
            stale = [
                identity for identity, bucket in self._buckets.items()
                if now - bucket.updated_at >= idle_seconds and bucket.is_full(now)
            ]
            for identity in stale:
                del self._buckets[identity]

        if stale:
            logger.debug(f"Evicted {len(stale)} idle rate limit bucket(s)")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)
