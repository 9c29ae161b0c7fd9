"""
Token bucket rate limiting for external metadata sources

One bucket per source, shared by every worker in the process.
"""

import logging
import threading
import time
from typing import Dict, Optional

from ..core.constants import RATE_LIMIT_MAX_WAIT_SLICE
from ..core.models import RateLimiterState


class TokenBucket:
    """
    Thread-safe token bucket.

    Tokens refill continuously at rate_per_second up to capacity. acquire()
    blocks until a token is available; waiters wake at least every
    RATE_LIMIT_MAX_WAIT_SLICE seconds to re-check, so no waiter sleeps
    past a refill it could have used.
    """

    def __init__(self, rate_per_second: float, capacity: int = 1, source: str = "default",
                 clock=time.monotonic):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self.rate = float(rate_per_second)
        self.capacity = int(capacity)
        self.source = source
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._cond = threading.Condition()
        self.logger = logging.getLogger(__name__)

    def _refill(self):
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token without waiting"""
        with self._cond:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Block until a token is available.

        Args:
            timeout: maximum seconds to wait; None waits indefinitely

        Returns:
            True when a token was taken, False on timeout
        """
        deadline = None if timeout is None else self._clock() + timeout

        with self._cond:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    self._cond.notify()
                    return True

                wait = (1 - self._tokens) / self.rate
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return False
                    wait = min(wait, remaining)

                self._cond.wait(min(wait, RATE_LIMIT_MAX_WAIT_SLICE))

    def state(self) -> RateLimiterState:
        with self._cond:
            self._refill()
            return RateLimiterState(
                source=self.source,
                tokens_available=self._tokens,
                last_refill=self._last_refill,
                min_interval_ms=1000.0 / self.rate,
                capacity=self.capacity,
            )


class RateLimiterRegistry:
    """Process-wide buckets, one per external source"""

    def __init__(self):
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def get(self, source: str, rate_per_second: float = 1.0, capacity: int = 1) -> TokenBucket:
        """Return the bucket for a source, creating it on first use"""
        with self._lock:
            bucket = self._buckets.get(source)
            if bucket is None:
                bucket = TokenBucket(rate_per_second, capacity, source=source)
                self._buckets[source] = bucket
            return bucket

    def states(self) -> Dict[str, RateLimiterState]:
        with self._lock:
            buckets = dict(self._buckets)
        return {name: bucket.state() for name, bucket in buckets.items()}


_registry: Optional[RateLimiterRegistry] = None
_registry_lock = threading.Lock()


def get_rate_limiter_registry() -> RateLimiterRegistry:
    """Get global rate limiter registry"""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = RateLimiterRegistry()
        return _registry
