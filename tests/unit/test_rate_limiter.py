"""
Unit tests for token bucket rate limiting.
"""

import threading
import time

import pytest

from ordrfm.metadata.rate_limiter import RateLimiterRegistry, TokenBucket


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTokenBucket:
    """Refill and acquisition."""

    def test_starts_full(self):
        bucket = TokenBucket(1.0, capacity=3, clock=FakeClock())
        assert [bucket.try_acquire() for _ in range(4)] == [True, True, True, False]

    def test_refills_over_time(self):
        clock = FakeClock()
        bucket = TokenBucket(2.0, capacity=1, clock=clock)
        assert bucket.try_acquire()
        assert not bucket.try_acquire()

        clock.advance(0.25)
        assert not bucket.try_acquire()
        clock.advance(0.25)
        assert bucket.try_acquire()

    def test_refill_is_capped_at_capacity(self):
        clock = FakeClock()
        bucket = TokenBucket(1.0, capacity=2, clock=clock)
        bucket.try_acquire()
        clock.advance(3600)

        assert bucket.state().tokens_available == 2

    def test_state_snapshot(self):
        clock = FakeClock()
        bucket = TokenBucket(0.5, capacity=1, source="musicbrainz", clock=clock)
        bucket.try_acquire()

        state = bucket.state()

        assert state.source == "musicbrainz"
        assert state.tokens_available == 0
        assert state.min_interval_ms == 2000.0
        assert state.last_refill == clock.now

    def test_acquire_waits_for_refill(self):
        bucket = TokenBucket(20.0, capacity=1)
        assert bucket.acquire(timeout=1.0)

        start = time.monotonic()
        assert bucket.acquire(timeout=1.0)
        assert time.monotonic() - start >= 0.03

    def test_acquire_times_out(self):
        bucket = TokenBucket(0.01, capacity=1)
        assert bucket.try_acquire()
        assert bucket.acquire(timeout=0.05) is False

    def test_concurrent_acquires_never_exceed_rate(self):
        bucket = TokenBucket(50.0, capacity=1)
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(3):
                if bucket.acquire(timeout=2.0):
                    with lock:
                        granted.append(time.monotonic())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        start = time.monotonic()
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(granted) == 12
        # One token up front, the remaining 11 at 50/s
        assert max(granted) - start >= 11 / 50.0 * 0.9

    @pytest.mark.parametrize("rate,capacity", [(0, 1), (-1, 1), (1, 0)])
    def test_invalid_parameters(self, rate, capacity):
        with pytest.raises(ValueError):
            TokenBucket(rate, capacity)


class TestRateLimiterRegistry:
    """One bucket per source."""

    def test_get_returns_same_bucket(self):
        registry = RateLimiterRegistry()
        first = registry.get("discogs", 1.0, 5)
        second = registry.get("discogs", 99.0, 1)

        assert first is second
        assert first.capacity == 5

    def test_states(self):
        registry = RateLimiterRegistry()
        registry.get("discogs", 1.0, 5)
        registry.get("musicbrainz", 1.0, 1)

        assert set(registry.states()) == {"discogs", "musicbrainz"}
