"""Tests for aves.utils.rate_limiter."""

from __future__ import annotations

import threading
import time

import pytest

from aves.errors import RateLimitTimeout
from aves.utils.rate_limiter import RateLimiter
from tests.conftest import FakeClock


class TestRateLimiter:
    def test_acquire_within_capacity(self):
        rl = RateLimiter(capacity=3, requests_per_minute=60)
        assert rl.try_acquire() is True
        assert rl.try_acquire() is True
        assert rl.try_acquire() is True
        assert rl.try_acquire() is False

    def test_concurrent_try_acquire_never_over_issues(self):
        """Capacity 2 with no refill: exactly two of three racing callers win."""
        rl = RateLimiter(capacity=2, requests_per_minute=0)
        barrier = threading.Barrier(3)
        results: list[bool] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            ok = rl.try_acquire()
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == [False, True, True]

    def test_many_threads_bounded_by_capacity(self):
        rl = RateLimiter(capacity=5, requests_per_minute=0)
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                if rl.try_acquire():
                    with lock:
                        granted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(granted) == 5

    def test_continuous_refill(self, clock: FakeClock):
        rl = RateLimiter(capacity=2, requests_per_minute=60, clock=clock)  # 1 token/s
        assert rl.try_acquire()
        assert rl.try_acquire()
        assert not rl.try_acquire()

        clock.advance(0.5)
        assert rl.available_tokens == pytest.approx(0.5)
        assert not rl.try_acquire()

        clock.advance(0.5)
        assert rl.try_acquire()

    def test_refill_capped_at_capacity(self, clock: FakeClock):
        rl = RateLimiter(capacity=2, requests_per_minute=60, clock=clock)
        clock.advance(3600)
        assert rl.available_tokens == pytest.approx(2.0)

    def test_issued_tokens_bounded_over_window(self, clock: FakeClock):
        """Acquired tokens never exceed capacity + floor(rate * elapsed minutes)."""
        rl = RateLimiter(capacity=2, requests_per_minute=60, clock=clock)
        granted = 0
        while rl.try_acquire():
            granted += 1
        for _ in range(120):
            clock.advance(1.0)
            while rl.try_acquire():
                granted += 1
        assert granted == 2 + 60 * 2

    def test_estimated_wait(self, clock: FakeClock):
        rl = RateLimiter(capacity=1, requests_per_minute=30, clock=clock)  # 0.5 token/s
        assert rl.estimated_wait() == 0.0
        rl.try_acquire()
        assert rl.estimated_wait() == pytest.approx(2.0)
        clock.advance(1.0)
        assert rl.estimated_wait() == pytest.approx(1.0)

    def test_estimated_wait_without_refill(self):
        rl = RateLimiter(capacity=1, requests_per_minute=0)
        rl.try_acquire()
        assert rl.estimated_wait() == float("inf")

    def test_wait_for_token_times_out(self):
        rl = RateLimiter(capacity=1, requests_per_minute=0, poll_interval=0.01)
        rl.try_acquire()
        start = time.monotonic()
        with pytest.raises(RateLimitTimeout) as exc_info:
            rl.wait_for_token(timeout=0.05)
        assert time.monotonic() - start < 1.0
        assert exc_info.value.timeout == 0.05

    def test_wait_for_token_succeeds_after_refill(self):
        rl = RateLimiter(capacity=1, requests_per_minute=600, poll_interval=0.01)  # 10/s
        rl.try_acquire()
        rl.wait_for_token(timeout=2.0)

    def test_acquire_returns_false_on_timeout(self):
        rl = RateLimiter(capacity=1, requests_per_minute=0, poll_interval=0.01)
        assert rl.acquire(timeout=0.01) is True
        assert rl.acquire(timeout=0.03) is False

    def test_reset_refills(self):
        rl = RateLimiter(capacity=2, requests_per_minute=0)
        rl.try_acquire()
        rl.try_acquire()
        rl.reset()
        assert rl.available_tokens == pytest.approx(2.0)

    def test_disabled(self):
        """capacity=0 with rate=0 disables limiting."""
        rl = RateLimiter(capacity=0, requests_per_minute=0)
        assert rl.disabled
        for _ in range(100):
            assert rl.try_acquire() is True
        assert rl.estimated_wait() == 0.0

    def test_rejects_negative_values(self):
        with pytest.raises(ValueError):
            RateLimiter(capacity=-1, requests_per_minute=10)
        with pytest.raises(ValueError):
            RateLimiter(capacity=1, requests_per_minute=-10)

    def test_rejects_fractional_capacity_when_enabled(self):
        with pytest.raises(ValueError, match="capacity"):
            RateLimiter(capacity=0.5, requests_per_minute=10)
