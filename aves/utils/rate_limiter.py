"""Token bucket rate limiter for vision API calls."""

from __future__ import annotations

import threading
import time
from typing import Callable

from aves.errors import RateLimitTimeout


class RateLimiter:
    """Thread-safe token bucket rate limiter.

    The bucket holds at most ``capacity`` tokens and refills continuously at
    ``requests_per_minute / 60`` tokens per second. A capacity of 0 together
    with a rate of 0 disables limiting entirely.

    All reads and writes of the token count happen under one lock, so two
    workers can never be handed the same token.
    """

    def __init__(
        self,
        capacity: float = 5.0,
        requests_per_minute: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.05,
    ) -> None:
        if capacity < 0 or requests_per_minute < 0:
            raise ValueError("capacity and requests_per_minute must be >= 0")
        self.capacity = capacity
        self.requests_per_minute = requests_per_minute
        self._disabled = capacity <= 0 and requests_per_minute <= 0
        if not self._disabled and capacity < 1:
            raise ValueError(f"capacity must be >= 1 when limiting is enabled, got {capacity}")
        self._max_tokens = float(capacity)
        self._tokens = self._max_tokens
        self._refill_rate = requests_per_minute / 60.0
        self._clock = clock
        self._poll_interval = poll_interval
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def disabled(self) -> bool:
        return self._disabled

    @property
    def available_tokens(self) -> float:
        if self._disabled:
            return float("inf")
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self) -> bool:
        """Take a token if one is available. Never blocks."""
        if self._disabled:
            return True
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def wait_for_token(self, timeout: float = 60.0) -> None:
        """Block until a token is available.

        Raises:
            RateLimitTimeout: if no token was acquired within *timeout* seconds.
        """
        if self._disabled:
            return

        deadline = self._clock() + timeout
        while True:
            if self.try_acquire():
                return
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise RateLimitTimeout(timeout)
            time.sleep(min(self._poll_interval, remaining, max(self.estimated_wait(), 0.001)))

    def acquire(self, timeout: float = 60.0) -> bool:
        """Block until a token is available. Returns False on timeout."""
        try:
            self.wait_for_token(timeout)
        except RateLimitTimeout:
            return False
        return True

    def estimated_wait(self) -> float:
        """Seconds until the next token is available (inf if the bucket never refills)."""
        if self._disabled:
            return 0.0
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                return 0.0
            if self._refill_rate <= 0:
                return float("inf")
            return (1.0 - self._tokens) / self._refill_rate

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        with self._lock:
            self._tokens = self._max_tokens
            self._last_refill = self._clock()

    def _refill(self) -> None:
        """Add tokens based on elapsed time since last refill. Caller holds the lock."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self._max_tokens, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now
