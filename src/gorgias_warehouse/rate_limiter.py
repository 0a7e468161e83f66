"""
Token bucket rate limiter shared by every outbound Gorgias call.

Gorgias throttles at roughly 2 requests/second per account, so one
limiter instance must gate the whole process, not each worker.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class RateLimiterStats:
    """Statistics for monitoring rate limiter behavior."""
    requests_made: int = 0
    requests_throttled: int = 0
    total_wait_time: float = 0.0
    last_request_time: float = 0.0


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket rate limiter.

    - Bucket holds up to `capacity` tokens (defaults to the per-second rate)
    - Tokens are added continuously at `rate` tokens per second
    - Each request consumes 1 token
    - If no token is available, the caller sleeps just long enough for one

    Example:
        limiter = TokenBucketRateLimiter(requests_per_second=2)

        with limiter:  # Blocks until token available
            make_api_request()

    `clock` and `sleep` are injectable so tests can drive a fake clock.
    """

    def __init__(
        self,
        requests_per_second: float = 2.0,
        burst_capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")

        self.rate = float(requests_per_second)
        self.capacity = float(burst_capacity or requests_per_second)

        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last_refill = clock()
        self._lock = threading.Lock()

        self.stats = RateLimiterStats()

    def _refill(self) -> None:
        """Add tokens based on elapsed time. Must hold lock."""
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._last_refill = now

    def acquire(self, timeout: float | None = None) -> bool:
        """
        Acquire a token, blocking if necessary.

        Args:
            timeout: Max seconds to wait (None = wait forever)

        Returns:
            True if token acquired, False if timeout
        """
        deadline = None if timeout is None else self._clock() + timeout

        while True:
            with self._lock:
                self._refill()

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    self.stats.requests_made += 1
                    self.stats.last_request_time = time.time()
                    return True

                wait_time = (1.0 - self._tokens) / self.rate

                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return False
                    wait_time = min(wait_time, remaining)

                self.stats.requests_throttled += 1
                self.stats.total_wait_time += wait_time

            # Sleep outside the lock; the token is re-checked on wake-up
            self._sleep(wait_time)

    def __enter__(self) -> "TokenBucketRateLimiter":
        """Context manager that acquires a token."""
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        pass

    @property
    def available_tokens(self) -> float:
        """Current number of available tokens."""
        with self._lock:
            self._refill()
            return self._tokens

    def get_stats(self) -> dict:
        """Get rate limiter statistics for monitoring."""
        return {
            "requests_made": self.stats.requests_made,
            "requests_throttled": self.stats.requests_throttled,
            "total_wait_time_seconds": round(self.stats.total_wait_time, 2),
            "available_tokens": round(self.available_tokens, 1),
            "rate_per_second": round(self.rate, 2),
        }
