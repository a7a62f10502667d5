"""Rate Limiter - throttles provider calls to stay under their rate limits."""

import time
from collections import defaultdict
from threading import Lock


class RateLimiter:
    """Thread-safe sliding-window rate limiter.

    Construct one per provider per process and hand it to the client that
    needs it.
    """

    def __init__(self, max_calls: int = 60, time_window: float = 60.0):
        """
        Initialize rate limiter.

        Args:
            max_calls: Maximum number of calls allowed in time_window
            time_window: Time window in seconds (default: 60 seconds)
        """
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.max_calls = max_calls
        self.time_window = time_window

        self.calls = defaultdict(list)
        self.lock = Lock()

    def _prune(self, endpoint: str, now: float) -> list[float]:
        calls = self.calls[endpoint]
        calls[:] = [call_time for call_time in calls if now - call_time < self.time_window]
        return calls

    def wait_if_needed(self, endpoint: str = "default") -> float:
        """
        Block until a call to endpoint is allowed, then record it.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        with self.lock:
            now = time.monotonic()
            calls = self._prune(endpoint, now)

            if len(calls) >= self.max_calls:
                wait_time = (calls[0] + self.time_window) - now
                if wait_time > 0:
                    time.sleep(wait_time)
                    waited = wait_time
                    now = time.monotonic()
                    calls = self._prune(endpoint, now)

            calls.append(now)
        return waited

    def can_proceed(self, endpoint: str = "default") -> bool:
        """Check if a call can proceed without waiting."""
        with self.lock:
            return len(self._prune(endpoint, time.monotonic())) < self.max_calls
