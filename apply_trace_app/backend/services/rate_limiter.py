"""
In-process rate limiters for the webhook and the LLM endpoint.

Both keep their state in memory only; it is lost on restart and is not used for
correctness, only to keep a burst of notifications from hammering the vendors.
"""
import logging
import threading
import time
from typing import Callable, Dict, Tuple

logger = logging.getLogger(__name__)


class WebhookRateLimiter:
    """Fixed-window request counter keyed by mailbox address."""

    def __init__(self, max_requests: int = 10, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def is_rate_limited(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._requests.get(key)
            if entry is None or now - entry[1] > self.window_seconds:
                self._requests[key] = (1, now)
                return False

            count, first_request = entry
            if count >= self.max_requests:
                return True

            self._requests[key] = (count + 1, first_request)
            return False

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()


class BackoffRateLimiter:
    """
    Spaces out calls to a rate-limited endpoint.

    The wait before a call is ``min(min_delay * 2**retry_count, max_backoff)``
    minus the time already elapsed since the previous call.
    """

    def __init__(
        self,
        min_delay: float = 1.0,
        max_retries: int = 3,
        max_backoff: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_delay = min_delay
        self.max_retries = max_retries
        self.max_backoff = max_backoff
        self.retry_count = 0
        self.last_call_time = None
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

    def backoff_delay(self) -> float:
        return min(self.min_delay * (2 ** self.retry_count), self.max_backoff)

    def wait(self) -> float:
        """Sleep until the next call is allowed; returns the time slept."""
        with self._lock:
            wait_time = 0.0
            if self.last_call_time is not None:
                elapsed = self._clock() - self.last_call_time
                wait_time = max(self.backoff_delay() - elapsed, 0.0)
            if wait_time > 0:
                self._sleep(wait_time)
            self.last_call_time = self._clock()
            return wait_time

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def record_retry(self) -> None:
        self.retry_count += 1
        logger.info(
            "Rate limited, attempt %s/%s. Retrying in %.1fs",
            self.retry_count, self.max_retries, self.backoff_delay()
        )

    def reset(self) -> None:
        self.retry_count = 0
