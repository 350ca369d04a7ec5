import time
import random
from threading import Lock


class RateLimiter:
    """
    Token bucket rate limiter for RPC requests.

    Attributes:
        max_requests: Maximum number of requests allowed per time window
        time_window: Time window in seconds (typically 1.0 for per-second limiting)
        tokens: Current number of available tokens
        last_update: Timestamp of last token update
        lock: Threading lock for thread-safe operations
    """

    def __init__(self, max_requests: int, time_window: float = 1.0):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.max_requests = max_requests
        self.time_window = time_window
        self.tokens = float(max_requests)
        self.last_update = time.monotonic()
        self.lock = Lock()

    def _refill(self, now: float) -> float:
        time_passed = now - self.last_update
        return min(
            self.max_requests,
            self.tokens + time_passed * (self.max_requests / self.time_window)
        )

    def acquire(self) -> None:
        """
        Acquire a token for making a request.

        Blocks if no tokens are available. Safe to call from multiple threads.
        """
        with self.lock:
            now = time.monotonic()
            self.tokens = self._refill(now)
            self.last_update = now

            if self.tokens < 1:
                # Not enough tokens, sleep until we have one
                sleep_time = (1 - self.tokens) * (self.time_window / self.max_requests)
                time.sleep(sleep_time)
                self.tokens = 0
                self.last_update = time.monotonic()
            else:
                self.tokens -= 1

    def get_wait_time(self) -> float:
        """
        Returns:
            Wait time in seconds until the next token (0 if one is available now)
        """
        with self.lock:
            current_tokens = self._refill(time.monotonic())
            if current_tokens >= 1:
                return 0.0
            return (1 - current_tokens) * (self.time_window / self.max_requests)


def backoff_delay(retries: int, base_delay: float = 1.0, max_delay: float = 60.0, jitter: bool = True) -> float:
    """Delay for the given retry: base_delay * 2^retries, capped, with +/-25% jitter."""
    delay = min(base_delay * (2 ** retries), max_delay)

    if jitter:
        jitter_range = delay * 0.25
        delay += random.uniform(-jitter_range, jitter_range)
        delay = max(0.1, delay)

    return delay


def exponential_backoff_sleep(retries: int, base_delay: float = 1.0, max_delay: float = 60.0, jitter: bool = True) -> None:
    """
    Sleep with exponential backoff for retry mechanisms.

    Args:
        retries: Number of retries attempted (0-based)
        base_delay: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        jitter: Whether to add random jitter (default: True)
    """
    time.sleep(backoff_delay(retries, base_delay, max_delay, jitter))
