"""
Retry logic with jittered exponential backoff and a circuit breaker.

Used by the routing client so a slow or failing provider is retried
briefly and then shut off, letting callers fall back to Haversine ETAs.
"""

import time
import random
import functools
import threading
from typing import Callable, Type, Tuple, Optional

from .errors import CircuitOpenError, RetryError


def exponential_backoff(
    max_retries: int = 1,
    base_delay: float = 0.1,
    max_delay: float = 1.0,
    exponential_base: float = 2.0,
    jitter: float = 0.05,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying functions with jittered exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds (before jitter)
        exponential_base: Base for exponential calculation (delay *= base)
        jitter: Upper bound in seconds of the uniform random delay added
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @exponential_backoff(max_retries=1, base_delay=0.1)
        def fetch_matrix(payload):
            return session.post(url, json=payload, timeout=3.5)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    # Don't sleep after the last attempt
                    if attempt >= max_retries:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if jitter > 0:
                        current_delay += random.uniform(0, jitter)

                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)

                    time.sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


class CircuitBreaker:
    """
    Circuit breaker pattern to prevent repeated calls to failing services.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests are blocked
    - HALF_OPEN: Testing if service has recovered

    Shared by concurrent requests, so state changes happen under a lock.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        expected_exception: Type[Exception] = Exception,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of consecutive failures before opening circuit
            recovery_timeout: Seconds to stay open before allowing a trial call
            expected_exception: Exception type that counts as failure
            clock: Monotonic time source (seconds)
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self._clock = clock
        self._lock = threading.Lock()

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = self.CLOSED

    def call(self, func: Callable, *args, **kwargs):
        """
        Execute function with circuit breaker protection.

        Only one trial call runs while HALF_OPEN; other callers are rejected
        until it resolves.

        Raises:
            CircuitOpenError: If circuit is OPEN, or HALF_OPEN with a trial in flight
            Original exception: If function fails in CLOSED/HALF_OPEN state
        """
        with self._lock:
            if self.state == self.HALF_OPEN:
                raise CircuitOpenError("Circuit breaker is HALF_OPEN. Trial call in progress")
            if self.state == self.OPEN:
                if self._should_attempt_reset():
                    self.state = self.HALF_OPEN
                else:
                    raise CircuitOpenError(
                        f"Circuit breaker is OPEN. Retry after {self._time_until_reset():.0f}s"
                    )

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        except BaseException:
            self._abandon_trial()
            raise
        self._on_success()
        return result

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self.state == self.OPEN and not self._should_attempt_reset()

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset."""
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.recovery_timeout

    def _time_until_reset(self) -> float:
        """Calculate seconds until circuit can be tested."""
        if self.last_failure_time is None:
            return 0
        elapsed = self._clock() - self.last_failure_time
        return max(0, self.recovery_timeout - elapsed)

    def _on_success(self):
        """Reset circuit breaker on successful call."""
        with self._lock:
            self.failure_count = 0
            self.state = self.CLOSED

    def _on_failure(self):
        """Record failure and potentially open circuit."""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            # A failed trial call re-opens immediately
            if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.state = self.OPEN

    def _abandon_trial(self):
        """A trial that ended without a verdict leaves the circuit OPEN."""
        with self._lock:
            if self.state == self.HALF_OPEN:
                self.state = self.OPEN

    def trip(self):
        """Open the circuit immediately, regardless of the failure count."""
        with self._lock:
            self.last_failure_time = self._clock()
            self.state = self.OPEN

    def reset(self):
        """Manually reset the circuit breaker."""
        with self._lock:
            self.failure_count = 0
            self.last_failure_time = None
            self.state = self.CLOSED


def should_retry_http_status(status_code: int) -> bool:
    """
    Check if HTTP status code indicates a retryable error.

    Args:
        status_code: HTTP status code

    Returns:
        True if should retry
    """
    # Retry on server errors, timeouts and rate limiting
    if status_code in (408, 429):
        return True
    return 500 <= status_code < 600
