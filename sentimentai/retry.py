"""
Retry policy for fetching freshly uploaded blobs.

The media host is eventually consistent: a video written a moment ago can
return 404 for a few seconds. Only that fetch is retried.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger("sentimentai.retry")

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when every attempt failed."""

    def __init__(self, name: str, attempts: int, last_error: Exception):
        self.name = name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{name} failed after {attempts} attempts: {last_error}")


@dataclass
class RetryPolicy:
    """Bounded retry with fixed backoff."""
    name: str = "blob_fetch"
    attempts: int = 3
    delay_seconds: float = 2.0
    retry_on: Tuple[Type[Exception], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds cannot be negative")

    def call(self, func: Callable[[], T]) -> T:
        """
        Run ``func`` until it succeeds or attempts run out.

        Raises:
            RetryExhaustedError: If all attempts failed
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return func()
            except self.retry_on as exc:
                last_error = exc
                logger.info(
                    "%s attempt %d/%d failed: %s", self.name, attempt, self.attempts, exc
                )
                if attempt < self.attempts:
                    self.sleep(self.delay_seconds)
        raise RetryExhaustedError(self.name, self.attempts, last_error)


BLOB_FETCH_POLICY = RetryPolicy(name="blob_fetch", attempts=3, delay_seconds=2.0)
