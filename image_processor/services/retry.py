"""Bounded retry with a pluggable backoff schedule."""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from image_processor.core.config import Settings, settings
from image_processor.core.errors import PermanentError, RetryExhaustedError
from image_processor.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def linear_backoff(attempt: int) -> float:
    """Wait ``attempt`` seconds after the given (1-based) attempt."""

    return float(attempt)


class RetryPolicy:
    """Runs an operation up to ``max_attempts`` times, sleeping between failures.

    Every failure is retried by default, whatever its cause. With
    ``retry_permanent=False``, a ``PermanentError`` ends the loop on the attempt
    that raised it.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Callable[[int], float] = linear_backoff,
        sleep: Callable[[float], None] = time.sleep,
        retry_permanent: bool = True,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._backoff = backoff
        self._sleep = sleep
        self._retry_permanent = retry_permanent

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RetryPolicy":
        return cls(max_attempts=config.retry_max_attempts, retry_permanent=config.retry_permanent_errors)

    def call(self, operation: Callable[..., T], *args: object, **kwargs: object) -> T:
        """Return the first successful result of ``operation``.

        Raises ``RetryExhaustedError`` chained to the last failure once no
        attempts remain.
        """

        attempt = 1
        while True:
            try:
                return operation(*args, **kwargs)
            except Exception as exc:
                logger.warning(
                    "operation_attempt_failed",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                if isinstance(exc, PermanentError) and not self._retry_permanent:
                    raise RetryExhaustedError(attempt, exc) from exc
                self._sleep(self._backoff(attempt))
                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(attempt, exc) from exc
            attempt += 1
