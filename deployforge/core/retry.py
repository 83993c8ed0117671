"""Retry policy with exponential backoff.

The policy is a plain value object: it owns the attempt budget, the delay
curve and the predicate deciding which errors are worth another attempt.
Callers hand it the operation; the policy never decides what the operation
means.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _retry_nothing(exc: BaseException) -> bool:
    return False


class RetryExhaustedError(RuntimeError):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, message: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Maximum number of attempts, including the first one.
        base_delay: Delay before the second attempt, in seconds.
        multiplier: Growth factor applied per attempt.
        max_delay: Upper bound for a single delay, in seconds.
        jitter: Fraction of random variation applied to each delay (0 = none).
        retryable: Predicate deciding whether an error may be retried.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 10.0
    jitter: float = 0.0
    retryable: Callable[[BaseException], bool] = field(default=_retry_nothing, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    @classmethod
    def on(cls, *error_types: type[BaseException], **kwargs) -> "RetryPolicy":
        """Build a policy that retries the given exception types."""
        return cls(retryable=lambda exc: isinstance(exc, error_types), **kwargs)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based), in seconds."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= 1.0 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and self.retryable(exc)

    def run(
        self,
        operation: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        operation_name: str = "operation",
    ) -> tuple[T, int]:
        """Run ``operation`` under this policy.

        Returns ``(result, attempts)``. Non-retryable errors propagate
        unchanged on the attempt they occur. When the budget runs out on a
        retryable error, raises ``RetryExhaustedError`` chained to it.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = operation()
            except Exception as exc:
                if not self.retryable(exc):
                    raise
                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(
                        f"{operation_name} failed after {attempt} attempts: {exc}",
                        attempts=attempt,
                        last_error=exc,
                    ) from exc
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed on attempt %d/%d (%s); retrying in %.2fs",
                    operation_name,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                sleep(delay)
                continue
            if attempt > 1:
                logger.info("%s succeeded after %d attempts", operation_name, attempt)
            return result, attempt
