"""Retry strategies with exponential backoff, jitter, and caller deadlines.

Every store write in cronspine is a compare-and-swap; losing one is
normal under concurrent ingestion. ``RetryContext.run`` re-executes the
whole read-decide-write step a bounded number of times and gives up with
the last error once attempts or the caller's deadline run out.

Example:
    >>> from cronspine.core.retry import ExponentialBackoff, RetryContext
    >>>
    >>> strategy = ExponentialBackoff(max_attempts=3, base_delay=0.02, max_delay=0.25)
    >>> ctx = RetryContext(strategy, deadline=time.monotonic() + 2.0)
    >>> monitor = ctx.run(lambda: apply_checkin(store, checkin))
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from cronspine.core.errors import DeadlineExceededError, is_retryable

T = TypeVar("T")


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Determine if another attempt should be made.

        Args:
            attempt: Number of attempts already made
            error: The exception that caused the failure

        Returns:
            True if should retry, False otherwise
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retry_on: Predicate deciding whether an error is retryable
    """

    max_attempts: int = 3
    base_delay: float = 0.02
    max_delay: float = 0.25
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retry_on: Callable[[Exception], bool] = is_retryable

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = min(
            self.base_delay * (self.multiplier ** attempt),
            self.max_delay,
        )

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)

        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Check if retry should be attempted."""
        if attempt >= self.max_attempts:
            return False

        if error is not None:
            return self.retry_on(error)

        return True


@dataclass
class RetryContext:
    """Context tracking retry state for one logical operation.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3))
        >>> result = ctx.run(lambda: store.cas(...))
        >>> ctx.attempts
        1
    """

    strategy: RetryStrategy
    deadline: float | None = None
    """Absolute ``time.monotonic()`` value after which no attempt starts."""
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], None] = time.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    @property
    def remaining(self) -> float | None:
        """Seconds left before the deadline (None when unbounded)."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self, operation: str = "operation") -> None:
        """Raise DeadlineExceededError once the deadline has passed."""
        remaining = self.remaining
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError(
                f"Deadline exceeded during {operation} after {self.attempt} attempt(s)",
                cause=self.last_error,
            )

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute function with retry logic.

        Raises:
            DeadlineExceededError: if the deadline passes before an attempt
            The last exception once the strategy refuses another attempt
        """
        while True:
            self.check_deadline(getattr(func, "__name__", "operation"))
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt - 1)
                remaining = self.remaining
                if remaining is not None:
                    delay = min(delay, max(0.0, remaining))

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                self.sleep(delay)


def deadline_after(seconds: float | None) -> float | None:
    """Convert a relative timeout into an absolute monotonic deadline."""
    if seconds is None:
        return None
    return time.monotonic() + seconds


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "RetryContext",
    "deadline_after",
    "utcnow",
]
