"""
Structured error types for cronspine.

Every failure the check-in service can surface to a caller is a
``CronSpineError`` subclass carrying a category, an explicit retry flag,
optional retry guidance, structured context and the chained cause. The API
layer maps each subclass to exactly one HTTP status, so routers never
inspect messages to decide how to respond.

Manifesto:
    - **Typed Error Hierarchy:** One class per caller-visible outcome
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry monitor/run metadata for logging
    - **Error Chaining:** Preserve store exceptions while adding context

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      CronSpineError                          │
        │  (category, retryable, retry_after, context, cause)          │
        ├──────────────────────────────────────────────────────────────┤
        │  ValidationError        MonitorNotFoundError                 │
        │  (VALIDATION, 400)      (NOT_FOUND, 404)                     │
        │                                                              │
        │  ConflictError          RateLimitedError                     │
        │  (CONFLICT, 409)        (RATE_LIMIT, 429)                    │
        │                                                              │
        │  StoreUnavailableError  DeadlineExceededError                │
        │  (STORAGE, 503)         (TIMEOUT, 504)                       │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = StoreUnavailableError("database is locked")
    >>> error.retryable
    True
    >>> error.with_context(slug="nightly-report").context.slug
    'nightly-report'

Guardrails:
    ❌ DON'T: Raise plain Exception for an expected outcome
    ✅ DO: Raise the matching CronSpineError subclass
    ❌ DON'T: Swallow the sqlite3 exception when wrapping it
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    cronspine, check-ins

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"     # Malformed schedule, timezone, thresholds
    NOT_FOUND = "NOT_FOUND"       # Unknown monitor
    CONFLICT = "CONFLICT"         # CAS retries exhausted
    RATE_LIMIT = "RATE_LIMIT"     # Per-monitor quota exceeded
    STORAGE = "STORAGE"           # Store unreachable, locked, corrupt
    TIMEOUT = "TIMEOUT"           # Caller deadline exceeded
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover the identifiers every check-in error relates to;
    anything else goes into ``metadata``. ``to_dict()`` serializes only the
    fields that are set, so it can be splatted into a structlog call.

    Attributes:
        slug: Monitor slug
        environment: Monitor environment
        check_in_id: Client-supplied correlation key
        run_id: Run identifier
        attempts: Number of store attempts made before giving up
        metadata: Additional key-value pairs
    """

    slug: str | None = None
    environment: str | None = None
    check_in_id: str | None = None
    run_id: str | None = None
    attempts: int | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["slug", "environment", "check_in_id", "run_id", "attempts"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CronSpineError(Exception):
    """
    Base exception for all cronspine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass what differs from the defaults.

    Examples:
        >>> error = CronSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CronSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConflictError("CAS lost").with_context(
                slug="nightly-report",
                environment="production",
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class ValidationError(CronSpineError):
    """
    Malformed schedule, timezone or thresholds.

    Never retryable - the request must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, field_name: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field_name = field_name


class MonitorNotFoundError(CronSpineError):
    """Check-in for a monitor that was never upserted."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


class ConflictError(CronSpineError):
    """
    Compare-and-swap lost against a concurrent writer.

    Retryable: resending the same check-in is safe because run start and
    run terminal status are first-writer-wins.
    """

    default_category = ErrorCategory.CONFLICT
    default_retryable = True


class RateLimitedError(CronSpineError):
    """
    Per-monitor check-in quota exceeded.

    The check-in was dropped without being stored. The service never
    retries it; the client resends on its next occurrence.
    """

    default_category = ErrorCategory.RATE_LIMIT
    default_retryable = False

    def __init__(
        self,
        message: str = "Check-in rate limit exceeded",
        *,
        retry_after: int = 60,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class StoreUnavailableError(CronSpineError):
    """Monitor store unreachable or locked. Retried internally first."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


class DeadlineExceededError(CronSpineError):
    """
    Caller deadline expired before the check-in was applied.

    Mutations already committed are not rolled back.
    """

    default_category = ErrorCategory.TIMEOUT
    default_retryable = False


def is_retryable(error: Exception) -> bool:
    """Return True if *error* is a CronSpineError marked retryable."""
    return isinstance(error, CronSpineError) and error.retryable


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CronSpineError",
    "ValidationError",
    "MonitorNotFoundError",
    "ConflictError",
    "RateLimitedError",
    "StoreUnavailableError",
    "DeadlineExceededError",
    "is_retryable",
]
