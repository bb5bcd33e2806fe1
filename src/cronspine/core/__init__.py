"""cronspine core -- domain-agnostic primitives the check-in service is built on.

Architecture::

    Layer 1 -- Errors & Protocols
        errors.py          Structured error hierarchy (CronSpineError, ConflictError)
        protocols.py       Connection protocol

    Layer 2 -- Storage
        connection.py      Connection factory (create_connection)
        schema/            SQL DDL files (monitors, runs, check-ins, locks)

    Layer 3 -- Runtime
        logging.py         structlog configuration
        settings.py        CronSpineSettings (pydantic-settings)
        retry.py           Exponential backoff + caller deadlines
        rate_limit.py      Keyed sliding-window limiter
        events.py          TransitionEvent + alert sinks
        health.py          /health router
"""

from cronspine.core.errors import (
    ConflictError,
    CronSpineError,
    DeadlineExceededError,
    ErrorCategory,
    ErrorContext,
    MonitorNotFoundError,
    RateLimitedError,
    StoreUnavailableError,
    ValidationError,
)

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
]
