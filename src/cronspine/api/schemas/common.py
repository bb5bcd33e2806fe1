"""
Common API schemas: shared envelopes and RFC 7807 errors.

Read endpoints return :class:`SuccessResponse` or :class:`PagedResponse`;
every 4xx/5xx is a :class:`ProblemDetail`. The check-in endpoint keeps the
flat ``{check_in_id, outcome}`` body client SDKs already parse.

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ── RFC 7807 Problem Detail ─────────────────────────────────────────────


class ErrorDetail(BaseModel):
    """Structured error detail for field-level errors."""

    code: str = Field(description="Machine-readable error code (e.g., 'VALIDATION', 'MISSING')")
    message: str = Field(description="Human-readable error description")
    field: str | None = Field(default=None, description="Field path if error is field-specific")


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Used as the canonical error envelope for all non-2xx responses.

    Statuses:
        - 400: Malformed body, schedule, timezone or thresholds
        - 404: Unknown monitor and no ``monitor_config`` to create it
        - 409: Compare-and-swap still conflicting after retries
        - 429: Per-monitor check-in quota exceeded (``Retry-After`` set)
        - 503: Monitor store unavailable after retries
        - 504: Caller deadline exceeded

    Example:
        {
            "type": "about:blank",
            "title": "Monitor not found",
            "status": 404,
            "detail": "Monitor 'nightly-report' (production) does not exist",
            "instance": "/api/v1/monitors/nightly-report/checkins",
            "errors": []
        }
    """

    type: str = Field(default="about:blank", description="Error type URI (usually 'about:blank')")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code (e.g., 400, 404, 500)")
    detail: str = Field(default="", description="Human-readable explanation of the error")
    instance: str = Field(default="", description="URI of the failing request")
    errors: list[ErrorDetail] = Field(
        default_factory=list,
        description="List of field-level error details",
    )


# ── Success Envelopes ────────────────────────────────────────────────────


class PageMeta(BaseModel):
    """Pagination metadata for list responses."""

    total: int = Field(description="Items returned")
    limit: int = Field(description="Maximum items requested")
    has_more: bool = Field(default=False, description="True if the limit truncated the list")


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success envelope for single-item responses."""

    data: T = Field(description="Response payload (type varies by endpoint)")
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-fatal warnings",
    )


class PagedResponse(BaseModel, Generic[T]):
    """Success envelope for list responses."""

    data: list[T] = Field(description="List of items")
    page: PageMeta = Field(description="Pagination metadata")
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-fatal warnings",
    )
