"""
Error-handling middleware: maps cronspine errors to RFC 7807 responses.

Each :class:`~cronspine.core.errors.ErrorCategory` resolves to exactly one
HTTP status, so routers simply let ``CronSpineError`` subclasses propagate.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cronspine.api.schemas.common import ErrorDetail, ProblemDetail
from cronspine.core.errors import CronSpineError, ErrorCategory
from cronspine.core.logging import get_logger

logger = get_logger(__name__)

# ── Error category → HTTP status mapping ─────────────────────────────────

CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.RATE_LIMIT: 429,
    ErrorCategory.STORAGE: 503,
    ErrorCategory.TIMEOUT: 504,
    ErrorCategory.INTERNAL: 500,
}

_TITLES: dict[int, str] = {
    400: "Invalid check-in",
    404: "Monitor not found",
    409: "Concurrent update conflict",
    429: "Too many check-ins",
    503: "Monitor store unavailable",
    504: "Deadline exceeded",
    500: "Internal Server Error",
}


def status_for_category(category: ErrorCategory) -> int:
    """Resolve an error category to HTTP status, defaulting to 500."""
    return CATEGORY_TO_STATUS.get(category, 500)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    errors: list[dict[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance,
    )
    if errors:
        body.errors = [ErrorDetail(**e) for e in errors]
    return JSONResponse(status_code=status, content=body.model_dump(), headers=headers)


async def cronspine_error_handler(request: Request, exc: CronSpineError) -> JSONResponse:
    """Map a ``CronSpineError`` to its HTTP status."""
    status = status_for_category(exc.category)

    errors = None
    field_name = getattr(exc, "field_name", None)
    if field_name:
        errors = [{"code": exc.category.value, "message": exc.message, "field": field_name}]

    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}

    return problem_response(
        status=status,
        title=_TITLES.get(status, exc.category.value),
        detail=exc.message,
        instance=str(request.url),
        errors=errors,
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are 400, same as a malformed schedule."""
    errors = [
        {
            "code": str(err.get("type", "invalid")).upper(),
            "message": str(err.get("msg", "")),
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body") or None,
        }
        for err in exc.errors()
    ]
    return problem_response(
        status=400,
        title=_TITLES[400],
        detail="Request body failed validation",
        instance=str(request.url),
        errors=errors,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions; returns 500 with ProblemDetail."""
    logger.error("unhandled_exception", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url),
    )
