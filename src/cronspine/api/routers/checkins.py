"""
Check-in router.

POST /monitors/{slug}/checkins
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Header, Path

from cronspine.api.deps import Ingestor, Settings
from cronspine.api.schemas.checkins import CheckInAccepted, CheckInBody
from cronspine.api.schemas.common import ProblemDetail

router = APIRouter(prefix="/monitors")

_ERRORS = {
    code: {"model": ProblemDetail}
    for code in (400, 404, 409, 429, 503, 504)
}


@router.post(
    "/{slug}/checkins",
    response_model=CheckInAccepted,
    status_code=202,
    responses=_ERRORS,
)
def post_checkin(
    ingestor: Ingestor,
    settings: Settings,
    body: CheckInBody,
    slug: str = Path(..., min_length=1, description="Monitor slug"),
    request_timeout: Annotated[
        float | None,
        Header(alias="Request-Timeout", ge=0, description="Seconds the caller will wait"),
    ] = None,
):
    """Record a job check-in.

    An ``in_progress`` check-in opens the run for the nearest expected
    occurrence; ``ok``/``error`` closes it (matched by ``check_in_id``).
    When ``monitor_config`` is present the monitor is created or updated
    first, so the first check-in of a new job needs no separate setup call.

    Raises:
        400: Malformed body, schedule, timezone or thresholds.
        404: Monitor does not exist and no ``monitor_config`` was sent.
        409: Lost the compare-and-swap on every retry; safe to resend.
        429: Per-monitor quota spent; honour ``Retry-After``.
        504: The ``Request-Timeout`` header (or the configured ingest
             deadline) passed before the check-in was committed.

    Example:
        POST /api/v1/monitors/nightly-report/checkins
        {"environment": "production", "status": "ok", "check_in_id": "run-1"}

        Response (202):
        {"check_in_id": "run-1", "outcome": "closed", "run_expected_at": "2026-01-01T02:00:00Z"}
    """
    config = body.monitor_config.to_config() if body.monitor_config else None
    checkin = body.to_checkin(slug, received_at=datetime.now(UTC))

    deadline = request_timeout if request_timeout is not None else settings.ingest_deadline_seconds
    result = ingestor.ingest(checkin, config=config, deadline_seconds=deadline)
    return CheckInAccepted(
        check_in_id=result.check_in_id,
        outcome=result.outcome.value,
        run_expected_at=result.run.expected_at if result.run else None,
    )
