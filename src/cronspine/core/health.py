"""Health check endpoints for the check-in service.

Provides:

- **Response models** - ``HealthResponse``, ``CheckResult``, ``LivenessResponse``.
- **``HealthCheck``** - one dependency check (monitor store, sweeper) with
  ``required`` / ``timeout_s`` knobs.
- **``create_health_router()``** - K8s-style ``/health``, ``/health/ready``
  and ``/health/live`` endpoints.

Quick start::

    from cronspine.core.health import HealthCheck, create_health_router

    router = create_health_router(
        service_name="cronspine",
        version="0.1.0",
        checks=[HealthCheck("store", check_store)],
    )
    app.include_router(router)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Set when the service first imports this module.
_START_TIME = time.monotonic()

HealthStatus = Literal["healthy", "degraded", "unhealthy"]


# ── Response Models ──────────────────────────────────────────────────────


class CheckResult(BaseModel):
    """Result of a single dependency health check."""

    status: HealthStatus
    latency_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health response envelope returned from ``GET /health``.

    Fields
    ──────
    status    : ``healthy`` | ``degraded`` | ``unhealthy``
    service   : Human-readable service name
    version   : Semver string
    uptime_s  : Seconds since startup
    timestamp : ISO-8601 UTC
    checks    : Per-dependency breakdown (name → CheckResult)
    """

    status: HealthStatus = "healthy"
    service: str = ""
    version: str = ""
    uptime_s: float = Field(default_factory=lambda: round(time.monotonic() - _START_TIME, 1))
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    checks: dict[str, CheckResult] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    """Response for liveness probes - always ``{"status": "alive"}``."""

    status: str = "alive"


# ── Health Check Definition ──────────────────────────────────────────────


@dataclass
class HealthCheck:
    """Declarative description of a single dependency health check.

    Parameters
    ----------
    name : str
        Dependency name (``"store"``, ``"sweeper"``).
    check_fn : () -> Awaitable[Any]
        Async callable. Returns details (a dict) or ``None``; raises on failure.
    required : bool
        If *True* (default), failure makes the overall status ``unhealthy``.
        If *False*, failure only causes ``degraded``.
    timeout_s : float
        Max seconds to wait before the check is considered failed.
    """

    name: str
    check_fn: Callable[[], Awaitable[Any]]
    required: bool = True
    timeout_s: float = 5.0


# ── Internal helpers ─────────────────────────────────────────────────────


async def run_checks(checks: list[HealthCheck]) -> dict[str, CheckResult]:
    """Execute all checks concurrently and map name → result."""

    async def _one(hc: HealthCheck) -> tuple[str, CheckResult]:
        start = time.monotonic()
        try:
            details = await asyncio.wait_for(hc.check_fn(), timeout=hc.timeout_s)
        except TimeoutError:
            return hc.name, CheckResult(status="unhealthy", error="timeout")
        except Exception as exc:  # noqa: BLE001
            elapsed = (time.monotonic() - start) * 1000
            return hc.name, CheckResult(
                status="unhealthy",
                latency_ms=round(elapsed, 2),
                error=str(exc)[:200],
            )
        elapsed = (time.monotonic() - start) * 1000
        return hc.name, CheckResult(
            status="healthy",
            latency_ms=round(elapsed, 2),
            details=details if isinstance(details, dict) else {},
        )

    pairs = await asyncio.gather(*[_one(hc) for hc in checks])
    return dict(pairs)


def compute_status(
    check_results: dict[str, CheckResult],
    checks: list[HealthCheck],
) -> HealthStatus:
    """Derive aggregate status from individual check results."""
    required = {hc.name for hc in checks if hc.required}
    failed = [name for name, result in check_results.items() if result.status != "healthy"]

    if any(name in required for name in failed):
        return "unhealthy"
    if failed:
        return "degraded"
    return "healthy"


# ── Router Factory ───────────────────────────────────────────────────────


def create_health_router(
    service_name: str,
    version: str,
    checks: list[HealthCheck] | None = None,
    prefix: str = "/health",
) -> APIRouter:
    """Create a FastAPI ``APIRouter`` with health endpoints.

    Endpoints created
    -----------------
    ``GET {prefix}``         Primary health - runs all checks.
    ``GET {prefix}/ready``   Readiness probe - 503 if any dependency is down.
    ``GET {prefix}/live``    Liveness probe - always 200.
    """
    router = APIRouter(tags=["health"])
    _checks: list[HealthCheck] = checks or []

    def _make_response(status: HealthStatus, check_results: dict[str, CheckResult]) -> HealthResponse:
        return HealthResponse(
            status=status,
            service=service_name,
            version=version,
            checks=check_results,
        )

    @router.get(prefix, response_model=HealthResponse)
    async def health() -> JSONResponse:
        """Primary health - runs all dependency checks."""
        check_results = await run_checks(_checks)
        status = compute_status(check_results, _checks)
        body = _make_response(status, check_results)
        code = 503 if status == "unhealthy" else 200
        return JSONResponse(content=body.model_dump(), status_code=code)

    @router.get(f"{prefix}/ready", response_model=HealthResponse)
    async def readiness() -> JSONResponse:
        """Readiness probe - 503 unless every check is healthy."""
        check_results = await run_checks(_checks)
        status = compute_status(check_results, _checks)
        code = 503 if status != "healthy" else 200
        body = _make_response(status, check_results)
        return JSONResponse(content=body.model_dump(), status_code=code)

    @router.get(f"{prefix}/live", response_model=LivenessResponse)
    async def liveness() -> LivenessResponse:
        """Liveness probe - always 200 if the process is running."""
        return LivenessResponse()

    return router
