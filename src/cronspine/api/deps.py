"""
FastAPI dependency injection: shared singletons and per-request factories.

Usage in routers::

    from cronspine.api.deps import Ingestor, Store

    @router.post("/monitors/{slug}/checkins")
    def post_checkin(ingestor: Ingestor, ...):
        ...

Manifesto:
    Dependency injection keeps routers thin. Settings are loaded once;
    each request gets its own SQLite connection (and so its own store),
    while the rate limiter and alert sink are process-wide singletons
    parked on ``app.state`` so every request shares one quota.

Tags:
    cronspine, api, dependency-injection, singletons

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, Request

from cronspine.api.settings import CronSpineAPISettings
from cronspine.core.connection import create_connection
from cronspine.monitors.ingestor import CheckInIngestor
from cronspine.monitors.store import MonitorStore

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> CronSpineAPISettings:
    """Cached settings, loaded once per process."""
    return CronSpineAPISettings()


# ── Database connection (per-request) ────────────────────────────────────


def get_connection(
    settings: Annotated[CronSpineAPISettings, Depends(get_settings)],
) -> Generator[Any, None, None]:
    """Yield a database connection for the request lifespan."""
    conn, _info = create_connection(
        settings.database_url,
        busy_timeout=settings.store_busy_timeout_seconds,
    )

    try:
        yield conn
    finally:
        conn.close()


def get_store(conn: Annotated[Any, Depends(get_connection)]) -> MonitorStore:
    return MonitorStore(conn)


def get_ingestor(
    request: Request,
    store: Annotated[MonitorStore, Depends(get_store)],
    settings: Annotated[CronSpineAPISettings, Depends(get_settings)],
) -> CheckInIngestor:
    """Build an ingestor around the process-wide rate limiter and alert sink."""
    return CheckInIngestor.from_settings(
        store,
        settings,
        rate_limiter=request.app.state.rate_limiter,
        alert_sink=request.app.state.alert_sink,
    )


# ── Convenience type aliases ─────────────────────────────────────────────

Settings = Annotated[CronSpineAPISettings, Depends(get_settings)]
Conn = Annotated[Any, Depends(get_connection)]
Store = Annotated[MonitorStore, Depends(get_store)]
Ingestor = Annotated[CheckInIngestor, Depends(get_ingestor)]
