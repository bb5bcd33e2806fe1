"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers, process-wide
singletons and lifespan events into a single ``FastAPI`` instance.

Manifesto:
    The app factory is the single composition root. The rate limiter and
    alert sink are created here once per process and parked on
    ``app.state``; request handlers build a fresh store and ingestor
    around them. When ``run_sweeper`` is set the lifespan also starts a
    ``SweepService`` on its own connection.

Tags:
    cronspine, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from cronspine.api.deps import get_settings
from cronspine.api.middleware.errors import (
    cronspine_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from cronspine.api.middleware.request_id import RequestIDMiddleware
from cronspine.api.middleware.timing import TimingMiddleware
from cronspine.api.settings import CronSpineAPISettings
from cronspine.core.connection import create_connection
from cronspine.core.errors import CronSpineError
from cronspine.core.events import AlertSink, LoggingAlertSink
from cronspine.core.health import HealthCheck, create_health_router
from cronspine.core.logging import get_logger
from cronspine.core.rate_limit import KeyedSlidingWindowLimiter
from cronspine.monitors import create_sweeper

log = get_logger("cronspine.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: schema init, optional sweeper, shutdown."""
    settings: CronSpineAPISettings = app.state.settings
    log.info("cronspine API starting", version=app.version)

    # Auto-initialize database on startup
    try:
        conn, info = create_connection(
            settings.database_url,
            init_schema=True,
            busy_timeout=settings.store_busy_timeout_seconds,
        )
        conn.close()
        log.info("database initialized", backend=info.backend, url=info.url)
    except sqlite3.Error as e:
        log.warning("database auto-init failed", error=str(e))

    sweeper_conn = None
    if settings.run_sweeper:
        sweeper_conn, _info = create_connection(
            settings.database_url,
            init_schema=True,
            busy_timeout=settings.store_busy_timeout_seconds,
        )
        app.state.sweeper = create_sweeper(sweeper_conn, settings, alert_sink=app.state.alert_sink)
        app.state.sweeper.start()

    try:
        yield
    finally:
        if app.state.sweeper is not None:
            app.state.sweeper.stop()
            app.state.sweeper = None
        if sweeper_conn is not None:
            sweeper_conn.close()
        log.info("cronspine API shutting down")


def _health_checks(app: FastAPI, settings: CronSpineAPISettings) -> list[HealthCheck]:
    async def check_store() -> dict[str, Any]:
        conn, info = create_connection(
            settings.database_url,
            busy_timeout=settings.store_busy_timeout_seconds,
        )
        try:
            count = conn.execute("SELECT COUNT(*) FROM monitors").fetchone()[0]
        finally:
            conn.close()
        return {"backend": info.backend, "monitors": count}

    async def check_sweeper() -> dict[str, Any]:
        sweeper = app.state.sweeper
        if sweeper is None or not sweeper.is_running:
            raise RuntimeError("sweeper not running")
        return sweeper.health().to_dict()

    checks = [HealthCheck("store", check_store)]
    if settings.run_sweeper:
        checks.append(HealthCheck("sweeper", check_sweeper, required=False))
    return checks


def create_app(
    *,
    settings: CronSpineAPISettings | None = None,
    alert_sink: AlertSink | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : CronSpineAPISettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    alert_sink : AlertSink | None
        Where Degraded/Recovered transitions go. Defaults to logging them.
    """

    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    # Process-wide state shared by every request
    app.state.settings = settings
    app.state.rate_limiter = KeyedSlidingWindowLimiter(
        max_requests=settings.rate_limit_max_checkins,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.state.alert_sink = alert_sink if alert_sink is not None else LoggingAlertSink()
    app.state.sweeper = None

    # Override DI so endpoints use the provided settings
    app.dependency_overrides[get_settings] = lambda: settings

    # ── Middleware (outermost → innermost) ────────────────────────────
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(CronSpineError, cronspine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from cronspine.api.routers import checkins, monitors

    prefix = settings.api_prefix

    # Health endpoints at root level (no prefix) for container healthchecks
    app.include_router(
        create_health_router("cronspine", version=settings.api_version, checks=_health_checks(app, settings)),
        tags=["health"],
    )

    app.include_router(checkins.router, prefix=prefix, tags=["checkins"])
    app.include_router(monitors.router, prefix=prefix, tags=["monitors"])

    return app
