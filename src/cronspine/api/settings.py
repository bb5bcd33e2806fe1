"""
API-specific settings.

Extends :class:`~cronspine.core.settings.CronSpineSettings` with the
parameters that govern the REST transport (CORS, prefix, OpenAPI metadata)
and whether the API process also runs the sweeper.

All values can be overridden via environment variables prefixed with
``CRONSPINE_``.
"""

from __future__ import annotations

from pydantic import Field

from cronspine.core.settings import CronSpineSettings


class CronSpineAPISettings(CronSpineSettings):
    """Settings for the cronspine REST API.

    Order of precedence (highest → lowest):
        1. Environment variables (``CRONSPINE_API_PREFIX``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    # ── API ──────────────────────────────────────────────────────────────
    api_prefix: str = Field(default="/api/v1", description="URL prefix for all endpoints")
    api_title: str = Field(default="cronspine API", description="OpenAPI title")
    api_version: str = Field(default="0.1.0", description="OpenAPI version string")

    # ── CORS ─────────────────────────────────────────────────────────────
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )

    # ── Embedded sweeper ─────────────────────────────────────────────────
    run_sweeper: bool = Field(
        default=False,
        description="Start a SweepService inside the API process",
    )
