"""Base settings for the cronspine check-in service.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    Every knob the ingestor, rate limiter and sweep detector read lives
    here, so a deployment can be tuned with ``CRONSPINE_*`` variables
    without touching code.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** Works out of the box for development

Examples:
    >>> from cronspine.core.settings import CronSpineSettings
    >>> settings = CronSpineSettings(rate_limit_max_checkins=10)
    >>> settings.rate_limit_window_seconds
    60.0

Tags:
    settings, configuration, pydantic, environment, cronspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CronSpineSettings(BaseSettings):
    """Settings shared by the API, the sweep service and the CLI.

    Fields
    ──────
    host, port          : Bind address for the HTTP transport
    debug, log_level    : Observability
    database_url        : ``sqlite:///path`` or ``sqlite:///:memory:``
    rate_limit_*        : Per-(slug, environment) check-in quota
    cas_*               : Bounded, jittered retry policy for store writes
    ingest_deadline_*   : Default caller deadline for one check-in
    sweep_*             : Sweep detector cadence and per-monitor bounds
    shard_count/index   : Which monitors this sweeper instance owns
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Network ──────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 12100

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = Field(default=None, description="None = JSON unless on a TTY")

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///cronspine.db",
        description="SQLite connection URL",
    )
    store_busy_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Rate limiting ────────────────────────────────────────────
    rate_limit_max_checkins: int = Field(default=6, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # ── CAS retry policy ─────────────────────────────────────────
    cas_max_attempts: int = Field(default=3, ge=1)
    cas_base_delay_seconds: float = Field(default=0.02, ge=0)
    cas_max_delay_seconds: float = Field(default=0.25, ge=0)
    ingest_deadline_seconds: float | None = Field(
        default=None,
        ge=0,
        description="Deadline for one check-in, None = bounded by retries only",
    )

    # ── Sweep detector ───────────────────────────────────────────
    sweep_interval_seconds: float = Field(default=30.0, gt=0)
    sweep_monitor_timeout_seconds: float = Field(default=5.0, gt=0)
    sweep_backfill_limit: int = Field(default=50, ge=1)
    sweep_lock_ttl_seconds: int = Field(default=120, ge=1)
    shard_count: int = Field(default=1, ge=1)
    shard_index: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_shard(self) -> CronSpineSettings:
        if self.shard_index >= self.shard_count:
            raise ValueError(
                f"shard_index {self.shard_index} out of range for shard_count {self.shard_count}"
            )
        return self
