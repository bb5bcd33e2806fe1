"""Read-side schemas for monitors and runs."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from cronspine.monitors.models import CrontabSchedule, Monitor, Run


class MonitorSchema(BaseModel):
    slug: str
    environment: str
    schedule_type: str = Field(description="crontab or interval")
    schedule_value: str
    schedule_unit: str | None = None
    timezone: str
    checkin_margin: int
    max_runtime: int
    failure_threshold: int
    recovery_threshold: int
    status: str
    consecutive_failures: int
    consecutive_successes: int
    last_expected_run_at: datetime | None = None
    last_run_id: str | None = None
    created_at: datetime
    updated_at: datetime
    version: int

    @classmethod
    def from_monitor(cls, monitor: Monitor) -> MonitorSchema:
        schedule = monitor.schedule
        if isinstance(schedule, CrontabSchedule):
            value, unit = schedule.expr, None
        else:
            value, unit = str(schedule.value), schedule.unit.value
        return cls(
            slug=monitor.slug,
            environment=monitor.environment,
            schedule_type=schedule.schedule_type,
            schedule_value=value,
            schedule_unit=unit,
            timezone=schedule.timezone,
            checkin_margin=monitor.checkin_margin,
            max_runtime=monitor.max_runtime,
            failure_threshold=monitor.failure_threshold,
            recovery_threshold=monitor.recovery_threshold,
            status=monitor.status.value,
            consecutive_failures=monitor.consecutive_failures,
            consecutive_successes=monitor.consecutive_successes,
            last_expected_run_at=monitor.last_expected_run_at,
            last_run_id=monitor.last_run_id,
            created_at=monitor.created_at,
            updated_at=monitor.updated_at,
            version=monitor.version,
        )


class RunSchema(BaseModel):
    expected_at: datetime
    run_id: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    status: str | None = Field(default=None, description="Terminal status; null while open")
    duration_seconds: float | None = None
    checkin_margin: int
    max_runtime: int

    @classmethod
    def from_run(cls, run: Run) -> RunSchema:
        return cls(
            expected_at=run.expected_at,
            run_id=run.run_id,
            started_at=run.started_at,
            finished_at=run.finished_at,
            status=run.terminal_status.value if run.terminal_status else None,
            duration_seconds=run.duration_seconds,
            checkin_margin=run.checkin_margin,
            max_runtime=run.max_runtime,
        )
