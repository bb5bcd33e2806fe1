"""
Check-in wire schemas.

The request body is the shape client SDKs already send::

    POST /api/v1/monitors/{slug}/checkins
    {
      "environment": "production",
      "status": "in_progress",
      "check_in_id": "8f2b...",
      "monitor_config": {
        "schedule": {"type": "crontab", "value": "0 2 * * *"},
        "timezone": "UTC",
        "checkin_margin": 10,
        "max_runtime": 30,
        "failure_issue_threshold": 1,
        "recovery_threshold": 1
      }
    }

Schedule and timezone semantics are checked by the monitors package
(``ValidationError`` → 400); pydantic only checks the shape.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from cronspine.monitors.models import CheckIn, CheckInStatus, MonitorConfig
from cronspine.monitors.schedule import schedule_from_parts


class ScheduleBody(BaseModel):
    type: Literal["crontab", "interval"] = Field(description="Schedule kind")
    value: str | int = Field(description="Crontab expression, or the interval count")
    unit: str | None = Field(
        default=None,
        description="Interval unit: minute, hour, day, week, month or year",
    )


class MonitorConfigBody(BaseModel):
    """Optional monitor configuration; presence means "upsert first"."""

    schedule: ScheduleBody
    timezone: str = Field(default="UTC", description="IANA timezone the schedule is evaluated in")
    checkin_margin: int = Field(default=1, ge=0, description="Minutes a run may start late")
    max_runtime: int = Field(default=30, ge=0, description="Minutes a run may stay open; 0 = unbounded")
    failure_issue_threshold: int = Field(default=1, ge=1, description="Failures before Degraded")
    recovery_threshold: int = Field(default=1, ge=1, description="Successes before Recovered")

    def to_config(self) -> MonitorConfig:
        """Convert to the domain config. Raises ValidationError on a bad unit or value."""
        schedule = schedule_from_parts(
            self.schedule.type,
            self.schedule.value,
            unit=self.schedule.unit,
            timezone=self.timezone,
        )
        return MonitorConfig(
            schedule=schedule,
            checkin_margin=self.checkin_margin,
            max_runtime=self.max_runtime,
            failure_threshold=self.failure_issue_threshold,
            recovery_threshold=self.recovery_threshold,
        )


class CheckInBody(BaseModel):
    environment: str = Field(default="production", min_length=1)
    status: CheckInStatus
    check_in_id: str | None = Field(
        default=None,
        description="Opaque correlation key; generated for in_progress if omitted",
    )
    duration_seconds: float | None = Field(default=None, ge=0)
    timestamp: datetime | None = Field(
        default=None,
        description="When the job reported; defaults to receipt time, naive values are UTC",
    )
    monitor_config: MonitorConfigBody | None = None

    def to_checkin(self, slug: str, received_at: datetime) -> CheckIn:
        timestamp = self.timestamp or received_at
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        return CheckIn(
            slug=slug,
            environment=self.environment,
            status=self.status,
            timestamp=timestamp,
            check_in_id=self.check_in_id,
            duration_seconds=self.duration_seconds,
        )


class CheckInAccepted(BaseModel):
    """202 body: the id to echo on completion and how the check-in was applied."""

    check_in_id: str
    outcome: str
    run_expected_at: datetime | None = None
