"""Monitor, run and check-in models (01_monitors.sql).

Manifesto:
    The ingestor, the sweep detector and the threshold engine all reason
    about the same three records. Typed dataclasses keep the state machine
    explicit: a schedule is either a crontab or an interval, a run is open
    or terminal, a check-in is applied with exactly one outcome.

Tags:
    cronspine, models, monitors, runs, check-ins, dataclasses

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from cronspine.core.events import TransitionEvent

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MonitorStatus(str, Enum):
    """Alert status of a monitor after hysteresis."""

    UP = "UP"
    DOWN = "DOWN"


class CheckInStatus(str, Enum):
    """Status reported by a client check-in (wire values)."""

    IN_PROGRESS = "in_progress"
    OK = "ok"
    ERROR = "error"


class RunStatus(str, Enum):
    """Terminal status of a run. Null on the row until the run closes."""

    OK = "OK"
    ERROR = "ERROR"
    MISSED = "MISSED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_failure(self) -> bool:
        return self is not RunStatus.OK


class Transition(str, Enum):
    """The only alert-worthy monitor transitions."""

    DEGRADED = "Degraded"
    RECOVERED = "Recovered"


class CheckInOutcome(str, Enum):
    """What applying a check-in did to its run."""

    STARTED = "started"        # in_progress opened the run
    DUPLICATE = "duplicate"    # in_progress for a run that was already started
    CLOSED = "closed"          # ok/error closed an open run
    HEARTBEAT = "heartbeat"    # ok/error with no open run opened and closed one
    LATE = "late"              # run already terminal; recorded for audit only


class WindowState(str, Enum):
    """Where ``now`` falls relative to an expected occurrence."""

    ON_TIME = "on_time"
    LATE = "late"
    MISSED = "missed"


class IntervalUnit(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CrontabSchedule:
    """Five-field crontab evaluated in an IANA timezone."""

    expr: str
    timezone: str = "UTC"

    @property
    def schedule_type(self) -> str:
        return "crontab"


@dataclass(frozen=True)
class IntervalSchedule:
    """Every ``value`` ``unit``s, counted from ``anchor``.

    ``anchor`` is the monitor's creation time. It is bound by the store when
    a monitor is loaded and does not take part in config equality.
    """

    value: int
    unit: IntervalUnit
    timezone: str = "UTC"
    anchor: datetime | None = field(default=None, compare=False)

    @property
    def schedule_type(self) -> str:
        return "interval"


Schedule = Union[CrontabSchedule, IntervalSchedule]


# ---------------------------------------------------------------------------
# monitors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonitorConfig:
    """Client-supplied monitor configuration (the upsert payload).

    ``checkin_margin`` and ``max_runtime`` are minutes; ``max_runtime = 0``
    means runs never time out.
    """

    schedule: Schedule
    checkin_margin: int = 1
    max_runtime: int = 30
    failure_threshold: int = 1
    recovery_threshold: int = 1


@dataclass
class Monitor:
    """Monitor row (``monitors``)."""

    slug: str
    environment: str
    schedule: Schedule
    anchor_at: datetime
    created_at: datetime
    updated_at: datetime
    checkin_margin: int = 1
    max_runtime: int = 30
    failure_threshold: int = 1
    recovery_threshold: int = 1
    status: MonitorStatus = MonitorStatus.UP
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_expected_run_at: datetime | None = None
    last_run_id: str | None = None
    version: int = 1

    @property
    def key(self) -> tuple[str, str]:
        return (self.slug, self.environment)

    @property
    def config(self) -> MonitorConfig:
        """The configuration part of the record, comparable to an upsert payload."""
        return MonitorConfig(
            schedule=self.schedule,
            checkin_margin=self.checkin_margin,
            max_runtime=self.max_runtime,
            failure_threshold=self.failure_threshold,
            recovery_threshold=self.recovery_threshold,
        )


# ---------------------------------------------------------------------------
# monitor_runs
# ---------------------------------------------------------------------------


@dataclass
class Run:
    """One scheduled occurrence (``monitor_runs``).

    ``checkin_margin`` and ``max_runtime`` are copied from the monitor when
    the run is created; later config changes do not affect it.
    """

    slug: str
    environment: str
    expected_at: datetime
    run_id: str
    checkin_margin: int
    max_runtime: int
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    terminal_status: RunStatus | None = None
    duration_seconds: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.terminal_status is not None

    @property
    def is_open(self) -> bool:
        """Started and not yet closed."""
        return self.started_at is not None and self.terminal_status is None


# ---------------------------------------------------------------------------
# check-ins
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckIn:
    """Immutable client check-in event."""

    slug: str
    environment: str
    status: CheckInStatus
    timestamp: datetime
    check_in_id: str | None = None
    duration_seconds: float | None = None


@dataclass(frozen=True)
class CheckInRecord:
    """Audit row (``monitor_checkins``): a check-in plus how it was applied."""

    checkin: CheckIn
    outcome: CheckInOutcome
    received_at: datetime
    run_expected_at: datetime | None = None
    id: str | None = None


# ---------------------------------------------------------------------------
# Store mutations and results
# ---------------------------------------------------------------------------


@dataclass
class Mutation:
    """Everything one CAS round writes.

    ``monitor`` is the desired monitor row (its ``version`` is ignored),
    ``runs`` are upserted by ``(slug, environment, expected_at)`` and
    ``checkins`` are appended to the audit log.
    """

    monitor: Monitor
    runs: list[Run] = field(default_factory=list)
    checkins: list[CheckInRecord] = field(default_factory=list)


@dataclass
class IngestResult:
    """Result of ``CheckInIngestor.ingest``."""

    check_in_id: str
    outcome: CheckInOutcome
    monitor: Monitor
    run: Run | None = None
    transition: TransitionEvent | None = None
    attempts: int = 1


__all__ = [
    "MonitorStatus",
    "CheckInStatus",
    "RunStatus",
    "Transition",
    "CheckInOutcome",
    "WindowState",
    "IntervalUnit",
    "CrontabSchedule",
    "IntervalSchedule",
    "Schedule",
    "MonitorConfig",
    "Monitor",
    "Run",
    "CheckIn",
    "CheckInRecord",
    "Mutation",
    "IngestResult",
]
