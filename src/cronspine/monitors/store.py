"""Monitor store - monitors, runs and the check-in audit log on SQLite.

Manifesto:
    The ingestor is stateless and horizontally scaled, and the sweep
    detector writes the same records from another process. Neither may do a
    blind overwrite. Every state change goes through ``cas``: the monitor
    row carries a ``version`` and a write only lands if the version it was
    planned against is still current.

┌──────────────────────────────────────────────────────────────────────────────┐
│  MONITOR STORE                                                                │
│                                                                               │
│   Config:                                                                     │
│   ├── upsert(slug, env, config) → Monitor      create once, update via CAS   │
│                                                                               │
│   State transitions:                                                          │
│   ├── cas(slug, env, expected_version, mutation) → Monitor | ConflictError   │
│   └── append_checkin(record)                   audit-only check-ins          │
│                                                                               │
│   Reads:                                                                      │
│   ├── get / require / list_monitors                                          │
│   ├── get_run / find_run_by_checkin_id / latest_open_run / list_open_runs    │
│   └── list_runs / list_checkins                                              │
└──────────────────────────────────────────────────────────────────────────────┘

One ``cas`` call is one transaction: the versioned monitor update, the run
upserts and the audit appends commit together or not at all. SQLite errors
surface as ``StoreUnavailableError`` (retriable); integrity violations as
``ConflictError``.

Tags:
    cronspine, store, repository, sqlite, compare-and-swap

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from cronspine.core.errors import (
    ConflictError,
    MonitorNotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from cronspine.core.protocols import Connection
from cronspine.monitors.models import (
    CheckIn,
    CheckInOutcome,
    CheckInRecord,
    CheckInStatus,
    IntervalSchedule,
    Monitor,
    MonitorConfig,
    MonitorStatus,
    Mutation,
    Run,
    RunStatus,
)
from cronspine.monitors.schedule import schedule_from_parts, validate_schedule

logger = logging.getLogger(__name__)

_MONITOR_COLUMNS = (
    "slug",
    "environment",
    "schedule_type",
    "schedule_value",
    "schedule_unit",
    "timezone",
    "checkin_margin",
    "max_runtime",
    "failure_threshold",
    "recovery_threshold",
    "status",
    "consecutive_failures",
    "consecutive_successes",
    "last_expected_run_at",
    "last_run_id",
    "anchor_at",
    "created_at",
    "updated_at",
    "version",
)

_RUN_COLUMNS = (
    "slug",
    "environment",
    "expected_at",
    "run_id",
    "started_at",
    "finished_at",
    "terminal_status",
    "duration_seconds",
    "checkin_margin",
    "max_runtime",
    "created_at",
)

_CHECKIN_COLUMNS = (
    "id",
    "check_in_id",
    "slug",
    "environment",
    "status",
    "timestamp",
    "duration_seconds",
    "received_at",
    "run_expected_at",
    "outcome",
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_db_time(value: datetime | None) -> str | None:
    """Fixed-width UTC ISO string, so text order is time order."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _select(table: str, columns: tuple[str, ...]) -> str:
    return f"SELECT {', '.join(columns)} FROM {table}"


def _schedule_parts(config: MonitorConfig) -> tuple[str, str, str | None, str]:
    schedule = config.schedule
    if isinstance(schedule, IntervalSchedule):
        return ("interval", str(schedule.value), schedule.unit.value, schedule.timezone)
    return ("crontab", schedule.expr, None, schedule.timezone)


def validate_config(config: MonitorConfig) -> None:
    """Raise ValidationError for an unusable schedule or threshold."""
    validate_schedule(config.schedule)
    if config.checkin_margin < 0:
        raise ValidationError("checkin_margin must be >= 0", field_name="checkin_margin")
    if config.max_runtime < 0:
        raise ValidationError("max_runtime must be >= 0", field_name="max_runtime")
    if config.failure_threshold < 1:
        raise ValidationError("failure_threshold must be >= 1", field_name="failure_threshold")
    if config.recovery_threshold < 1:
        raise ValidationError("recovery_threshold must be >= 1", field_name="recovery_threshold")


class MonitorStore:
    """Repository for monitors, runs and check-ins with CAS writes.

    Example:
        >>> store = MonitorStore(conn)
        >>> monitor = store.upsert("nightly-report", "production", config)
        >>> updated = store.cas(
        ...     monitor.slug, monitor.environment, monitor.version,
        ...     Mutation(monitor=replace(monitor, last_run_id="abc")),
        ... )
        >>> updated.version == monitor.version + 1
        True
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    # === Error handling ===

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except sqlite3.Error as e:
            logger.warning(f"Rollback failed: {e}")

    @contextmanager
    def _guard(self, operation: str, slug: str | None = None, environment: str | None = None) -> Iterator[None]:
        """Roll back on any failure and translate SQLite errors."""
        try:
            yield
        except sqlite3.IntegrityError as e:
            self._rollback()
            raise ConflictError(f"{operation}: concurrent write detected", cause=e).with_context(
                slug=slug, environment=environment
            ) from e
        except sqlite3.Error as e:
            self._rollback()
            raise StoreUnavailableError(f"{operation}: {e}", cause=e).with_context(
                slug=slug, environment=environment
            ) from e
        except BaseException:
            self._rollback()
            raise

    # === Config ===

    def upsert(
        self,
        slug: str,
        environment: str,
        config: MonitorConfig,
        now: datetime | None = None,
    ) -> Monitor:
        """Create the monitor if absent, otherwise replace its config.

        Counters and status are never touched. An identical config is a
        no-op (no version bump). A schedule change resets the sweep cursor
        to *now*, so the new timeline is not backfilled into the past.

        Raises:
            ValidationError: malformed schedule, timezone or thresholds
            ConflictError: lost the CAS against a concurrent writer
        """
        validate_config(config)
        now = now or utcnow()
        anchor = now.replace(microsecond=0)
        schedule_type, value, unit, timezone = _schedule_parts(config)

        with self._guard("upsert", slug, environment):
            cursor = self.conn.execute(
                f"""
                INSERT OR IGNORE INTO monitors ({', '.join(_MONITOR_COLUMNS)})
                VALUES ({', '.join('?' * len(_MONITOR_COLUMNS))})
                """,
                (
                    slug,
                    environment,
                    schedule_type,
                    value,
                    unit,
                    timezone,
                    config.checkin_margin,
                    config.max_runtime,
                    config.failure_threshold,
                    config.recovery_threshold,
                    MonitorStatus.UP.value,
                    0,
                    0,
                    to_db_time(anchor),
                    None,
                    to_db_time(anchor),
                    to_db_time(now),
                    to_db_time(now),
                    1,
                ),
            )
            self.conn.commit()

        if cursor.rowcount == 1:
            logger.info(f"Created monitor {slug}/{environment} ({schedule_type} {value})")
            return self.require(slug, environment)

        existing = self.require(slug, environment)
        if existing.config == config:
            return existing

        updated = replace(
            existing,
            schedule=config.schedule,
            checkin_margin=config.checkin_margin,
            max_runtime=config.max_runtime,
            failure_threshold=config.failure_threshold,
            recovery_threshold=config.recovery_threshold,
            updated_at=now,
        )
        if existing.config.schedule != config.schedule:
            updated.last_expected_run_at = now

        result = self.cas(slug, environment, existing.version, Mutation(monitor=updated))
        logger.info(f"Updated monitor config {slug}/{environment} (version {result.version})")
        return result

    # === State transitions ===

    def cas(
        self,
        slug: str,
        environment: str,
        expected_version: int,
        mutation: Mutation,
    ) -> Monitor:
        """Apply *mutation* only if the monitor is still at *expected_version*.

        Returns:
            The monitor as written, with its new version

        Raises:
            ConflictError: the version moved (nothing was written)
            StoreUnavailableError: SQLite failed (nothing was written)
        """
        monitor = mutation.monitor
        schedule_type, value, unit, timezone = _schedule_parts(monitor.config)
        new_version = expected_version + 1

        with self._guard("cas", slug, environment):
            cursor = self.conn.execute(
                """
                UPDATE monitors SET
                    schedule_type = ?, schedule_value = ?, schedule_unit = ?, timezone = ?,
                    checkin_margin = ?, max_runtime = ?,
                    failure_threshold = ?, recovery_threshold = ?,
                    status = ?, consecutive_failures = ?, consecutive_successes = ?,
                    last_expected_run_at = ?, last_run_id = ?,
                    updated_at = ?, version = ?
                WHERE slug = ? AND environment = ? AND version = ?
                """,
                (
                    schedule_type,
                    value,
                    unit,
                    timezone,
                    monitor.checkin_margin,
                    monitor.max_runtime,
                    monitor.failure_threshold,
                    monitor.recovery_threshold,
                    monitor.status.value,
                    monitor.consecutive_failures,
                    monitor.consecutive_successes,
                    to_db_time(monitor.last_expected_run_at),
                    monitor.last_run_id,
                    to_db_time(monitor.updated_at),
                    new_version,
                    slug,
                    environment,
                    expected_version,
                ),
            )
            if cursor.rowcount == 0:
                raise ConflictError(
                    f"Monitor {slug}/{environment} is no longer at version {expected_version}"
                ).with_context(slug=slug, environment=environment)

            for run in mutation.runs:
                self._write_run(run)
            for record in mutation.checkins:
                self._insert_checkin(record)
            self.conn.commit()

        return replace(monitor, version=new_version)

    def append_checkin(self, record: CheckInRecord) -> None:
        """Append an audit row for a check-in that changed no state."""
        checkin = record.checkin
        with self._guard("append_checkin", checkin.slug, checkin.environment):
            self._insert_checkin(record)
            self.conn.commit()

    def _write_run(self, run: Run) -> None:
        self.conn.execute(
            f"""
            INSERT INTO monitor_runs ({', '.join(_RUN_COLUMNS)})
            VALUES ({', '.join('?' * len(_RUN_COLUMNS))})
            ON CONFLICT (slug, environment, expected_at) DO UPDATE SET
                run_id = excluded.run_id,
                started_at = excluded.started_at,
                finished_at = excluded.finished_at,
                terminal_status = excluded.terminal_status,
                duration_seconds = excluded.duration_seconds
            """,
            (
                run.slug,
                run.environment,
                to_db_time(run.expected_at),
                run.run_id,
                to_db_time(run.started_at),
                to_db_time(run.finished_at),
                run.terminal_status.value if run.terminal_status else None,
                run.duration_seconds,
                run.checkin_margin,
                run.max_runtime,
                to_db_time(run.created_at),
            ),
        )

    def _insert_checkin(self, record: CheckInRecord) -> None:
        checkin = record.checkin
        self.conn.execute(
            f"""
            INSERT INTO monitor_checkins ({', '.join(_CHECKIN_COLUMNS)})
            VALUES ({', '.join('?' * len(_CHECKIN_COLUMNS))})
            """,
            (
                record.id or uuid4().hex,
                checkin.check_in_id,
                checkin.slug,
                checkin.environment,
                checkin.status.value,
                to_db_time(checkin.timestamp),
                checkin.duration_seconds,
                to_db_time(record.received_at),
                to_db_time(record.run_expected_at),
                record.outcome.value,
            ),
        )

    # === Monitor reads ===

    def get(self, slug: str, environment: str) -> Monitor | None:
        with self._guard("get", slug, environment):
            row = self.conn.execute(
                f"{_select('monitors', _MONITOR_COLUMNS)} WHERE slug = ? AND environment = ?",
                (slug, environment),
            ).fetchone()
        return self._row_to_monitor(row) if row else None

    def require(self, slug: str, environment: str) -> Monitor:
        """Like ``get`` but raises MonitorNotFoundError."""
        monitor = self.get(slug, environment)
        if monitor is None:
            raise MonitorNotFoundError(
                f"Monitor {slug!r} not found in environment {environment!r}"
            ).with_context(slug=slug, environment=environment)
        return monitor

    def list_monitors(self, environment: str | None = None) -> list[Monitor]:
        sql = _select("monitors", _MONITOR_COLUMNS)
        params: tuple[Any, ...] = ()
        if environment is not None:
            sql += " WHERE environment = ?"
            params = (environment,)
        sql += " ORDER BY slug, environment"
        with self._guard("list_monitors"):
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_monitor(row) for row in rows]

    # === Run reads ===

    def get_run(self, slug: str, environment: str, expected_at: datetime) -> Run | None:
        with self._guard("get_run", slug, environment):
            row = self.conn.execute(
                f"""
                {_select('monitor_runs', _RUN_COLUMNS)}
                WHERE slug = ? AND environment = ? AND expected_at = ?
                """,
                (slug, environment, to_db_time(expected_at)),
            ).fetchone()
        return self._row_to_run(row) if row else None

    def find_run_by_checkin_id(self, slug: str, environment: str, check_in_id: str) -> Run | None:
        """Run a check-in id refers to.

        Either the id that opened the run, or the id of a duplicate
        ``in_progress`` check-in recorded against it.
        """
        with self._guard("find_run_by_checkin_id", slug, environment):
            row = self.conn.execute(
                f"""
                {_select('monitor_runs', _RUN_COLUMNS)}
                WHERE slug = ? AND environment = ? AND run_id = ?
                ORDER BY expected_at DESC LIMIT 1
                """,
                (slug, environment, check_in_id),
            ).fetchone()
            if row:
                return self._row_to_run(row)

            alias = self.conn.execute(
                """
                SELECT run_expected_at FROM monitor_checkins
                WHERE slug = ? AND environment = ? AND check_in_id = ?
                  AND status = ? AND run_expected_at IS NOT NULL
                ORDER BY received_at DESC LIMIT 1
                """,
                (slug, environment, check_in_id, CheckInStatus.IN_PROGRESS.value),
            ).fetchone()

        if alias is None:
            return None
        return self.get_run(slug, environment, from_db_time(alias[0]))  # type: ignore[arg-type]

    def latest_open_run(self, slug: str, environment: str) -> Run | None:
        """Most recent run that has started and not closed."""
        with self._guard("latest_open_run", slug, environment):
            row = self.conn.execute(
                f"""
                {_select('monitor_runs', _RUN_COLUMNS)}
                WHERE slug = ? AND environment = ?
                  AND terminal_status IS NULL AND started_at IS NOT NULL
                ORDER BY expected_at DESC LIMIT 1
                """,
                (slug, environment),
            ).fetchone()
        return self._row_to_run(row) if row else None

    def list_open_runs(self, slug: str, environment: str) -> list[Run]:
        with self._guard("list_open_runs", slug, environment):
            rows = self.conn.execute(
                f"""
                {_select('monitor_runs', _RUN_COLUMNS)}
                WHERE slug = ? AND environment = ?
                  AND terminal_status IS NULL AND started_at IS NOT NULL
                ORDER BY expected_at
                """,
                (slug, environment),
            ).fetchall()
        return [self._row_to_run(row) for row in rows]

    def list_runs(self, slug: str, environment: str, limit: int = 50) -> list[Run]:
        """Newest runs first."""
        with self._guard("list_runs", slug, environment):
            rows = self.conn.execute(
                f"""
                {_select('monitor_runs', _RUN_COLUMNS)}
                WHERE slug = ? AND environment = ?
                ORDER BY expected_at DESC LIMIT ?
                """,
                (slug, environment, limit),
            ).fetchall()
        return [self._row_to_run(row) for row in rows]

    # === Check-in reads ===

    def list_checkins(self, slug: str, environment: str, limit: int = 50) -> list[CheckInRecord]:
        """Newest audit rows first."""
        with self._guard("list_checkins", slug, environment):
            rows = self.conn.execute(
                f"""
                {_select('monitor_checkins', _CHECKIN_COLUMNS)}
                WHERE slug = ? AND environment = ?
                ORDER BY received_at DESC LIMIT ?
                """,
                (slug, environment, limit),
            ).fetchall()
        return [self._row_to_checkin(row) for row in rows]

    # === Row conversion ===

    def _row_to_monitor(self, row: tuple) -> Monitor:
        data = dict(zip(_MONITOR_COLUMNS, row, strict=True))
        anchor = from_db_time(data["anchor_at"])
        schedule = schedule_from_parts(
            data["schedule_type"],
            data["schedule_value"],
            data["schedule_unit"],
            data["timezone"],
        )
        if isinstance(schedule, IntervalSchedule):
            schedule = replace(schedule, anchor=anchor)
        return Monitor(
            slug=data["slug"],
            environment=data["environment"],
            schedule=schedule,
            anchor_at=anchor,  # type: ignore[arg-type]
            created_at=from_db_time(data["created_at"]),  # type: ignore[arg-type]
            updated_at=from_db_time(data["updated_at"]),  # type: ignore[arg-type]
            checkin_margin=data["checkin_margin"],
            max_runtime=data["max_runtime"],
            failure_threshold=data["failure_threshold"],
            recovery_threshold=data["recovery_threshold"],
            status=MonitorStatus(data["status"]),
            consecutive_failures=data["consecutive_failures"],
            consecutive_successes=data["consecutive_successes"],
            last_expected_run_at=from_db_time(data["last_expected_run_at"]),
            last_run_id=data["last_run_id"],
            version=data["version"],
        )

    def _row_to_run(self, row: tuple) -> Run:
        data = dict(zip(_RUN_COLUMNS, row, strict=True))
        return Run(
            slug=data["slug"],
            environment=data["environment"],
            expected_at=from_db_time(data["expected_at"]),  # type: ignore[arg-type]
            run_id=data["run_id"],
            started_at=from_db_time(data["started_at"]),
            finished_at=from_db_time(data["finished_at"]),
            terminal_status=RunStatus(data["terminal_status"]) if data["terminal_status"] else None,
            duration_seconds=data["duration_seconds"],
            checkin_margin=data["checkin_margin"],
            max_runtime=data["max_runtime"],
            created_at=from_db_time(data["created_at"]),  # type: ignore[arg-type]
        )

    def _row_to_checkin(self, row: tuple) -> CheckInRecord:
        data = dict(zip(_CHECKIN_COLUMNS, row, strict=True))
        checkin = CheckIn(
            slug=data["slug"],
            environment=data["environment"],
            status=CheckInStatus(data["status"]),
            timestamp=from_db_time(data["timestamp"]),  # type: ignore[arg-type]
            check_in_id=data["check_in_id"],
            duration_seconds=data["duration_seconds"],
        )
        return CheckInRecord(
            checkin=checkin,
            outcome=CheckInOutcome(data["outcome"]),
            received_at=from_db_time(data["received_at"]),  # type: ignore[arg-type]
            run_expected_at=from_db_time(data["run_expected_at"]),
            id=data["id"],
        )


__all__ = ["MonitorStore", "validate_config", "to_db_time", "from_db_time"]
