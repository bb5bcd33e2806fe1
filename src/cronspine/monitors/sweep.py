"""Sweep detector - find Missed and Timeout runs without waiting for traffic.

Manifesto:
    A job that never starts never checks in, so nothing on the ingest path
    will notice it. The sweep detector walks each monitor's expected
    timeline on a fixed period and closes the gaps itself: occurrences with
    no run past their margin become ``MISSED``, open runs past their max
    runtime become ``TIMEOUT``. It writes through the same CAS as the
    ingestor, so a check-in racing a sweep decision can never produce two
    terminal statuses for one run.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SWEEP ARCHITECTURE                                                           │
│                                                                               │
│   SweepBackend ── tick() ──► SweepService                                     │
│                               ├── acquire lock "sweep:<shard>"               │
│                               ├── SweepDetector.sweep(now)                   │
│                               │     for monitor in shard:                    │
│                               │       ├── walk cursor → mark MISSED          │
│                               │       ├── open runs → mark TIMEOUT           │
│                               │       ├── thresholds → Degraded/Recovered    │
│                               │       └── one CAS (re-read on conflict)      │
│                               └── release lock                               │
│                                                                               │
│   Per-monitor work is bounded by a deadline and a backfill limit; one       │
│   failing monitor is logged and the pass moves on.                          │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    cronspine, sweep, missed, timeout, beat-as-poller, service

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from cronspine.core.events import AlertSink, LoggingAlertSink, TransitionEvent, deliver
from cronspine.core.logging import get_logger
from cronspine.core.retry import ExponentialBackoff, RetryContext, RetryStrategy, deadline_after
from cronspine.core.settings import CronSpineSettings
from cronspine.monitors.backend import SweepBackend
from cronspine.monitors.lock_manager import LockManager
from cronspine.monitors.models import Monitor, Mutation, Run, RunStatus, WindowState
from cronspine.monitors.schedule import in_window, next_expected
from cronspine.monitors.store import MonitorStore
from cronspine.monitors.thresholds import apply_outcomes

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def shard_of(slug: str, environment: str, shard_count: int) -> int:
    """Stable shard assignment for a monitor."""
    return zlib.crc32(f"{slug}:{environment}".encode()) % shard_count


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class MonitorSweepResult:
    """What one monitor's sweep committed."""

    slug: str
    environment: str
    missed: list[Run] = field(default_factory=list)
    timed_out: list[Run] = field(default_factory=list)
    transitions: list[TransitionEvent] = field(default_factory=list)
    cursor: datetime | None = None
    backlog: bool = False
    attempts: int = 1

    @property
    def changed(self) -> bool:
        return bool(self.missed or self.timed_out)


@dataclass
class SweepReport:
    """Summary of one sweep pass."""

    started_at: datetime
    finished_at: datetime | None = None
    monitors_scanned: int = 0
    monitors_changed: int = 0
    missed: int = 0
    timed_out: int = 0
    transitions: list[TransitionEvent] = field(default_factory=list)
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def add(self, result: MonitorSweepResult) -> None:
        self.monitors_scanned += 1
        if result.changed:
            self.monitors_changed += 1
        self.missed += len(result.missed)
        self.timed_out += len(result.timed_out)
        self.transitions.extend(result.transitions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "monitors_scanned": self.monitors_scanned,
            "monitors_changed": self.monitors_changed,
            "missed": self.missed,
            "timed_out": self.timed_out,
            "transitions": [event.to_dict() for event in self.transitions],
            "failed": self.failed,
            "errors": self.errors,
        }


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class SweepDetector:
    """Marks Missed and Timeout runs for the monitors of one shard.

    Example:
        >>> detector = SweepDetector(MonitorStore(conn), sink)
        >>> report = detector.sweep(now=datetime(2026, 1, 1, 2, 11, tzinfo=UTC))
        >>> report.missed
        1
    """

    def __init__(
        self,
        store: MonitorStore,
        alert_sink: AlertSink | None = None,
        *,
        backfill_limit: int = 50,
        monitor_timeout_seconds: float | None = 5.0,
        shard_count: int = 1,
        shard_index: int = 0,
        retry_strategy: RetryStrategy | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not 0 <= shard_index < shard_count:
            raise ValueError(f"shard_index {shard_index} out of range for shard_count {shard_count}")
        self.store = store
        self.alert_sink: AlertSink = alert_sink if alert_sink is not None else LoggingAlertSink()
        self.backfill_limit = backfill_limit
        self.monitor_timeout_seconds = monitor_timeout_seconds
        self.shard_count = shard_count
        self.shard_index = shard_index
        self.retry_strategy = retry_strategy if retry_strategy is not None else ExponentialBackoff()
        self.clock = clock
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        store: MonitorStore,
        settings: CronSpineSettings,
        alert_sink: AlertSink | None = None,
    ) -> SweepDetector:
        return cls(
            store,
            alert_sink,
            backfill_limit=settings.sweep_backfill_limit,
            monitor_timeout_seconds=settings.sweep_monitor_timeout_seconds,
            shard_count=settings.shard_count,
            shard_index=settings.shard_index,
            retry_strategy=ExponentialBackoff(
                max_attempts=settings.cas_max_attempts,
                base_delay=settings.cas_base_delay_seconds,
                max_delay=settings.cas_max_delay_seconds,
            ),
        )

    def owns(self, monitor: Monitor) -> bool:
        return shard_of(monitor.slug, monitor.environment, self.shard_count) == self.shard_index

    # === Pass ===

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Sweep every monitor in this shard once."""
        now = now or self.clock()
        report = SweepReport(started_at=now)

        monitors = [m for m in self.store.list_monitors() if self.owns(m)]
        for monitor in monitors:
            try:
                result = self.sweep_monitor(monitor, now)
            except Exception as e:
                report.failed += 1
                report.errors.append(
                    {
                        "slug": monitor.slug,
                        "environment": monitor.environment,
                        "error_type": type(e).__name__,
                        "error": str(e),
                    }
                )
                logger.warning(
                    "sweep_monitor_failed",
                    slug=monitor.slug,
                    environment=monitor.environment,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            report.add(result)

        report.finished_at = self.clock()
        logger.info(
            "sweep_pass_completed",
            shard=self.shard_index,
            monitors=report.monitors_scanned,
            missed=report.missed,
            timed_out=report.timed_out,
            transitions=len(report.transitions),
            failed=report.failed,
        )
        return report

    def sweep_monitor(self, monitor: Monitor, now: datetime) -> MonitorSweepResult:
        """Commit Missed/Timeout decisions for one monitor.

        Raises:
            ConflictError: still losing the CAS after the retry budget
            DeadlineExceededError: the per-monitor deadline passed
            StoreUnavailableError: the store kept failing
        """
        ctx = RetryContext(
            self.retry_strategy,
            deadline=deadline_after(self.monitor_timeout_seconds),
            sleep=self.sleep,
        )

        def _attempt() -> MonitorSweepResult:
            current = self.store.require(monitor.slug, monitor.environment)
            return self._sweep_once(current, now, ctx)

        result = ctx.run(_attempt)
        result.attempts = ctx.attempts

        for run in result.missed:
            logger.info(
                "run_missed",
                slug=run.slug,
                environment=run.environment,
                expected_at=run.expected_at.isoformat(),
            )
        for run in result.timed_out:
            logger.info(
                "run_timed_out",
                slug=run.slug,
                environment=run.environment,
                expected_at=run.expected_at.isoformat(),
                run_id=run.run_id,
            )
        for event in result.transitions:
            deliver(self.alert_sink, event)
        return result

    def _sweep_once(self, monitor: Monitor, now: datetime, ctx: RetryContext) -> MonitorSweepResult:
        slug, environment = monitor.slug, monitor.environment
        result = MonitorSweepResult(slug=slug, environment=environment)
        closed: list[Run] = []

        # 1. Occurrences past their margin with no run at all
        cursor = monitor.last_expected_run_at or monitor.anchor_at
        for _ in range(self.backfill_limit):
            ctx.check_deadline("sweep_monitor")
            expected = next_expected(monitor.schedule, cursor)
            if in_window(monitor.schedule, expected, monitor.checkin_margin, now) is not WindowState.MISSED:
                break
            cursor = expected
            if self.store.get_run(slug, environment, expected) is not None:
                continue
            run = Run(
                slug=slug,
                environment=environment,
                expected_at=expected,
                run_id=f"missed-{uuid4().hex}",
                checkin_margin=monitor.checkin_margin,
                max_runtime=monitor.max_runtime,
                created_at=now,
                finished_at=now,
                terminal_status=RunStatus.MISSED,
            )
            result.missed.append(run)
            closed.append(run)
        else:
            upcoming = next_expected(monitor.schedule, cursor)
            window = in_window(monitor.schedule, upcoming, monitor.checkin_margin, now)
            result.backlog = window is WindowState.MISSED

        # 2. Open runs past their own max runtime (0 = unbounded)
        for run in self.store.list_open_runs(slug, environment):
            ctx.check_deadline("sweep_monitor")
            if run.max_runtime <= 0 or run.started_at is None:
                continue
            if now <= run.started_at + timedelta(minutes=run.max_runtime):
                continue
            timed_out = replace(
                run,
                finished_at=now,
                terminal_status=RunStatus.TIMEOUT,
                duration_seconds=(now - run.started_at).total_seconds(),
            )
            result.timed_out.append(timed_out)
            closed.append(timed_out)

        result.cursor = cursor
        if not closed and cursor == monitor.last_expected_run_at:
            return result

        closed.sort(key=lambda r: r.expected_at)
        updated, events = apply_outcomes(monitor, [(run.terminal_status, now) for run in closed])  # type: ignore[misc]
        updated = replace(updated, last_expected_run_at=cursor, updated_at=now)

        self.store.cas(slug, environment, monitor.version, Mutation(monitor=updated, runs=closed))
        result.transitions = events
        return result


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class SweepStats:
    """Statistics for the sweep service."""

    tick_count: int = 0
    passes_completed: int = 0
    passes_skipped: int = 0
    passes_failed: int = 0
    monitors_scanned: int = 0
    runs_missed: int = 0
    runs_timed_out: int = 0
    transitions_emitted: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None
    last_report: SweepReport | None = None


@dataclass
class SweepHealth:
    """Health status for the sweep service."""

    healthy: bool
    backend: dict[str, Any]
    shard_index: int = 0
    shard_count: int = 1
    active_locks: int = 0
    last_tick: datetime | None = None
    stats: SweepStats = field(default_factory=SweepStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "shard_index": self.shard_index,
            "shard_count": self.shard_count,
            "active_locks": self.active_locks,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": {
                "tick_count": self.stats.tick_count,
                "passes_completed": self.stats.passes_completed,
                "passes_skipped": self.stats.passes_skipped,
                "passes_failed": self.stats.passes_failed,
                "runs_missed": self.stats.runs_missed,
                "runs_timed_out": self.stats.runs_timed_out,
                "transitions_emitted": self.stats.transitions_emitted,
                "last_error": self.stats.last_error,
            },
        }


class SweepService:
    """Beat-as-poller driver: backend ticks, service sweeps under a shard lock.

    Example:
        >>> service = SweepService(
        ...     backend=ThreadSweepBackend(),
        ...     detector=SweepDetector(MonitorStore(conn)),
        ...     lock_manager=LockManager(conn),
        ...     interval_seconds=30.0,
        ... )
        >>> service.start()
        >>> # Later...
        >>> service.stop()
    """

    def __init__(
        self,
        backend: SweepBackend,
        detector: SweepDetector,
        lock_manager: LockManager,
        interval_seconds: float = 30.0,
        lock_ttl_seconds: int = 120,
    ) -> None:
        self.backend = backend
        self.detector = detector
        self.lock_manager = lock_manager
        self.interval = interval_seconds
        self.lock_ttl_seconds = lock_ttl_seconds

        self._stats = SweepStats()
        self._running = False

    @property
    def lock_id(self) -> str:
        return f"sweep:{self.detector.shard_index}"

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.warning("sweep_service_already_running")
            return

        logger.info(
            "sweep_service_starting",
            backend=self.backend.name,
            interval_s=self.interval,
            shard=self.detector.shard_index,
            shard_count=self.detector.shard_count,
        )
        self.backend.start(self.tick, self.interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return

        self.backend.stop()
        self._running = False
        logger.info("sweep_service_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick Processing ===

    async def tick(self) -> None:
        """One backend tick: a locked sweep pass. Never raises."""
        self.run_once()

    def run_once(self, now: datetime | None = None) -> SweepReport | None:
        """Run a pass if this instance wins the shard lock.

        Returns:
            The pass report, or None if skipped or failed
        """
        self._stats.tick_count += 1
        self._stats.last_tick = utcnow()

        try:
            if self._stats.tick_count % 10 == 0:
                self.lock_manager.cleanup_expired_locks()

            if not self.lock_manager.acquire(self.lock_id, self.lock_ttl_seconds):
                logger.debug("sweep_skipped_locked", lock_id=self.lock_id)
                self._stats.passes_skipped += 1
                return None

            try:
                report = self.detector.sweep(now)
            finally:
                self.lock_manager.release(self.lock_id)

        except Exception as e:
            self._stats.passes_failed += 1
            self._stats.last_error = str(e)
            logger.error("sweep_pass_failed", error_type=type(e).__name__, error=str(e))
            return None

        self._stats.passes_completed += 1
        self._stats.monitors_scanned += report.monitors_scanned
        self._stats.runs_missed += report.missed
        self._stats.runs_timed_out += report.timed_out
        self._stats.transitions_emitted += len(report.transitions)
        self._stats.last_report = report
        return report

    # === Health & Stats ===

    def health(self) -> SweepHealth:
        backend_health = self.backend.health()
        return SweepHealth(
            healthy=self._running and backend_health.get("healthy", False),
            backend=backend_health,
            shard_index=self.detector.shard_index,
            shard_count=self.detector.shard_count,
            active_locks=len(self.lock_manager.list_active_locks()),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SweepStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SweepStats()


__all__ = [
    "shard_of",
    "MonitorSweepResult",
    "SweepReport",
    "SweepDetector",
    "SweepStats",
    "SweepHealth",
    "SweepService",
]
