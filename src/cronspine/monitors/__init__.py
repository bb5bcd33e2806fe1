"""Monitor check-in package for cronspine.

Manifesto:
    Scheduled jobs fail in two ways: loudly (they report an error) and
    silently (they never run, or never finish). The monitors package turns
    both into the same signal: a terminal run outcome that moves the
    monitor's failure/success counters, flipping it Degraded or Recovered
    once a threshold is crossed.

┌──────────────────────────────────────────────────────────────────────────────┐
│  MONITOR CHECK-IN SERVICE                                                     │
│                                                                               │
│   client ─► RateLimiter ─► CheckInIngestor ─► MonitorStore.cas ─► AlertSink  │
│                                    │                ▲                         │
│                                    ▼                │                         │
│                             schedule evaluator      │                         │
│                                    ▲                │                         │
│   SweepBackend ─► SweepService ─► SweepDetector ────┘                         │
│                                                                               │
│  Tables (from 01_monitors.sql / 02_locks.sql):                                │
│  - monitors:          config, counters, status, sweep cursor, version         │
│  - monitor_runs:      one row per expected occurrence                         │
│  - monitor_checkins:  audit log of every accepted check-in                    │
│  - core_locks:        sweep leadership per shard                              │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Incrementing counters with a read-then-write
    ✅ ``MonitorStore.cas`` with the version the plan was made against
    ❌ Constructing sweep components individually
    ✅ ``create_sweeper(conn, settings)`` factory function

Tags:
    cronspine, monitors, check-ins, cron, sweep, thresholds

Doc-Types:
    package-overview, architecture-map, module-index
"""

from __future__ import annotations

from cronspine.core.events import AlertSink
from cronspine.core.protocols import Connection
from cronspine.core.settings import CronSpineSettings

# Backends
from .backend import BackendHealth, SweepBackend, ThreadSweepBackend

# Ingestor
from .ingestor import CheckInIngestor

# Lock Manager
from .lock_manager import LockManager

# Models
from .models import (
    CheckIn,
    CheckInOutcome,
    CheckInRecord,
    CheckInStatus,
    CrontabSchedule,
    IngestResult,
    IntervalSchedule,
    IntervalUnit,
    Monitor,
    MonitorConfig,
    MonitorStatus,
    Mutation,
    Run,
    RunStatus,
    Schedule,
    Transition,
    WindowState,
)

# Schedule evaluator
from .schedule import in_window, nearest_expected, next_expected, previous_expected, validate_schedule

# Store
from .store import MonitorStore

# Sweep
from .sweep import SweepDetector, SweepHealth, SweepReport, SweepService, SweepStats

# Thresholds
from .thresholds import ThresholdResult, apply_outcome

__all__ = [
    # Models
    "CheckIn",
    "CheckInOutcome",
    "CheckInRecord",
    "CheckInStatus",
    "CrontabSchedule",
    "IngestResult",
    "IntervalSchedule",
    "IntervalUnit",
    "Monitor",
    "MonitorConfig",
    "MonitorStatus",
    "Mutation",
    "Run",
    "RunStatus",
    "Schedule",
    "Transition",
    "WindowState",
    # Schedule evaluator
    "next_expected",
    "previous_expected",
    "nearest_expected",
    "in_window",
    "validate_schedule",
    # Store / ingest / thresholds
    "MonitorStore",
    "CheckInIngestor",
    "ThresholdResult",
    "apply_outcome",
    # Sweep
    "SweepBackend",
    "BackendHealth",
    "ThreadSweepBackend",
    "LockManager",
    "SweepDetector",
    "SweepReport",
    "SweepService",
    "SweepStats",
    "SweepHealth",
    "create_sweeper",
]


def create_sweeper(
    conn: Connection,
    settings: CronSpineSettings | None = None,
    alert_sink: AlertSink | None = None,
    backend: SweepBackend | None = None,
    instance_id: str | None = None,
) -> SweepService:
    """Factory function to create a complete sweep service.

    Args:
        conn: Database connection dedicated to the sweeper
        settings: Cadence, shard and retry settings (defaults if omitted)
        alert_sink: Where Degraded/Recovered transitions go
        backend: Timing backend (default: ThreadSweepBackend)
        instance_id: Unique instance ID for the shard lock

    Returns:
        Configured SweepService

    Example:
        >>> sweeper = create_sweeper(conn, settings)
        >>> sweeper.start()
    """
    settings = settings or CronSpineSettings()
    detector = SweepDetector.from_settings(MonitorStore(conn), settings, alert_sink)
    return SweepService(
        backend=backend if backend is not None else ThreadSweepBackend(),
        detector=detector,
        lock_manager=LockManager(conn, instance_id=instance_id),
        interval_seconds=settings.sweep_interval_seconds,
        lock_ttl_seconds=settings.sweep_lock_ttl_seconds,
    )
