"""
Shared pytest fixtures and configuration for cronspine tests.

This module provides:
- File-backed SQLite stores under ``tmp_path``
- A settable UTC clock and a settable monotonic clock
- In-memory alert sinks and pre-wired ingestor / sweep detector factories

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(store, clock, make_ingestor):
            ingestor = make_ingestor()
            ...
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from cronspine.core.connection import create_connection
from cronspine.core.events import InMemoryAlertSink
from cronspine.core.rate_limit import KeyedSlidingWindowLimiter
from cronspine.core.retry import ExponentialBackoff
from cronspine.monitors.ingestor import CheckInIngestor
from cronspine.monitors.models import CrontabSchedule, MonitorConfig
from cronspine.monitors.store import MonitorStore
from cronspine.monitors.sweep import SweepDetector
from tests._support.clock import FakeClock, FakeMonotonic, utc

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if test_path.parts and test_path.parts[0] in {"api", "cli"}:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(utc(2026, 1, 1, 1, 0))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cronspine.db"


@pytest.fixture
def conn(db_path: Path) -> Generator[Any, None, None]:
    """Schema-initialised SQLite connection on a temp file."""
    connection, _info = create_connection(str(db_path), init_schema=True)
    yield connection
    connection.close()


@pytest.fixture
def store(conn: Any) -> MonitorStore:
    return MonitorStore(conn)


@pytest.fixture
def sink() -> InMemoryAlertSink:
    return InMemoryAlertSink()


# =============================================================================
# Domain factories
# =============================================================================


@pytest.fixture
def nightly_config() -> MonitorConfig:
    """``nightly-report``: 02:00 UTC daily, 10 minute margin, 30 minute runtime."""
    return MonitorConfig(
        schedule=CrontabSchedule("0 2 * * *"),
        checkin_margin=10,
        max_runtime=30,
    )


@pytest.fixture
def make_ingestor(
    store: MonitorStore,
    sink: InMemoryAlertSink,
    clock: FakeClock,
    monotonic: FakeMonotonic,
) -> Callable[..., CheckInIngestor]:
    """Ingestor factory with fake clocks and no real sleeping."""

    def _make(**overrides: Any) -> CheckInIngestor:
        limiter = overrides.pop(
            "rate_limiter",
            KeyedSlidingWindowLimiter(max_requests=6, window_seconds=60.0, clock=monotonic),
        )
        return CheckInIngestor(
            overrides.pop("store", store),
            limiter,
            overrides.pop("alert_sink", sink),
            retry_strategy=overrides.pop("retry_strategy", ExponentialBackoff(jitter=False)),
            clock=overrides.pop("clock", clock),
            sleep=overrides.pop("sleep", lambda _s: None),
        )

    return _make


@pytest.fixture
def make_detector(
    store: MonitorStore,
    sink: InMemoryAlertSink,
    clock: FakeClock,
) -> Callable[..., SweepDetector]:
    def _make(**overrides: Any) -> SweepDetector:
        return SweepDetector(
            overrides.pop("store", store),
            overrides.pop("alert_sink", sink),
            clock=overrides.pop("clock", clock),
            sleep=overrides.pop("sleep", lambda _s: None),
            **overrides,
        )

    return _make
