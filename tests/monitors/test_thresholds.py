"""Tests for cronspine.monitors.thresholds: failure/recovery hysteresis."""

from __future__ import annotations

from dataclasses import replace

import pytest

from cronspine.monitors.models import CrontabSchedule, Monitor, MonitorStatus, RunStatus, Transition
from cronspine.monitors.thresholds import apply_outcome, apply_outcomes
from tests._support.clock import utc

T = utc(2026, 1, 1, 2, 0)


@pytest.fixture
def monitor() -> Monitor:
    return Monitor(
        slug="nightly-report",
        environment="production",
        schedule=CrontabSchedule("0 2 * * *"),
        anchor_at=T,
        created_at=T,
        updated_at=T,
        failure_threshold=2,
        recovery_threshold=1,
    )


class TestHysteresis:
    def test_single_error_does_not_degrade(self, monitor):
        result = apply_outcome(monitor, RunStatus.ERROR, T)
        assert result.transition is None
        assert result.monitor.status is MonitorStatus.UP
        assert result.monitor.consecutive_failures == 1

    def test_error_then_ok_does_not_degrade(self, monitor):
        first = apply_outcome(monitor, RunStatus.ERROR, T).monitor
        second = apply_outcome(first, RunStatus.OK, T)
        assert second.transition is None
        assert second.monitor.status is MonitorStatus.UP
        assert second.monitor.consecutive_failures == 0
        assert second.monitor.consecutive_successes == 1

    def test_two_errors_degrade(self, monitor):
        first = apply_outcome(monitor, RunStatus.ERROR, T).monitor
        second = apply_outcome(first, RunStatus.ERROR, T)
        assert second.transition is Transition.DEGRADED
        assert second.monitor.status is MonitorStatus.DOWN
        assert second.consecutive_count == 2

    @pytest.mark.parametrize("outcome", [RunStatus.MISSED, RunStatus.TIMEOUT])
    def test_missed_and_timeout_count_as_failures(self, monitor, outcome):
        down = apply_outcome(apply_outcome(monitor, outcome, T).monitor, outcome, T)
        assert down.transition is Transition.DEGRADED

    def test_degraded_reported_once(self, monitor):
        _, events = apply_outcomes(monitor, [(RunStatus.ERROR, T)] * 5)
        assert [e.transition for e in events] == ["Degraded"]

    def test_recovery(self, monitor):
        down = replace(monitor, status=MonitorStatus.DOWN, consecutive_failures=3)
        result = apply_outcome(down, RunStatus.OK, T)
        assert result.transition is Transition.RECOVERED
        assert result.monitor.status is MonitorStatus.UP
        assert result.monitor.consecutive_failures == 0
        assert result.consecutive_count == 1

    def test_recovery_threshold(self, monitor):
        down = replace(monitor, status=MonitorStatus.DOWN, recovery_threshold=3)
        _, events = apply_outcomes(down, [(RunStatus.OK, T)] * 2)
        assert events == []
        updated, events = apply_outcomes(down, [(RunStatus.OK, T)] * 3)
        assert updated.status is MonitorStatus.UP
        assert [e.consecutive_count for e in events] == [3]

    def test_ok_while_up_is_quiet(self, monitor):
        result = apply_outcome(monitor, RunStatus.OK, T)
        assert result.transition is None
        assert result.event(T) is None


class TestEvents:
    def test_event_payload(self, monitor):
        first = apply_outcome(monitor, RunStatus.ERROR, T).monitor
        result = apply_outcome(first, RunStatus.ERROR, utc(2026, 1, 2, 2, 0))
        event = result.event(utc(2026, 1, 2, 2, 0))
        assert event.to_dict() == {
            "monitor_slug": "nightly-report",
            "environment": "production",
            "transition": "Degraded",
            "consecutive_count": 2,
            "timestamp": "2026-01-02T02:00:00+00:00",
        }

    def test_is_pure(self, monitor):
        apply_outcome(monitor, RunStatus.ERROR, utc(2026, 1, 9))
        assert monitor.consecutive_failures == 0
        assert monitor.updated_at == T
