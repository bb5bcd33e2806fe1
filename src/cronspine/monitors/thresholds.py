"""Threshold engine - hysteresis between run outcomes and monitor status.

A single failed run does not page anyone unless ``failure_threshold`` is 1,
and a single success after an outage does not clear it unless
``recovery_threshold`` is 1. Counters move on every terminal outcome; the
monitor status only flips when a counter reaches its threshold, and the
flip is reported exactly once.

``apply_outcome`` is pure: it returns a new ``Monitor`` and never touches
the store. Persisting the result is the caller's CAS.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from cronspine.core.events import TransitionEvent
from cronspine.monitors.models import Monitor, MonitorStatus, RunStatus, Transition


@dataclass(frozen=True)
class ThresholdResult:
    """New monitor state plus the transition it triggered, if any."""

    monitor: Monitor
    transition: Transition | None = None

    @property
    def consecutive_count(self) -> int:
        if self.transition is Transition.RECOVERED:
            return self.monitor.consecutive_successes
        return self.monitor.consecutive_failures

    def event(self, at: datetime) -> TransitionEvent | None:
        """The alert payload for this result, or None when nothing flipped."""
        if self.transition is None:
            return None
        return TransitionEvent(
            monitor_slug=self.monitor.slug,
            environment=self.monitor.environment,
            transition=self.transition.value,
            consecutive_count=self.consecutive_count,
            timestamp=at,
        )


def apply_outcome(monitor: Monitor, outcome: RunStatus, at: datetime) -> ThresholdResult:
    """Advance counters for one terminal run outcome.

    Args:
        monitor: Current monitor state
        outcome: Terminal status of the run that just closed
        at: When the outcome happened (becomes ``updated_at``)

    Returns:
        ThresholdResult with the updated monitor and an optional transition
    """
    if outcome is RunStatus.OK:
        successes = monitor.consecutive_successes + 1
        updated = replace(
            monitor,
            consecutive_successes=successes,
            consecutive_failures=0,
            updated_at=at,
        )
        if monitor.status is MonitorStatus.DOWN and successes >= monitor.recovery_threshold:
            return ThresholdResult(replace(updated, status=MonitorStatus.UP), Transition.RECOVERED)
        return ThresholdResult(updated)

    failures = monitor.consecutive_failures + 1
    updated = replace(
        monitor,
        consecutive_failures=failures,
        consecutive_successes=0,
        updated_at=at,
    )
    if monitor.status is MonitorStatus.UP and failures >= monitor.failure_threshold:
        return ThresholdResult(replace(updated, status=MonitorStatus.DOWN), Transition.DEGRADED)
    return ThresholdResult(updated)


def apply_outcomes(
    monitor: Monitor,
    outcomes: list[tuple[RunStatus, datetime]],
) -> tuple[Monitor, list[TransitionEvent]]:
    """Fold several outcomes in order (a sweep pass can close many runs)."""
    events: list[TransitionEvent] = []
    for outcome, at in outcomes:
        result = apply_outcome(monitor, outcome, at)
        monitor = result.monitor
        event = result.event(at)
        if event is not None:
            events.append(event)
    return monitor, events


__all__ = ["ThresholdResult", "apply_outcome", "apply_outcomes"]
