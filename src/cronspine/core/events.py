"""Transition events and alert sinks.

Why This Module Exists
----------------------
Only two monitor-level transitions are alert-worthy: ``Degraded`` (a
monitor crossed its failure threshold) and ``Recovered`` (it crossed its
recovery threshold back). Delivering those to email, chat or paging
systems is someone else's job; the check-in service hands each committed
transition to an ``AlertSink`` and moves on.

Sinks are called after the store commit. A sink that raises cannot undo
the transition, so callers log the failure and carry on (see
``deliver``).

Usage::

    from cronspine.core.events import InMemoryAlertSink, TransitionEvent

    sink = InMemoryAlertSink()
    sink.emit(event)
    assert sink.events[-1].transition == "Degraded"
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from cronspine.core.logging import get_logger

__all__ = [
    "TransitionEvent",
    "AlertSink",
    "LoggingAlertSink",
    "InMemoryAlertSink",
    "deliver",
]

logger = get_logger(__name__)


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionEvent:
    """Immutable record of a monitor changing alert status.

    Attributes:
        monitor_slug: Monitor slug
        environment: Monitor environment
        transition: ``"Degraded"`` or ``"Recovered"``
        consecutive_count: Failures (Degraded) or successes (Recovered)
            that triggered the transition
        timestamp: When the triggering outcome happened (UTC)
    """

    monitor_slug: str
    environment: str
    transition: str
    consecutive_count: int
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        """Wire shape handed to alerting collaborators."""
        return {
            "monitor_slug": self.monitor_slug,
            "environment": self.environment,
            "transition": self.transition,
            "consecutive_count": self.consecutive_count,
            "timestamp": self.timestamp.isoformat(),
        }


# ── AlertSink Protocol ───────────────────────────────────────────────────


@runtime_checkable
class AlertSink(Protocol):
    """Receives committed Degraded/Recovered transitions."""

    def emit(self, event: TransitionEvent) -> None:
        """Deliver one transition. May raise; callers log and continue."""
        ...


class LoggingAlertSink:
    """Default sink: writes each transition as a structured warning."""

    def emit(self, event: TransitionEvent) -> None:
        logger.warning("monitor_transition", **event.to_dict())


@dataclass
class InMemoryAlertSink:
    """Collects transitions in a list. Suitable for tests and embedding."""

    events: list[TransitionEvent] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def emit(self, event: TransitionEvent) -> None:
        with self._lock:
            self.events.append(event)

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


def deliver(sink: AlertSink, event: TransitionEvent) -> bool:
    """Hand *event* to *sink*, logging (not raising) delivery failures.

    Returns:
        True if the sink accepted the event
    """
    try:
        sink.emit(event)
    except Exception as e:
        logger.error(
            "alert_sink_failed",
            sink=type(sink).__name__,
            error=str(e),
            **event.to_dict(),
        )
        return False
    return True
