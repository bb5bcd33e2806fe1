"""Sweep timing backends.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SWEEP BACKEND PROTOCOL                                                       │
│                                                                               │
│  Backends control WHEN a sweep pass happens; SweepService controls WHAT      │
│  a pass does (lock, scan shard, mark Missed/Timeout).                        │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌─────────────────┐                 │
│   │  Thread Backend │ ─────────────────► │  SweepService   │                 │
│   │  (default)      │                    │  - Acquire lock │                 │
│   └─────────────────┘                    │  - Sweep shard  │                 │
│                                          │  - Release lock │                 │
│                                          └─────────────────┘                 │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SweepBackend(Protocol):
    """Protocol for pluggable sweep timing backends.

    A backend only calls the tick callback at the configured interval. All
    detection logic lives in SweepService.

    Example (custom backend):
        >>> class MyBackend:
        ...     name = "custom"
        ...
        ...     def start(self, tick_callback, interval_seconds=30.0):
        ...         my_scheduler.add_job(lambda: asyncio.run(tick_callback()), interval_seconds)
        ...
        ...     def stop(self):
        ...         my_scheduler.stop()
        ...
        ...     def health(self) -> dict:
        ...         return {"healthy": True, "backend": "custom"}
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 30.0) -> None:
        """Start calling *tick_callback* every *interval_seconds*."""
        ...

    def stop(self) -> None:
        """Stop gracefully, waiting for the current tick to finish."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count``, ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


class ThreadSweepBackend:
    """Threading-based sweep backend (the default).

    A daemon thread waits on a stop event between ticks and runs each async
    tick with ``asyncio.run``, so a slow pass delays the next one instead of
    overlapping it.

    Example:
        >>> backend = ThreadSweepBackend()
        >>> backend.start(service.tick, interval_seconds=30.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, join_timeout: float = 5.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 30.0
        self._join_timeout = join_timeout
        self._started = False
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float = 30.0) -> None:
        if self._started:
            logger.warning("ThreadSweepBackend already started")
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info(f"ThreadSweepBackend started (interval={interval_seconds}s)")
            while not self._stop_event.wait(interval_seconds):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = datetime.now(UTC)

                try:
                    asyncio.run(tick_callback())
                except Exception as e:
                    logger.exception(f"Sweep tick failed: {e}")

            logger.info("ThreadSweepBackend stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="cronspine-sweeper")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("Sweep thread did not stop cleanly")

        self._started = False
        logger.info("ThreadSweepBackend shutdown complete")

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()
