"""Deterministic clocks for cronspine tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def utc(*args: int) -> datetime:
    """``utc(2026, 1, 1, 2, 0)`` -> aware UTC datetime."""
    return datetime(*args, tzinfo=UTC)


class FakeClock:
    """Settable UTC clock; call it to read the current time."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    """Settable stand-in for ``time.monotonic``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds
