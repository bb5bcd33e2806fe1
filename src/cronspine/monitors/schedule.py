"""Schedule evaluation - expected run times for crontab and interval schedules.

Manifesto:
    The ingestor maps a check-in onto an expected occurrence and the sweep
    detector walks the same timeline looking for gaps. Both must compute
    exactly the same instants, so everything here is a pure function of
    ``(schedule, time)``: no clocks, no I/O, no caches that change answers.

Crontab schedules are evaluated on the local wall clock of the monitor's
timezone with croniter, then resolved to UTC:

- a wall time inside a DST gap does not exist and is not generated
- a wall time inside a DST overlap exists twice and yields both instants

Interval schedules count from the monitor's anchor: the Nth expected run is
``anchor + N * interval`` (N = 0 is the anchor itself), so a late check-in
never shifts later occurrences. Minute and hour intervals use absolute UTC
arithmetic; day, week, month and year intervals step the local wall clock
with ``dateutil.relativedelta``.

Tags:
    cronspine, schedule, croniter, timezone, dst, interval

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadCronError, CroniterBadDateError, croniter
from dateutil.relativedelta import relativedelta

from cronspine.core.errors import ValidationError
from cronspine.monitors.models import (
    CrontabSchedule,
    IntervalSchedule,
    IntervalUnit,
    Schedule,
    WindowState,
)

# Widest UTC offset change around a DST transition worth searching across
_DST_SLACK = timedelta(hours=2)

# Upper bound on wall-clock candidates examined per lookup
_MAX_CANDIDATES = 5000

_ABSOLUTE_UNITS = {
    IntervalUnit.MINUTE: timedelta(minutes=1),
    IntervalUnit.HOUR: timedelta(hours=1),
}

# Rough unit lengths, only used to jump close to the answer before stepping
_APPROX_SECONDS = {
    IntervalUnit.DAY: 86_400,
    IntervalUnit.WEEK: 604_800,
    IntervalUnit.MONTH: 2_629_746,
    IntervalUnit.YEAR: 31_556_952,
}


@lru_cache(maxsize=256)
def get_zone(name: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name or raise ValidationError."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {name!r}", field_name="timezone", cause=e) from e


def _ensure_aware(value: datetime, name: str) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value


# ── Validation ───────────────────────────────────────────────────────────


def schedule_from_parts(
    schedule_type: str,
    value: str | int,
    unit: str | None = None,
    timezone: str = "UTC",
) -> Schedule:
    """Build a schedule from its wire or storage representation."""
    if schedule_type == "crontab":
        return CrontabSchedule(expr=str(value).strip(), timezone=timezone)
    if schedule_type == "interval":
        try:
            interval_unit = IntervalUnit(unit)
        except ValueError as e:
            raise ValidationError(
                f"Unknown interval unit: {unit!r}", field_name="schedule.unit", cause=e
            ) from e
        try:
            count = int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Interval value must be an integer, got {value!r}",
                field_name="schedule.value",
                cause=e,
            ) from e
        return IntervalSchedule(value=count, unit=interval_unit, timezone=timezone)
    raise ValidationError(f"Unknown schedule type: {schedule_type!r}", field_name="schedule.type")


def validate_schedule(schedule: Schedule) -> None:
    """Raise ValidationError unless *schedule* can produce occurrences."""
    get_zone(schedule.timezone)

    if isinstance(schedule, CrontabSchedule):
        fields = schedule.expr.split()
        if len(fields) != 5 or not croniter.is_valid(schedule.expr):
            raise ValidationError(
                f"Invalid crontab expression: {schedule.expr!r}",
                field_name="schedule.value",
            )
        try:
            croniter(schedule.expr, datetime(2000, 1, 1)).get_next(datetime)
        except (CroniterBadCronError, CroniterBadDateError) as e:
            raise ValidationError(
                f"Crontab expression never fires: {schedule.expr!r}",
                field_name="schedule.value",
                cause=e,
            ) from e
        return

    if schedule.value < 1:
        raise ValidationError(
            f"Interval value must be positive, got {schedule.value}",
            field_name="schedule.value",
        )
    if not isinstance(schedule.unit, IntervalUnit):
        raise ValidationError(f"Unknown interval unit: {schedule.unit!r}", field_name="schedule.unit")


# ── Crontab ──────────────────────────────────────────────────────────────


def resolve_local(naive: datetime, tz: ZoneInfo) -> list[datetime]:
    """UTC instants a local wall time maps to.

    Empty inside a DST gap, two instants inside a DST overlap, one otherwise.
    """
    instants: list[datetime] = []
    for fold in (0, 1):
        instant = naive.replace(tzinfo=tz, fold=fold).astimezone(UTC)
        if instant.astimezone(tz).replace(tzinfo=None) != naive:
            continue
        if instant not in instants:
            instants.append(instant)
    return sorted(instants)


def _local(instant: datetime, tz: ZoneInfo) -> datetime:
    return instant.astimezone(tz).replace(tzinfo=None)


def _crontab_next(schedule: CrontabSchedule, after: datetime) -> datetime:
    tz = get_zone(schedule.timezone)
    itr = croniter(schedule.expr, _local(after, tz) - _DST_SLACK)
    best: datetime | None = None
    horizon: datetime | None = None

    for _ in range(_MAX_CANDIDATES):
        naive = itr.get_next(datetime)
        if horizon is not None and naive > horizon:
            return best  # type: ignore[return-value]
        for instant in resolve_local(naive, tz):
            if instant > after and (best is None or instant < best):
                best = instant
                horizon = _local(best, tz) + _DST_SLACK

    if best is not None:
        return best
    raise ValidationError(f"No occurrence found for crontab {schedule.expr!r}")


def _crontab_previous(schedule: CrontabSchedule, at: datetime) -> datetime | None:
    tz = get_zone(schedule.timezone)
    itr = croniter(schedule.expr, _local(at, tz) + _DST_SLACK + timedelta(minutes=1))
    best: datetime | None = None
    horizon: datetime | None = None

    for _ in range(_MAX_CANDIDATES):
        try:
            naive = itr.get_prev(datetime)
        except CroniterBadDateError:
            break
        if horizon is not None and naive < horizon:
            return best
        for instant in resolve_local(naive, tz):
            if instant <= at and (best is None or instant > best):
                best = instant
                horizon = _local(best, tz) - _DST_SLACK

    return best


# ── Interval ─────────────────────────────────────────────────────────────


def _anchor(schedule: IntervalSchedule) -> datetime:
    if schedule.anchor is None:
        raise ValueError("Interval schedule has no anchor bound")
    return schedule.anchor


def interval_occurrence(schedule: IntervalSchedule, n: int) -> datetime:
    """The Nth expected run: ``anchor + n * interval`` (n >= 0)."""
    anchor = _anchor(schedule)
    if schedule.unit in _ABSOLUTE_UNITS:
        return anchor + _ABSOLUTE_UNITS[schedule.unit] * (schedule.value * n)

    tz = get_zone(schedule.timezone)
    step = relativedelta(**{f"{schedule.unit.value}s": schedule.value * n})
    local = _local(anchor, tz) + step
    # Gap times resolve with the pre-transition offset, overlaps to the first instant
    return local.replace(tzinfo=tz).astimezone(UTC)


def _interval_index_at(schedule: IntervalSchedule, at: datetime) -> int | None:
    """Largest n with occurrence(n) <= at, or None when at precedes the anchor."""
    anchor = _anchor(schedule)
    if at < anchor:
        return None

    if schedule.unit in _ABSOLUTE_UNITS:
        return (at - anchor) // (_ABSOLUTE_UNITS[schedule.unit] * schedule.value)

    approx = _APPROX_SECONDS[schedule.unit] * schedule.value
    n = max(0, int((at - anchor).total_seconds() // approx) - 1)
    while interval_occurrence(schedule, n + 1) <= at:
        n += 1
    while n > 0 and interval_occurrence(schedule, n) > at:
        n -= 1
    return n


def _interval_next(schedule: IntervalSchedule, after: datetime) -> datetime:
    n = _interval_index_at(schedule, after)
    return interval_occurrence(schedule, 0 if n is None else n + 1)


def _interval_previous(schedule: IntervalSchedule, at: datetime) -> datetime | None:
    n = _interval_index_at(schedule, at)
    if n is None:
        return None
    return interval_occurrence(schedule, n)


# ── Public API ───────────────────────────────────────────────────────────


def next_expected(schedule: Schedule, after: datetime) -> datetime:
    """First expected occurrence strictly after *after* (UTC)."""
    _ensure_aware(after, "after")
    if isinstance(schedule, CrontabSchedule):
        return _crontab_next(schedule, after)
    return _interval_next(schedule, after)


def previous_expected(schedule: Schedule, at: datetime) -> datetime | None:
    """Last expected occurrence at or before *at*, or None if there is none."""
    _ensure_aware(at, "at")
    if isinstance(schedule, CrontabSchedule):
        return _crontab_previous(schedule, at)
    return _interval_previous(schedule, at)


def nearest_expected(schedule: Schedule, at: datetime) -> datetime:
    """Expected occurrence closest to *at*; ties go to the earlier one."""
    previous = previous_expected(schedule, at)
    upcoming = next_expected(schedule, at)
    if previous is None:
        return upcoming
    if upcoming - at < at - previous:
        return upcoming
    return previous


def iter_expected(schedule: Schedule, after: datetime, until: datetime) -> Iterator[datetime]:
    """Occurrences in ``(after, until]`` in ascending order."""
    current = next_expected(schedule, after)
    while current <= until:
        yield current
        current = next_expected(schedule, current)


def in_window(
    schedule: Schedule,
    expected: datetime,
    margin: int,
    now: datetime,
) -> WindowState:
    """Classify *now* against an expected occurrence and a margin in minutes.

    ``schedule`` is accepted so callers pass the same arguments they use for
    the other evaluator functions; the window only depends on *expected*.
    """
    if now <= expected:
        return WindowState.ON_TIME
    if now <= expected + timedelta(minutes=margin):
        return WindowState.LATE
    return WindowState.MISSED


__all__ = [
    "get_zone",
    "schedule_from_parts",
    "validate_schedule",
    "resolve_local",
    "interval_occurrence",
    "next_expected",
    "previous_expected",
    "nearest_expected",
    "iter_expected",
    "in_window",
]
