"""Tests for cronspine.monitors.schedule: expected run times."""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from cronspine.core.errors import ValidationError
from cronspine.monitors.models import CrontabSchedule, IntervalSchedule, IntervalUnit, WindowState
from cronspine.monitors.schedule import (
    in_window,
    interval_occurrence,
    iter_expected,
    nearest_expected,
    next_expected,
    previous_expected,
    resolve_local,
    schedule_from_parts,
    validate_schedule,
)
from tests._support.clock import utc

NEW_YORK = ZoneInfo("America/New_York")


# ── Crontab ──────────────────────────────────────────────────────────────


class TestCrontabNext:
    def test_daily_utc(self):
        schedule = CrontabSchedule("0 2 * * *")
        assert next_expected(schedule, utc(2026, 1, 1, 1, 0)) == utc(2026, 1, 1, 2, 0)

    def test_strictly_after(self):
        schedule = CrontabSchedule("0 2 * * *")
        assert next_expected(schedule, utc(2026, 1, 1, 2, 0)) == utc(2026, 1, 2, 2, 0)

    def test_hourly(self):
        schedule = CrontabSchedule("0 * * * *")
        assert next_expected(schedule, utc(2026, 1, 1, 1, 30)) == utc(2026, 1, 1, 2, 0)

    def test_local_timezone(self):
        """02:00 in New York during winter is 07:00 UTC."""
        schedule = CrontabSchedule("0 2 * * *", timezone="America/New_York")
        assert next_expected(schedule, utc(2026, 1, 1, 0, 0)) == utc(2026, 1, 1, 7, 0)

    def test_result_is_utc(self):
        schedule = CrontabSchedule("0 2 * * *", timezone="America/New_York")
        result = next_expected(schedule, utc(2026, 1, 1, 0, 0))
        assert result.utcoffset() == timedelta(0)

    def test_naive_after_rejected(self):
        with pytest.raises(ValueError):
            next_expected(CrontabSchedule("0 2 * * *"), datetime(2026, 1, 1))


class TestCrontabDST:
    def test_gap_time_is_skipped(self):
        """02:30 does not exist on 2024-03-10 in New York; next is the 11th."""
        schedule = CrontabSchedule("30 2 * * *", timezone="America/New_York")
        after = utc(2024, 3, 10, 5, 0)  # 00:00 EST
        assert next_expected(schedule, after) == utc(2024, 3, 11, 6, 30)

    def test_overlap_time_fires_twice(self):
        """01:30 happens twice on 2024-11-03 in New York (EDT then EST)."""
        schedule = CrontabSchedule("30 1 * * *", timezone="America/New_York")
        first = next_expected(schedule, utc(2024, 11, 3, 4, 0))
        second = next_expected(schedule, first)
        assert first == utc(2024, 11, 3, 5, 30)
        assert second == utc(2024, 11, 3, 6, 30)
        assert next_expected(schedule, second) == utc(2024, 11, 4, 6, 30)

    def test_previous_across_gap(self):
        schedule = CrontabSchedule("30 2 * * *", timezone="America/New_York")
        assert previous_expected(schedule, utc(2024, 3, 11, 0, 0)) == utc(2024, 3, 9, 7, 30)

    def test_resolve_local_gap_is_empty(self):
        assert resolve_local(datetime(2024, 3, 10, 2, 30), NEW_YORK) == []

    def test_resolve_local_overlap_has_two(self):
        assert resolve_local(datetime(2024, 11, 3, 1, 30), NEW_YORK) == [
            utc(2024, 11, 3, 5, 30),
            utc(2024, 11, 3, 6, 30),
        ]

    def test_resolve_local_regular_has_one(self):
        assert resolve_local(datetime(2024, 6, 1, 12, 0), NEW_YORK) == [utc(2024, 6, 1, 16, 0)]


class TestCrontabPrevious:
    def test_at_or_before(self):
        schedule = CrontabSchedule("0 2 * * *")
        assert previous_expected(schedule, utc(2026, 1, 1, 2, 15)) == utc(2026, 1, 1, 2, 0)
        assert previous_expected(schedule, utc(2026, 1, 1, 2, 0)) == utc(2026, 1, 1, 2, 0)

    def test_previous_day(self):
        schedule = CrontabSchedule("0 2 * * *")
        assert previous_expected(schedule, utc(2026, 1, 2, 1, 59)) == utc(2026, 1, 1, 2, 0)


class TestNearestExpected:
    def test_late_start_maps_back(self):
        schedule = CrontabSchedule("0 2 * * *")
        assert nearest_expected(schedule, utc(2026, 1, 1, 2, 15)) == utc(2026, 1, 1, 2, 0)

    def test_early_start_maps_forward(self):
        schedule = CrontabSchedule("0 * * * *")
        assert nearest_expected(schedule, utc(2026, 1, 1, 1, 58)) == utc(2026, 1, 1, 2, 0)

    def test_tie_goes_to_earlier(self):
        schedule = CrontabSchedule("0 * * * *")
        assert nearest_expected(schedule, utc(2026, 1, 1, 1, 30)) == utc(2026, 1, 1, 1, 0)


# ── Interval ─────────────────────────────────────────────────────────────


class TestIntervalDriftFree:
    T0 = utc(2026, 1, 1, 0, 0, 0)

    def schedule(self) -> IntervalSchedule:
        return IntervalSchedule(5, IntervalUnit.MINUTE, anchor=self.T0)

    @pytest.mark.parametrize("n", [0, 1, 2, 7, 288, 10_000])
    def test_nth_occurrence(self, n):
        assert interval_occurrence(self.schedule(), n) == self.T0 + timedelta(minutes=5 * n)

    def test_next_ignores_lateness(self):
        """However late 'now' is inside a slot, the next run stays on the grid."""
        schedule = self.schedule()
        for late_by in (1, 3, 4):
            after = self.T0 + timedelta(minutes=35 + late_by)
            assert next_expected(schedule, after) == self.T0 + timedelta(minutes=40)

    def test_walk_stays_on_grid(self):
        schedule = self.schedule()
        occurrences = list(iter_expected(schedule, self.T0, self.T0 + timedelta(hours=1)))
        assert len(occurrences) == 12
        assert occurrences == [self.T0 + timedelta(minutes=5 * n) for n in range(1, 13)]

    def test_before_anchor(self):
        schedule = self.schedule()
        assert previous_expected(schedule, self.T0 - timedelta(minutes=1)) is None
        assert next_expected(schedule, self.T0 - timedelta(minutes=1)) == self.T0

    def test_unbound_anchor_rejected(self):
        with pytest.raises(ValueError):
            next_expected(IntervalSchedule(5, IntervalUnit.MINUTE), self.T0)


class TestIntervalCalendar:
    def test_month_counts_from_anchor(self):
        """Month steps are taken from the anchor, so the 31st is not lost after February."""
        schedule = IntervalSchedule(1, IntervalUnit.MONTH, anchor=utc(2024, 1, 31, 0, 0))
        assert interval_occurrence(schedule, 1) == utc(2024, 2, 29, 0, 0)
        assert interval_occurrence(schedule, 2) == utc(2024, 3, 31, 0, 0)

    def test_day_keeps_local_wall_time_across_dst(self):
        schedule = IntervalSchedule(
            1, IntervalUnit.DAY, timezone="America/New_York", anchor=utc(2024, 3, 9, 17, 0)
        )
        # 12:00 EST, then 12:00 EDT
        assert interval_occurrence(schedule, 1) == utc(2024, 3, 10, 16, 0)

    def test_next_for_weeks(self):
        schedule = IntervalSchedule(2, IntervalUnit.WEEK, anchor=utc(2026, 1, 1, 9, 0))
        assert next_expected(schedule, utc(2026, 1, 10, 0, 0)) == utc(2026, 1, 15, 9, 0)
        assert previous_expected(schedule, utc(2026, 1, 10, 0, 0)) == utc(2026, 1, 1, 9, 0)


# ── Window ───────────────────────────────────────────────────────────────


class TestInWindow:
    EXPECTED = utc(2026, 1, 1, 2, 0)
    SCHEDULE = CrontabSchedule("0 2 * * *")

    def test_on_time(self):
        assert in_window(self.SCHEDULE, self.EXPECTED, 10, self.EXPECTED) is WindowState.ON_TIME

    def test_late_within_margin(self):
        now = self.EXPECTED + timedelta(minutes=10)
        assert in_window(self.SCHEDULE, self.EXPECTED, 10, now) is WindowState.LATE

    def test_missed_after_margin(self):
        now = self.EXPECTED + timedelta(minutes=11)
        assert in_window(self.SCHEDULE, self.EXPECTED, 10, now) is WindowState.MISSED

    def test_zero_margin(self):
        now = self.EXPECTED + timedelta(seconds=1)
        assert in_window(self.SCHEDULE, self.EXPECTED, 0, now) is WindowState.MISSED


# ── Validation ───────────────────────────────────────────────────────────


class TestValidateSchedule:
    def test_valid_crontab(self):
        validate_schedule(CrontabSchedule("*/15 9-17 * * 1-5", timezone="Europe/Berlin"))

    @pytest.mark.parametrize("expr", ["not a cron", "0 2 * *", "61 * * * *", "0 2 * * * *"])
    def test_invalid_crontab(self, expr):
        with pytest.raises(ValidationError) as exc_info:
            validate_schedule(CrontabSchedule(expr))
        assert exc_info.value.field_name == "schedule.value"

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_schedule(CrontabSchedule("0 2 * * *", timezone="Mars/Olympus_Mons"))
        assert exc_info.value.field_name == "timezone"

    def test_non_positive_interval(self):
        with pytest.raises(ValidationError):
            validate_schedule(IntervalSchedule(0, IntervalUnit.MINUTE))


class TestScheduleFromParts:
    def test_crontab(self):
        schedule = schedule_from_parts("crontab", " 0 * * * * ")
        assert schedule == CrontabSchedule("0 * * * *")

    def test_interval(self):
        schedule = schedule_from_parts("interval", "5", "minute", "UTC")
        assert schedule == IntervalSchedule(5, IntervalUnit.MINUTE)

    def test_unknown_unit(self):
        with pytest.raises(ValidationError):
            schedule_from_parts("interval", 5, "fortnight")

    def test_non_integer_value(self):
        with pytest.raises(ValidationError):
            schedule_from_parts("interval", "five", "minute")

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            schedule_from_parts("solar", "noon")
