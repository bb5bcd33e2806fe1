"""Tests for cronspine.monitors.sweep: Missed/Timeout detection and the service."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from cronspine.core.settings import CronSpineSettings
from cronspine.monitors import create_sweeper
from cronspine.monitors.lock_manager import LockManager
from cronspine.monitors.models import (
    CheckIn,
    CheckInOutcome,
    CheckInStatus,
    CrontabSchedule,
    MonitorConfig,
    MonitorStatus,
    RunStatus,
    WindowState,
)
from cronspine.monitors.schedule import in_window
from cronspine.monitors.sweep import shard_of
from tests._support.clock import utc
from tests._support.stores import BrokenRunsStore, RacingStore

SLUG = "nightly-report"
ENV = "production"
CREATED = utc(2026, 1, 1, 1, 0)


@pytest.fixture
def nightly(store, nightly_config):
    return store.upsert(SLUG, ENV, nightly_config, now=CREATED)


def hourly_config(**overrides) -> MonitorConfig:
    return replace(MonitorConfig(schedule=CrontabSchedule("0 * * * *")), **overrides)


class FakeBackend:
    name = "fake"

    def __init__(self) -> None:
        self.callback = None
        self.interval = None
        self.stopped = False

    def start(self, tick_callback, interval_seconds=30.0):
        self.callback = tick_callback
        self.interval = interval_seconds

    def stop(self):
        self.stopped = True

    def health(self):
        return {"healthy": self.callback is not None and not self.stopped, "backend": self.name}


# ── Missed ───────────────────────────────────────────────────────────────


class TestMissed:
    def test_inside_margin_nothing_happens(self, make_detector, store, sink, nightly):
        report = make_detector().sweep(now=utc(2026, 1, 1, 2, 10))

        assert report.missed == 0
        assert store.list_runs(SLUG, ENV) == []
        assert store.require(SLUG, ENV).version == nightly.version
        assert sink.events == []

    def test_past_margin_is_missed(self, make_detector, store, sink, nightly):
        now = utc(2026, 1, 1, 2, 11)
        report = make_detector().sweep(now=now)

        assert report.missed == 1
        [run] = store.list_runs(SLUG, ENV)
        assert run.expected_at == utc(2026, 1, 1, 2, 0)
        assert run.terminal_status is RunStatus.MISSED
        assert run.started_at is None
        assert run.finished_at == now
        assert run.run_id.startswith("missed-")

        monitor = store.require(SLUG, ENV)
        assert monitor.last_expected_run_at == utc(2026, 1, 1, 2, 0)
        assert monitor.status is MonitorStatus.DOWN
        assert [(e.transition, e.timestamp) for e in sink.events] == [("Degraded", now)]

    def test_sweep_is_idempotent(self, make_detector, store, sink, nightly):
        detector = make_detector()
        detector.sweep(now=utc(2026, 1, 1, 2, 11))
        again = detector.sweep(now=utc(2026, 1, 1, 2, 12))

        assert again.missed == 0
        assert len(store.list_runs(SLUG, ENV)) == 1
        assert len(sink.events) == 1

    def test_late_start_after_missed_keeps_missed(self, make_ingestor, make_detector, store, clock, nightly):
        make_detector().sweep(now=utc(2026, 1, 1, 2, 11))
        ingestor = make_ingestor()

        clock.set(utc(2026, 1, 1, 2, 15))
        started = ingestor.ingest(
            CheckIn(SLUG, ENV, CheckInStatus.IN_PROGRESS, utc(2026, 1, 1, 2, 15), "late-1")
        )
        clock.set(utc(2026, 1, 1, 2, 20))
        finished = ingestor.ingest(CheckIn(SLUG, ENV, CheckInStatus.OK, utc(2026, 1, 1, 2, 20), "late-1"))

        assert started.outcome is CheckInOutcome.LATE
        assert finished.outcome is CheckInOutcome.LATE
        [run] = store.list_runs(SLUG, ENV)
        assert run.terminal_status is RunStatus.MISSED
        assert store.require(SLUG, ENV).status is MonitorStatus.DOWN
        assert len(store.list_checkins(SLUG, ENV)) == 2

    def test_occurrence_with_run_is_not_missed(self, make_ingestor, make_detector, store, nightly):
        make_ingestor().ingest(CheckIn(SLUG, ENV, CheckInStatus.IN_PROGRESS, utc(2026, 1, 1, 2, 0), "run-1"))

        report = make_detector().sweep(now=utc(2026, 1, 1, 2, 11))

        assert report.missed == 0
        assert store.require(SLUG, ENV).last_expected_run_at == utc(2026, 1, 1, 2, 0)

    @pytest.mark.parametrize(
        ("seconds_after", "missed"),
        [(0, 0), (1, 1)],
    )
    def test_zero_margin_follows_window(self, make_detector, store, seconds_after, missed):
        store.upsert("tight", ENV, hourly_config(checkin_margin=0), now=CREATED)
        expected = utc(2026, 1, 1, 2, 0)
        now = expected.replace(second=seconds_after)

        report = make_detector().sweep(now=now)

        assert in_window(CrontabSchedule("0 * * * *"), expected, 0, now) is (
            WindowState.MISSED if missed else WindowState.ON_TIME
        )
        assert report.missed == missed


class TestBackfill:
    def test_backfill_is_bounded_per_pass(self, make_detector, store, sink):
        store.upsert("hourly", ENV, hourly_config(), now=CREATED)
        detector = make_detector(backfill_limit=3)
        now = utc(2026, 1, 1, 10, 0)

        first = detector.sweep_monitor(store.require("hourly", ENV), now)
        assert [r.expected_at.hour for r in first.missed] == [2, 3, 4]
        assert first.backlog is True

        second = detector.sweep_monitor(store.require("hourly", ENV), now)
        third = detector.sweep_monitor(store.require("hourly", ENV), now)
        assert [r.expected_at.hour for r in second.missed] == [5, 6, 7]
        assert [r.expected_at.hour for r in third.missed] == [8, 9]
        assert third.backlog is False

        assert len(store.list_runs("hourly", ENV)) == 8
        # already Down after the first pass
        assert [e.transition for e in sink.events] == ["Degraded"]

    def test_schedule_change_does_not_backfill_new_timeline(self, make_detector, store):
        store.upsert("hourly", ENV, hourly_config(), now=CREATED)
        store.upsert("hourly", ENV, hourly_config(schedule=CrontabSchedule("30 * * * *")), now=utc(2026, 1, 1, 9, 0))

        report = make_detector().sweep(now=utc(2026, 1, 1, 9, 40))

        assert [r.expected_at for r in store.list_runs("hourly", ENV)] == [utc(2026, 1, 1, 9, 30)]
        assert report.missed == 1


# ── Timeout ──────────────────────────────────────────────────────────────


class TestTimeout:
    def start(self, make_ingestor, at=utc(2026, 1, 1, 2, 0), check_in_id="run-1"):
        return make_ingestor().ingest(CheckIn(SLUG, ENV, CheckInStatus.IN_PROGRESS, at, check_in_id))

    def test_within_runtime(self, make_ingestor, make_detector, store, nightly):
        self.start(make_ingestor)
        report = make_detector().sweep(now=utc(2026, 1, 1, 2, 30))
        assert report.timed_out == 0
        assert store.latest_open_run(SLUG, ENV).run_id == "run-1"

    def test_past_runtime_times_out(self, make_ingestor, make_detector, store, sink, nightly):
        self.start(make_ingestor)
        now = utc(2026, 1, 1, 2, 31)

        report = make_detector().sweep(now=now)

        assert report.timed_out == 1
        run = store.get_run(SLUG, ENV, utc(2026, 1, 1, 2, 0))
        assert run.terminal_status is RunStatus.TIMEOUT
        assert run.finished_at == now
        assert run.duration_seconds == 31 * 60
        assert [e.transition for e in sink.events] == ["Degraded"]

    def test_ok_after_timeout_is_late(self, make_ingestor, make_detector, store, nightly):
        self.start(make_ingestor)
        make_detector().sweep(now=utc(2026, 1, 1, 2, 31))

        result = make_ingestor().ingest(CheckIn(SLUG, ENV, CheckInStatus.OK, utc(2026, 1, 1, 2, 32), "run-1"))

        assert result.outcome is CheckInOutcome.LATE
        assert store.get_run(SLUG, ENV, utc(2026, 1, 1, 2, 0)).terminal_status is RunStatus.TIMEOUT

    def test_zero_runtime_is_unbounded(self, make_ingestor, make_detector, store, nightly_config):
        store.upsert(SLUG, ENV, replace(nightly_config, max_runtime=0), now=CREATED)
        self.start(make_ingestor)

        report = make_detector().sweep(now=utc(2026, 1, 3, 0, 0))

        assert report.timed_out == 0
        assert store.latest_open_run(SLUG, ENV).run_id == "run-1"

    def test_runtime_is_snapshotted_on_run(self, make_ingestor, make_detector, store, nightly_config, nightly):
        self.start(make_ingestor)
        store.upsert(SLUG, ENV, replace(nightly_config, max_runtime=5), now=utc(2026, 1, 1, 2, 1))

        report = make_detector().sweep(now=utc(2026, 1, 1, 2, 10))

        assert report.timed_out == 0
        assert store.get_run(SLUG, ENV, utc(2026, 1, 1, 2, 0)).max_runtime == 30


# ── Contention, sharding, failures ───────────────────────────────────────


class TestContention:
    def test_lost_cas_is_replanned(self, make_detector, conn, sink, nightly):
        racing = RacingStore(conn, races=1)
        result = make_detector(store=racing).sweep_monitor(racing.require(SLUG, ENV), utc(2026, 1, 1, 2, 11))

        assert result.attempts == 2
        assert len(result.missed) == 1
        assert len(racing.list_runs(SLUG, ENV)) == 1
        assert len(sink.events) == 1

    def test_failing_monitor_does_not_stop_pass(self, make_detector, conn, nightly_config):
        broken = BrokenRunsStore(conn, broken={"broken"})
        broken.upsert("broken", ENV, nightly_config, now=CREATED)
        broken.upsert(SLUG, ENV, nightly_config, now=CREATED)

        report = make_detector(store=broken).sweep(now=utc(2026, 1, 1, 2, 11))

        assert report.failed == 1
        assert report.errors[0]["slug"] == "broken"
        assert report.errors[0]["error_type"] == "StoreUnavailableError"
        assert report.missed == 1


class TestSharding:
    def test_shard_of_is_stable(self):
        assert shard_of(SLUG, ENV, 4) == shard_of(SLUG, ENV, 4)
        assert 0 <= shard_of(SLUG, ENV, 4) < 4
        assert shard_of(SLUG, ENV, 1) == 0

    def test_shards_partition_monitors(self, make_detector, store, nightly_config):
        slugs = [f"job-{i}" for i in range(8)]
        for slug in slugs:
            store.upsert(slug, ENV, nightly_config, now=CREATED)

        now = utc(2026, 1, 1, 1, 30)
        scanned = [make_detector(shard_count=3, shard_index=i).sweep(now=now).monitors_scanned for i in range(3)]
        assert sum(scanned) == len(slugs)

    def test_rejects_bad_shard_index(self, make_detector):
        with pytest.raises(ValueError):
            make_detector(shard_count=2, shard_index=2)


# ── Service ──────────────────────────────────────────────────────────────


class TestSweepService:
    def make_service(self, conn, sink, backend=None):
        return create_sweeper(conn, CronSpineSettings(), alert_sink=sink, backend=backend, instance_id="sweeper-a")

    def test_run_once(self, conn, sink, nightly):
        service = self.make_service(conn, sink)

        report = service.run_once(now=utc(2026, 1, 1, 2, 11))

        assert report.missed == 1
        stats = service.get_stats()
        assert stats.passes_completed == 1
        assert stats.runs_missed == 1
        assert stats.transitions_emitted == 1
        assert LockManager(conn).is_locked(service.lock_id) is False

    def test_skips_when_shard_locked(self, conn, sink, nightly):
        other = LockManager(conn, instance_id="sweeper-b")
        service = self.make_service(conn, sink)
        assert other.acquire(service.lock_id, ttl_seconds=120)

        assert service.run_once(now=utc(2026, 1, 1, 2, 11)) is None
        assert service.get_stats().passes_skipped == 1

        other.release(service.lock_id)
        assert service.run_once(now=utc(2026, 1, 1, 2, 11)).missed == 1

    def test_start_stop_with_backend(self, conn, sink):
        backend = FakeBackend()
        service = self.make_service(conn, sink, backend=backend)

        service.start()
        assert service.is_running
        assert backend.interval == 30.0
        assert service.health().healthy is True

        asyncio.run(backend.callback())
        assert service.get_stats().tick_count == 1

        service.stop()
        assert backend.stopped
        assert service.is_running is False
        assert service.health().to_dict()["healthy"] is False

    def test_reset_stats(self, conn, sink):
        service = self.make_service(conn, sink)
        service.run_once(now=utc(2026, 1, 1, 2, 11))
        service.reset_stats()
        assert service.get_stats().tick_count == 0
