"""Tests for the cronspine CLI (db, monitors, sweep, --version)."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from cronspine.cli.app import app
from cronspine.core.connection import create_connection
from cronspine.monitors.lock_manager import LockManager
from cronspine.monitors.models import CheckIn, CheckInStatus, CrontabSchedule, MonitorConfig
from cronspine.monitors.store import MonitorStore
from tests._support.clock import utc

runner = CliRunner()


@pytest.fixture
def database(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def seeded(database, make_ingestor) -> str:
    """One nightly monitor created at 01:00 with a finished run on Jan 1."""
    conn, _info = create_connection(database, init_schema=True)
    try:
        store = MonitorStore(conn)
        store.upsert(
            "nightly-report",
            "production",
            MonitorConfig(schedule=CrontabSchedule("0 2 * * *"), checkin_margin=10),
            now=utc(2026, 1, 1, 1, 0),
        )
        ingestor = make_ingestor(store=store)
        ingestor.ingest(CheckIn("nightly-report", "production", CheckInStatus.OK, utc(2026, 1, 1, 2, 4), "run-1"))
    finally:
        conn.close()
    return database


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("cronspine ")

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for group in ("db", "monitors", "serve", "sweep"):
            assert group in result.output


class TestDb:
    def test_init(self, database):
        result = runner.invoke(app, ["db", "init", "--database", database])
        assert result.exit_code == 0
        assert "Schema ready" in result.output

    def test_tables(self, seeded):
        result = runner.invoke(app, ["db", "tables", "--database", seeded, "--json"])
        assert result.exit_code == 0
        assert '"monitors": 1' in result.output
        assert '"monitor_runs": 1' in result.output


class TestMonitors:
    def test_list(self, seeded):
        result = runner.invoke(app, ["monitors", "list", "--database", seeded, "--json"])
        assert result.exit_code == 0
        assert '"slug": "nightly-report"' in result.output
        assert '"status": "UP"' in result.output

    def test_list_empty(self, database):
        result = runner.invoke(app, ["monitors", "list", "--database", database])
        assert result.exit_code == 0
        assert "No items" in result.output

    def test_show(self, seeded):
        result = runner.invoke(app, ["monitors", "show", "nightly-report", "--database", seeded, "--json"])
        assert result.exit_code == 0
        assert '"checkin_margin": 10' in result.output

    def test_show_unknown(self, seeded):
        result = runner.invoke(app, ["monitors", "show", "ghost", "--database", seeded])
        assert result.exit_code == 1

    def test_runs(self, seeded):
        result = runner.invoke(app, ["monitors", "runs", "nightly-report", "--database", seeded, "--json"])
        assert result.exit_code == 0
        assert '"run_id": "run-1"' in result.output
        assert '"status": "OK"' in result.output

    def test_checkins(self, seeded):
        result = runner.invoke(app, ["monitors", "checkins", "nightly-report", "--database", seeded, "--json"])
        assert result.exit_code == 0
        assert '"outcome": "heartbeat"' in result.output


class TestSweep:
    def test_once_marks_missed(self, seeded):
        result = runner.invoke(
            app, ["sweep", "once", "--now", "2026-01-02T02:11:00", "--database", seeded, "--json"]
        )
        assert result.exit_code == 0
        assert '"missed": 1' in result.output

        runs = runner.invoke(app, ["monitors", "runs", "nightly-report", "--database", seeded, "--json"])
        assert '"status": "MISSED"' in runs.output

    def test_once_inside_margin(self, seeded):
        result = runner.invoke(
            app, ["sweep", "once", "--now", "2026-01-02T02:10:00+00:00", "--database", seeded, "--json"]
        )
        assert result.exit_code == 0
        assert '"missed": 0' in result.output

    def test_once_skipped_when_locked(self, seeded):
        conn, _info = create_connection(seeded)
        try:
            LockManager(conn, instance_id="other").acquire("sweep:0", ttl_seconds=120)
            result = runner.invoke(app, ["sweep", "once", "--database", seeded])
        finally:
            conn.close()
        assert result.exit_code == 0
        assert "Skipped" in result.output

    def test_bad_now(self, seeded):
        result = runner.invoke(app, ["sweep", "once", "--now", "yesterday", "--database", seeded])
        assert result.exit_code == 2
