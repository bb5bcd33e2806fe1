"""
CLI: ``cronspine monitors``: inspect monitors, runs and check-ins.
"""

from __future__ import annotations

import typer

from cronspine.api.schemas.monitors import MonitorSchema, RunSchema
from cronspine.cli.utils import fail, open_store, output_dict, output_rows
from cronspine.core.errors import CronSpineError

app = typer.Typer(no_args_is_help=True)

_SUMMARY = (
    "slug",
    "environment",
    "schedule_type",
    "schedule_value",
    "status",
    "consecutive_failures",
    "consecutive_successes",
    "last_expected_run_at",
)


@app.command("list")
def list_monitors(
    environment: str | None = typer.Option(None, "--environment", "-e"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List monitors with status and counters."""
    try:
        with open_store(database) as store:
            monitors = store.list_monitors(environment)
    except CronSpineError as e:
        raise fail(e) from e

    rows = []
    for monitor in monitors:
        full = MonitorSchema.from_monitor(monitor).model_dump()
        rows.append({k: full[k] for k in _SUMMARY})
    output_rows(rows, as_json=json_out, title="Monitors")


@app.command("show")
def show_monitor(
    slug: str = typer.Argument(..., help="Monitor slug"),
    environment: str = typer.Option("production", "--environment", "-e"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one monitor's full record."""
    try:
        with open_store(database) as store:
            monitor = store.require(slug, environment)
    except CronSpineError as e:
        raise fail(e) from e
    output_dict(MonitorSchema.from_monitor(monitor), as_json=json_out, title=f"Monitor: {slug}")


@app.command("runs")
def list_runs(
    slug: str = typer.Argument(..., help="Monitor slug"),
    environment: str = typer.Option("production", "--environment", "-e"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Most recent runs of a monitor, newest first."""
    try:
        with open_store(database) as store:
            store.require(slug, environment)
            runs = store.list_runs(slug, environment, limit=limit)
    except CronSpineError as e:
        raise fail(e) from e

    rows = [RunSchema.from_run(r).model_dump() for r in runs]
    output_rows(rows, as_json=json_out, title=f"Runs: {slug} ({environment})")


@app.command("checkins")
def list_checkins(
    slug: str = typer.Argument(..., help="Monitor slug"),
    environment: str = typer.Option("production", "--environment", "-e"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Audit log of accepted check-ins, newest first."""
    try:
        with open_store(database) as store:
            records = store.list_checkins(slug, environment, limit=limit)
    except CronSpineError as e:
        raise fail(e) from e

    rows = [
        {
            "received_at": r.received_at,
            "status": r.checkin.status,
            "check_in_id": r.checkin.check_in_id,
            "outcome": r.outcome,
            "run_expected_at": r.run_expected_at,
        }
        for r in records
    ]
    output_rows(rows, as_json=json_out, title=f"Check-ins: {slug} ({environment})")
