"""
CLI: ``cronspine sweep``: run the Missed/Timeout detector.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime

import typer

from cronspine.cli.utils import console, err_console, load_settings, output_dict
from cronspine.core.connection import create_connection
from cronspine.core.logging import configure_logging
from cronspine.monitors import create_sweeper

app = typer.Typer(no_args_is_help=True)


def _parse_now(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"not an ISO-8601 timestamp: {value!r}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@app.command("once")
def once(
    now: str | None = typer.Option(None, "--now", help="Evaluate as of this ISO-8601 time (default: now)"),
    shard_index: int | None = typer.Option(None, "--shard", help="Shard to sweep"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a single sweep pass and print its report."""
    at = _parse_now(now)
    settings = load_settings(database)
    if shard_index is not None:
        settings = settings.model_copy(update={"shard_index": shard_index})

    conn, _info = create_connection(
        settings.database_url,
        init_schema=True,
        busy_timeout=settings.store_busy_timeout_seconds,
    )
    try:
        service = create_sweeper(conn, settings)
        report = service.run_once(now=at)
    finally:
        conn.close()

    stats = service.get_stats()
    if report is None:
        if stats.passes_skipped:
            console.print(f"[yellow]Skipped[/yellow]: {service.lock_id} is held by another sweeper")
            return
        err_console.print(f"[bold red]Sweep failed[/bold red]: {stats.last_error}")
        raise typer.Exit(code=1)

    output_dict(report.to_dict(), as_json=json_out, title="Sweep Report")


@app.command("run")
def run(
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between passes"),
    database: str | None = typer.Option(None, "--database", "-d"),
    log_level: str = typer.Option("INFO", "--log-level"),
) -> None:
    """Sweep continuously until interrupted.

    Example::

        cronspine sweep run --interval 30
        CRONSPINE_SHARD_COUNT=4 CRONSPINE_SHARD_INDEX=2 cronspine sweep run
    """
    configure_logging(level=log_level)
    settings = load_settings(database)
    if interval is not None:
        settings = settings.model_copy(update={"sweep_interval_seconds": interval})

    conn, _info = create_connection(
        settings.database_url,
        init_schema=True,
        busy_timeout=settings.store_busy_timeout_seconds,
    )
    service = create_sweeper(conn, settings)

    console.print(
        f"[bold green]Starting cronspine sweeper[/bold green] "
        f"(shard {settings.shard_index}/{settings.shard_count}, every {settings.sweep_interval_seconds}s)"
    )
    service.start()
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Sweeper stopped by user[/yellow]")
    finally:
        service.stop()
        conn.close()
