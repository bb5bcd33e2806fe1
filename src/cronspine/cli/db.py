"""
CLI: ``cronspine db``: database management commands.
"""

from __future__ import annotations

import sqlite3

import typer

from cronspine.cli.utils import console, err_console, load_settings, output_dict
from cronspine.core.connection import create_connection

app = typer.Typer(no_args_is_help=True)

_TABLES = ("monitors", "monitor_runs", "monitor_checkins", "core_locks")


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database URL or path"),
) -> None:
    """Initialise database schema (create tables)."""
    settings = load_settings(database)
    try:
        conn, info = create_connection(settings.database_url, init_schema=True)
    except sqlite3.Error as e:
        err_console.print(f"[bold red]Error[/bold red]: {e}")
        raise typer.Exit(code=1) from e
    conn.close()
    console.print(f"[green]Schema ready[/green] ({info.resolved_path or info.url})")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for the monitor tables."""
    settings = load_settings(database)
    conn, _info = create_connection(settings.database_url, init_schema=True)
    try:
        counts = {t: conn.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0] for t in _TABLES}
    finally:
        conn.close()
    output_dict(counts, as_json=json_out, title="Table Counts")
