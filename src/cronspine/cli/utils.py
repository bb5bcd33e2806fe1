"""
CLI utility helpers: output formatting and connection management.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from enum import Enum
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from cronspine.core.connection import create_connection
from cronspine.core.errors import CronSpineError
from cronspine.core.settings import CronSpineSettings
from cronspine.monitors.store import MonitorStore

console = Console()
err_console = Console(stderr=True)


# ── Connection helpers ───────────────────────────────────────────────────


def load_settings(database: str | None = None) -> CronSpineSettings:
    """Settings from the environment, with ``--database`` taking precedence."""
    settings = CronSpineSettings()
    if database:
        settings = settings.model_copy(update={"database_url": database})
    return settings


@contextmanager
def open_store(database: str | None = None) -> Iterator[MonitorStore]:
    """Yield a ``MonitorStore`` on a schema-initialised connection."""
    settings = load_settings(database)
    conn, _info = create_connection(
        settings.database_url,
        init_schema=True,
        busy_timeout=settings.store_busy_timeout_seconds,
    )
    try:
        yield MonitorStore(conn)
    finally:
        conn.close()


def fail(error: CronSpineError) -> typer.Exit:
    """Print a cronspine error and return the Exit to raise."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error.message}")
    return typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, Enum):
        return str(value.value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def output_rows(rows: list[dict[str, Any]], *, as_json: bool = False, title: str = "") -> None:
    """Render rows as a Rich table, or as JSON."""
    if as_json:
        console.print_json(json.dumps(rows, default=_fmt))
        return

    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    _print_table(rows, title=title)


def output_dict(data: Any, *, as_json: bool = False, title: str = "") -> None:
    payload = _to_dict(data)
    if as_json:
        console.print_json(json.dumps(payload, default=_fmt))
        return
    _print_dict(payload, title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in items[0]:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(_fmt(v) for v in item.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_fmt(v)}")
