"""
CLI: ``cronspine serve``: start the API server.
"""

from __future__ import annotations

import typer
import uvicorn

from cronspine.cli.utils import console
from cronspine.core.logging import configure_logging

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Bind address"),
    port: int = typer.Option(12100, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    workers: int = typer.Option(1, "--workers", "-w", help="Number of workers"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the cronspine check-in API.

    With more than one worker each process keeps its own rate-limit
    windows, so the effective per-monitor quota scales with ``--workers``.
    """
    configure_logging(level=log_level)
    console.print(f"[bold green]Starting cronspine API[/bold green] on {host}:{port}")
    uvicorn.run(
        "cronspine.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=workers,
        log_level=log_level,
    )
