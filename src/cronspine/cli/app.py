"""
Root Typer application for the cronspine CLI.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

app = Typer(
    name="cronspine",
    help="cronspine: scheduled-job check-in monitoring.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("cronspine")
        except PackageNotFoundError:
            from cronspine import __version__ as v
        typer.echo(f"cronspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cronspine CLI: run the API and sweeper, inspect monitors."""


# ── Sub-command registration ─────────────────────────────────────────────

from cronspine.cli.db import app as db_app  # noqa: E402
from cronspine.cli.monitors import app as monitors_app  # noqa: E402
from cronspine.cli.serve import app as serve_app  # noqa: E402
from cronspine.cli.sweep import app as sweep_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(monitors_app, name="monitors", help="Inspect monitors, runs and check-ins.")
app.add_typer(serve_app, name="serve", help="Start the API server.")
app.add_typer(sweep_app, name="sweep", help="Missed/Timeout detection.")
