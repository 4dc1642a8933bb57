"""
Root Typer application for the flowsched CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from flowsched import __version__

app = Typer(
    name="flowsched",
    help="flowsched: recurring schedule execution engine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"flowsched {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """flowsched CLI: run scheduler workers, inspect schedules and runs."""


# ── Sub-command registration ─────────────────────────────────────────────

from flowsched.cli.db import app as db_app  # noqa: E402
from flowsched.cli.scheduler import app as scheduler_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(scheduler_app, name="scheduler", help="Scheduler worker and schedule inspection.")
