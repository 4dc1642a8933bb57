"""
CLI utility helpers: output formatting and connection management.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from flowsched.core.connection import create_connection
from flowsched.core.errors import FlowschedError
from flowsched.core.settings import get_settings

console = Console()
err_console = Console(stderr=True)


# ── Connection helper ────────────────────────────────────────────────────


def get_connection(database: str | None = None, *, init_schema: bool = True) -> Any:
    """Open the schedule store.  Defaults to ``settings.database_url``."""
    conn, _info = create_connection(database or get_settings().database_url, init_schema=init_schema)
    return conn


# ── Output helpers ───────────────────────────────────────────────────────


def fail(error: FlowschedError) -> None:
    """Print a flowsched error and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error.message}")
    raise typer.Exit(code=1)


def output_items(
    items: list[dict[str, Any]],
    *,
    as_json: bool = False,
    title: str = "",
    columns: list[str] | None = None,
) -> None:
    """Render a list of row dicts as JSON or a Rich table."""
    if as_json:
        console.print_json(json.dumps(items, default=str))
        return

    if not items:
        console.print("[dim]No items.[/dim]")
        return

    columns = columns or list(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*("" if item.get(col) is None else str(item.get(col)) for col in columns))
    console.print(table)


def output_dict(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a single dict as JSON or key-value pairs."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
