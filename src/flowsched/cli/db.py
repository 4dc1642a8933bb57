"""
CLI: ``flowsched db``: database management commands.
"""

from __future__ import annotations

import typer

from flowsched.cli.utils import fail, get_connection, output_dict
from flowsched.core.errors import FlowschedError
from flowsched.core.schema import CORE_TABLES

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Initialise database schema (create tables)."""
    try:
        conn = get_connection(database, init_schema=True)
    except FlowschedError as e:
        fail(e)
    conn.close()
    output_dict(
        {"initialized": True, "tables": sorted(CORE_TABLES.values())},
        as_json=json_out,
        title="Database Init",
    )
