"""Connection factory - create schedule store connections from URL strings.

This is the single entry point the CLI and ``create_worker`` use to open
the schedule store.

Supported URL schemes
---------------------
==================  ==========================================  ============
Scheme              Example                                     Backend
==================  ==========================================  ============
``memory``          ``memory`` or ``:memory:`` or ``None``       SQLite RAM
``sqlite``          ``sqlite:///path/to/file.db``                SQLite file
``(file path)``     ``./data/flowsched.db``                      SQLite file
==================  ==========================================  ============

PostgreSQL deployments pass their own psycopg connection (together with
``PostgreSQLDialect``) to the repository; there is no URL route for it.

Connections are opened with ``check_same_thread=False``: the worker loop
thread and the executor's timeout thread share them, serialized by the
repository lock.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from flowsched.core.errors import ConfigurationError
from flowsched.core.schema import create_core_tables


@dataclass(frozen=True)
class ConnectionInfo:
    """Metadata about a database connection."""

    backend: str
    persistent: bool
    url: str
    resolved_path: str | None = None


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into (scheme, target)."""
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"

    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path

    if db.startswith(("postgresql", "postgres")):
        return "postgresql", db

    return "sqlite", db


def create_connection(
    db: str | None = None,
    *,
    init_schema: bool = False,
) -> tuple[sqlite3.Connection, ConnectionInfo]:
    """Open the schedule store.

    Parameters
    ----------
    db:
        ``None`` / ``"memory"`` for in-memory SQLite, a file path, or a
        ``sqlite:///`` URL.
    init_schema:
        If ``True``, create the schedule tables (idempotent).

    Returns
    -------
    tuple[sqlite3.Connection, ConnectionInfo]
    """
    scheme, target = _parse_url(db)

    if scheme == "postgresql":
        raise ConfigurationError(
            "PostgreSQL URLs are not opened by flowsched; pass a psycopg connection "
            "and PostgreSQLDialect to ScheduleRepository instead"
        )

    if scheme == "memory":
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        info = ConnectionInfo(backend="sqlite", persistent=False, url=":memory:")
    else:
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        resolved = str(path.resolve())
        conn = sqlite3.connect(resolved, check_same_thread=False, timeout=30.0)
        info = ConnectionInfo(
            backend="sqlite", persistent=True, url=db or target, resolved_path=resolved
        )

    if init_schema:
        create_core_tables(conn)
    return conn, info
