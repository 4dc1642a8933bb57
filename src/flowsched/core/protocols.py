"""
Canonical protocol definitions for flowsched.

Manifesto:
    Protocols define contracts without inheritance.  The repository and
    the database lease backend depend on the *shape* of a DB-API
    connection, so ``sqlite3.Connection``, a psycopg connection or a test
    double all work unchanged.

Guardrails:
    ❌ DON'T: Duplicate Connection(Protocol) in other modules
    ✅ DO: Import from flowsched.core.protocols

Tags:
    protocol, connection, database, contracts
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous database connection protocol.

    Satisfied by ``sqlite3.Connection`` and psycopg connections (via a
    cursor-returning ``execute``).

    Methods:
        execute(sql, params) -> cursor with fetchone/fetchall/rowcount
        commit() -> None
        rollback() -> None
        close() -> None
    """

    def execute(self, sql: str, params: Any = ()) -> Any:
        """Execute a SQL statement and return a cursor."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...

    def close(self) -> None:
        """Close the connection."""
        ...
