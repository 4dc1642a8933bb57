"""
SQL dialect abstraction for portable schedule queries.

The repository and the database lease backend build their SQL through a
``Dialect`` so the same code runs on SQLite (``?`` placeholders,
``INSERT OR IGNORE``) and PostgreSQL (``%s`` placeholders,
``ON CONFLICT DO NOTHING``).

Tags:
    sql, dialect, sqlite, postgresql, portability
"""

from __future__ import annotations

from typing import Protocol


class Dialect(Protocol):
    """SQL generation hooks that differ between database backends."""

    @property
    def name(self) -> str:
        """Short backend name (``sqlite``, ``postgresql``)."""
        ...

    def placeholder(self, index: int) -> str:
        """Parameter placeholder at 0-based position ``index``."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list for ``count`` parameters."""
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT that silently skips rows violating a unique key."""
        ...


class SQLiteDialect:
    """SQLite dialect (``?`` placeholders)."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({self.placeholders(len(columns))})"


class PostgreSQLDialect:
    """PostgreSQL dialect (``%s`` placeholders for psycopg)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({self.placeholders(len(columns))}) "
            "ON CONFLICT DO NOTHING"
        )


def dialect_for(conn: object) -> Dialect:
    """Pick a dialect from the connection's driver module."""
    module = type(conn).__module__
    if module.startswith("psycopg"):
        return PostgreSQLDialect()
    return SQLiteDialect()
