"""Target definition loading.

A schedule fires either a *frozen* target (the definition snapshot stored
on the schedule row) or a *live* one, resolved from the current stored
definition every time it runs.  Live lookups go through a
:class:`TargetLoader` so the worker can read ``flow_definitions`` in
production and a dict in tests.

Tags:
    flowsched, scheduling, targets, chatflow, agentflow
"""

from __future__ import annotations

import json
import threading
from typing import Any, Protocol, runtime_checkable

from flowsched.core.dialect import Dialect, SQLiteDialect
from flowsched.core.enums import TargetType
from flowsched.core.errors import NotFoundError, StoreError
from flowsched.core.models.scheduler import FrozenTarget, LiveTarget, Schedule
from flowsched.core.protocols import Connection
from flowsched.core.timestamps import to_iso8601, utc_now


@runtime_checkable
class TargetLoader(Protocol):
    """Loads the current definition of a live target (None when missing)."""

    def load(self, target_type: TargetType, target_id: str) -> Any | None: ...


class InMemoryTargetLoader:
    """Definitions held in a dict keyed by target id."""

    def __init__(self, definitions: dict[str, Any] | None = None) -> None:
        self.definitions: dict[str, Any] = dict(definitions or {})

    def add(self, target_id: str, definition: Any) -> None:
        self.definitions[target_id] = definition

    def load(self, target_type: TargetType, target_id: str) -> Any | None:
        return self.definitions.get(target_id)


class DatabaseTargetLoader:
    """Definitions stored as JSON in ``flow_definitions``."""

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self._lock = threading.RLock()

    def save(
        self,
        target_id: str,
        definition: Any,
        *,
        target_type: TargetType = TargetType.CHATFLOW,
        name: str | None = None,
    ) -> None:
        """Insert or replace a stored definition."""
        ph = self.dialect.placeholder(0)
        with self._lock:
            try:
                self.conn.execute(f"DELETE FROM flow_definitions WHERE id = {ph}", (target_id,))
                self.conn.execute(
                    "INSERT INTO flow_definitions (id, name, flow_type, definition, updated_at) "
                    f"VALUES ({self.dialect.placeholders(5)})",
                    (
                        target_id,
                        name,
                        TargetType(target_type).value,
                        json.dumps(definition),
                        to_iso8601(utc_now()),
                    ),
                )
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                raise StoreError(f"Save definition failed: {e}", cause=e) from e

    def load(self, target_type: TargetType, target_id: str) -> Any | None:
        ph = self.dialect.placeholder(0)
        with self._lock:
            try:
                row = self.conn.execute(
                    f"SELECT definition FROM flow_definitions WHERE id = {ph}",
                    (target_id,),
                ).fetchone()
            except Exception as e:
                raise StoreError(f"Load definition failed: {e}", cause=e) from e
        if row is None:
            return None
        return json.loads(row[0])


def resolve_target(schedule: Schedule, loader: TargetLoader | None) -> Any:
    """Return the definition ``schedule`` should execute.

    Raises:
        NotFoundError: a live target has no stored definition
        ConfigurationError: the frozen snapshot is not valid JSON
    """
    target = schedule.target
    if isinstance(target, FrozenTarget):
        return target.definition

    assert isinstance(target, LiveTarget)
    definition = loader.load(target.target_type, target.target_id) if loader else None
    if definition is None:
        kind = "Agentflow" if target.target_type == TargetType.AGENTFLOW else "Chatflow"
        raise NotFoundError(f"{kind} not found: {target.target_id}").with_context(
            schedule_id=schedule.id, target_id=target.target_id
        )
    return definition
