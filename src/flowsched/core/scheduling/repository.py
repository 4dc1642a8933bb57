"""Schedule repository - due-schedule polling and run history.

Manifesto:
    Schedule persistence is a pure data operation that belongs in a
    repository, not in the worker.  Separating it enables testing with
    in-memory SQLite connections and keeps the worker focused on
    orchestration.

This module provides the data access layer for ``flow_schedules`` and the
append-only ``flow_schedule_runs`` history.

Tags:
    flowsched, scheduling, repository, polling, run-history

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE REPOSITORY                                                          │
│                                                                               │
│  ┌────────────────────────────────────────────────────────────────────┐      │
│  │                      ScheduleRepository                            │      │
│  │                                                                    │      │
│  │   Schedule Operations:                                             │      │
│  │   ├── add_schedule(schedule) → Schedule                            │      │
│  │   ├── get_schedule(id) → Schedule | None                          │      │
│  │   ├── get_due_schedules(now, limit) → list[Schedule]               │      │
│  │   ├── update_schedule(id, **fields) → bool                         │      │
│  │   └── complete_ended_schedules(now) → int                          │      │
│  │                                                                    │      │
│  │   Schedule Run Operations:                                         │      │
│  │   ├── create_run(schedule_id, scheduled_at) → ScheduleRun          │      │
│  │   ├── update_run(run_id, **fields) → bool                          │      │
│  │   ├── finalize_run(run_id, status, **fields) → bool                │      │
│  │   ├── get_run(run_id) → ScheduleRun | None                         │      │
│  │   └── list_runs(schedule_id, limit, status) → list[ScheduleRun]    │      │
│  └────────────────────────────────────────────────────────────────────┘      │
│                                                                               │
│  Runs are append-only: finalize_run only touches runs that are still        │
│  pending or running, so a late writer can never rewrite a terminal run.     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from flowsched.core.dialect import Dialect, SQLiteDialect
from flowsched.core.enums import RunStatus, ScheduleStatus, ScheduleType, TargetType
from flowsched.core.errors import ConfigurationError, StoreError
from flowsched.core.logging import get_logger
from flowsched.core.models.scheduler import Schedule, ScheduleRun
from flowsched.core.protocols import Connection
from flowsched.core.timestamps import from_iso8601, generate_run_id, to_iso8601, utc_now

logger = get_logger(__name__)


SCHEDULE_COLUMNS = [
    "id",
    "name",
    "target_type",
    "target_id",
    "frozen_version",
    "schedule_type",
    "cron_expression",
    "interval_ms",
    "timezone",
    "next_run_at",
    "last_run_at",
    "started_at",
    "ends_at",
    "max_retries",
    "retry_delay_ms",
    "status",
    "run_count",
    "failure_count",
    "input_payload",
    "created_by",
    "created_at",
    "updated_at",
]

RUN_COLUMNS = [
    "id",
    "schedule_id",
    "status",
    "job_id",
    "scheduled_at",
    "started_at",
    "completed_at",
    "duration_ms",
    "attempt",
    "result",
    "error_message",
    "created_at",
]

_DATETIME_COLUMNS = frozenset(
    {
        "next_run_at",
        "last_run_at",
        "started_at",
        "ends_at",
        "created_at",
        "updated_at",
        "scheduled_at",
        "completed_at",
    }
)

_SCHEDULE_ENUMS: dict[str, type[Enum]] = {
    "target_type": TargetType,
    "schedule_type": ScheduleType,
    "status": ScheduleStatus,
}

_UPDATABLE_SCHEDULE_COLUMNS = frozenset(SCHEDULE_COLUMNS) - {"id", "created_at"}
_UPDATABLE_RUN_COLUMNS = frozenset(RUN_COLUMNS) - {"id", "schedule_id", "created_at"}

_OPEN_RUN_STATUSES = (RunStatus.PENDING.value, RunStatus.RUNNING.value)


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso8601(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _coerce_enum(enum_type: type[Enum], value: Any) -> Any:
    # Unknown values are left as text; the evaluator reports them.
    try:
        return enum_type(value)
    except ValueError:
        return value


# ---------------------------------------------------------------------------
# Repository Implementation
# ---------------------------------------------------------------------------


class ScheduleRepository:
    """Repository for schedule polling, updates and run history.

    All access to the connection is serialized by a re-entrant lock, so
    the worker loop thread and the executor's timeout thread can share
    one repository.

    Example:
        >>> repo = ScheduleRepository(conn)
        >>>
        >>> due = repo.get_due_schedules(utc_now())
        >>> for s in due:
        ...     print(f"Due: {s.name}")
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize repository with database connection.

        Args:
            conn: Database connection (any backend satisfying Connection protocol)
            dialect: SQL dialect for portable queries. Defaults to SQLiteDialect.
            clock: Source of ``created_at`` / ``updated_at`` stamps
        """
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self._clock = clock
        self._lock = threading.RLock()

    def _ph(self, count: int = 1) -> str:
        """Generate placeholder string for this dialect."""
        return self.dialect.placeholders(count)

    # === Low-level helpers ===

    def _fetch(self, action: str, sql: str, params: Iterable[Any] = ()) -> list[Any]:
        with self._lock:
            try:
                rows = self.conn.execute(sql, tuple(params)).fetchall()
            except Exception as e:
                raise StoreError(f"{action} failed: {e}", cause=e) from e
        return list(rows)

    def _write(self, action: str, sql: str, params: Iterable[Any] = ()) -> int:
        with self._lock:
            try:
                cursor = self.conn.execute(sql, tuple(params))
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                raise StoreError(f"{action} failed: {e}", cause=e) from e
            return cursor.rowcount

    def _row_to_schedule(self, row: Any) -> Schedule:
        """Convert database row to Schedule model."""
        data = dict(zip(SCHEDULE_COLUMNS, row, strict=False))
        for column in _DATETIME_COLUMNS.intersection(data):
            data[column] = from_iso8601(data[column])
        for column, enum_type in _SCHEDULE_ENUMS.items():
            data[column] = _coerce_enum(enum_type, data[column])
        return Schedule(**data)

    def _row_to_schedule_run(self, row: Any) -> ScheduleRun:
        """Convert database row to ScheduleRun model."""
        data = dict(zip(RUN_COLUMNS, row, strict=False))
        for column in _DATETIME_COLUMNS.intersection(data):
            data[column] = from_iso8601(data[column])
        data["status"] = _coerce_enum(RunStatus, data["status"])
        return ScheduleRun(**data)

    # === Schedule Operations ===

    def add_schedule(self, schedule: Schedule) -> Schedule:
        """Insert a schedule row.

        A missing id is generated and missing ``created_at`` /
        ``updated_at`` stamps are filled from the repository clock.
        """
        now = self._clock()
        schedule.id = schedule.id or str(uuid4())
        schedule.created_at = schedule.created_at or now
        schedule.updated_at = schedule.updated_at or now

        values = [_to_db(getattr(schedule, column)) for column in SCHEDULE_COLUMNS]
        self._write(
            "Insert schedule",
            f"INSERT INTO flow_schedules ({', '.join(SCHEDULE_COLUMNS)}) "
            f"VALUES ({self._ph(len(SCHEDULE_COLUMNS))})",
            values,
        )
        logger.debug("schedule_added", schedule_id=schedule.id)
        return schedule

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        """Get schedule by ID (None if it does not exist)."""
        rows = self._fetch(
            "Get schedule",
            f"SELECT {', '.join(SCHEDULE_COLUMNS)} FROM flow_schedules WHERE id = {self._ph()}",
            (schedule_id,),
        )
        if not rows:
            return None
        return self._row_to_schedule(rows[0])

    def list_schedules(self, status: ScheduleStatus | str | None = None) -> list[Schedule]:
        """List schedules, optionally filtered by status."""
        sql = f"SELECT {', '.join(SCHEDULE_COLUMNS)} FROM flow_schedules"
        params: list[Any] = []
        if status is not None:
            sql += f" WHERE status = {self._ph()}"
            params.append(_to_db(status))
        sql += " ORDER BY name"
        return [self._row_to_schedule(row) for row in self._fetch("List schedules", sql, params)]

    def get_due_schedules(self, now: datetime, limit: int = 100) -> list[Schedule]:
        """Get schedules that are due for execution.

        A schedule is due if:
        - status = 'active'
        - next_run_at <= now
        - ends_at is unset or still in the future

        Args:
            now: Current timestamp
            limit: Maximum number of schedules returned

        Returns:
            Due schedules, earliest ``next_run_at`` first
        """
        now_iso = to_iso8601(now)
        rows = self._fetch(
            "Query due schedules",
            f"""
            SELECT {', '.join(SCHEDULE_COLUMNS)} FROM flow_schedules
            WHERE status = {self._ph()}
              AND next_run_at IS NOT NULL
              AND next_run_at <= {self._ph()}
              AND (ends_at IS NULL OR ends_at > {self._ph()})
            ORDER BY next_run_at
            LIMIT {self._ph()}
            """,
            (ScheduleStatus.ACTIVE.value, now_iso, now_iso, limit),
        )
        return [self._row_to_schedule(row) for row in rows]

    def update_schedule(self, schedule_id: str, **fields: Any) -> bool:
        """Partially update a schedule and stamp ``updated_at``.

        Returns:
            True if the row exists and was updated

        Raises:
            ConfigurationError: a field is not an updatable column
        """
        unknown = set(fields) - _UPDATABLE_SCHEDULE_COLUMNS
        if unknown:
            raise ConfigurationError(
                f"Unknown schedule column(s): {', '.join(sorted(unknown))}"
            ).with_context(schedule_id=schedule_id)

        fields.setdefault("updated_at", self._clock())
        set_parts = [f"{column} = {self._ph()}" for column in fields]
        params = [_to_db(value) for value in fields.values()]
        params.append(schedule_id)

        rowcount = self._write(
            "Update schedule",
            f"UPDATE flow_schedules SET {', '.join(set_parts)} WHERE id = {self._ph()}",
            params,
        )
        return rowcount > 0

    def complete_ended_schedules(self, now: datetime) -> int:
        """Mark active schedules whose ``ends_at`` has passed as completed.

        The due query excludes them, so without this sweep they would stay
        active forever.

        Returns:
            Number of schedules completed
        """
        now_iso = to_iso8601(now)
        count = self._write(
            "Complete ended schedules",
            f"""
            UPDATE flow_schedules SET status = {self._ph()}, updated_at = {self._ph()}
            WHERE status = {self._ph()} AND ends_at IS NOT NULL AND ends_at <= {self._ph()}
            """,
            (
                ScheduleStatus.COMPLETED.value,
                to_iso8601(self._clock()),
                ScheduleStatus.ACTIVE.value,
                now_iso,
            ),
        )
        if count:
            logger.info("ended_schedules_completed", count=count)
        return max(count, 0)

    # === Schedule Run Operations ===

    def create_run(
        self,
        schedule_id: str,
        *,
        scheduled_at: datetime | None = None,
        run_id: str | None = None,
        attempt: int = 1,
    ) -> ScheduleRun:
        """Record a new pending run for ``schedule_id``."""
        now = self._clock()
        run = ScheduleRun(
            id=run_id or generate_run_id(),
            schedule_id=schedule_id,
            status=RunStatus.PENDING,
            scheduled_at=scheduled_at or now,
            attempt=attempt,
            created_at=now,
        )
        values = [_to_db(getattr(run, column)) for column in RUN_COLUMNS]
        self._write(
            "Insert schedule run",
            f"INSERT INTO flow_schedule_runs ({', '.join(RUN_COLUMNS)}) "
            f"VALUES ({self._ph(len(RUN_COLUMNS))})",
            values,
        )
        return run

    def _set_run_fields(
        self,
        action: str,
        run_id: str,
        fields: dict[str, Any],
        where: str = "",
        where_params: tuple = (),
    ) -> bool:
        unknown = set(fields) - _UPDATABLE_RUN_COLUMNS
        if unknown:
            raise ConfigurationError(
                f"Unknown schedule run column(s): {', '.join(sorted(unknown))}"
            ).with_context(run_id=run_id)
        if not fields:
            return False

        set_parts = [f"{column} = {self._ph()}" for column in fields]
        params = [_to_db(value) for value in fields.values()]
        params.append(run_id)
        params.extend(where_params)
        rowcount = self._write(
            action,
            f"UPDATE flow_schedule_runs SET {', '.join(set_parts)} WHERE id = {self._ph()}{where}",
            params,
        )
        return rowcount > 0

    def update_run(self, run_id: str, **fields: Any) -> bool:
        """Update fields of a run that has not reached a terminal status."""
        return self._set_run_fields(
            "Update schedule run",
            run_id,
            fields,
            f" AND status IN ({self._ph(len(_OPEN_RUN_STATUSES))})",
            _OPEN_RUN_STATUSES,
        )

    def finalize_run(self, run_id: str, status: RunStatus, **fields: Any) -> bool:
        """Move a pending/running run to a terminal ``status``.

        Returns:
            False when the run is already terminal (or does not exist);
            the stored outcome is never rewritten.
        """
        if not RunStatus(status).is_terminal:
            raise ConfigurationError(f"finalize_run needs a terminal status, got {status}")
        fields["status"] = status
        fields.setdefault("completed_at", self._clock())
        finalized = self.update_run(run_id, **fields)
        if not finalized:
            logger.debug("run_already_final", run_id=run_id, status=_to_db(status))
        return finalized

    def get_run(self, run_id: str) -> ScheduleRun | None:
        """Get schedule run by ID."""
        rows = self._fetch(
            "Get schedule run",
            f"SELECT {', '.join(RUN_COLUMNS)} FROM flow_schedule_runs WHERE id = {self._ph()}",
            (run_id,),
        )
        if not rows:
            return None
        return self._row_to_schedule_run(rows[0])

    def list_runs(
        self,
        schedule_id: str,
        limit: int = 50,
        status: RunStatus | str | None = None,
    ) -> list[ScheduleRun]:
        """List runs of a schedule, newest first."""
        sql = (
            f"SELECT {', '.join(RUN_COLUMNS)} FROM flow_schedule_runs "
            f"WHERE schedule_id = {self._ph()}"
        )
        params: list[Any] = [schedule_id]
        if status is not None:
            sql += f" AND status = {self._ph()}"
            params.append(_to_db(status))
        sql += f" ORDER BY created_at DESC, id DESC LIMIT {self._ph()}"
        params.append(limit)
        return [self._row_to_schedule_run(row) for row in self._fetch("List schedule runs", sql, params)]
