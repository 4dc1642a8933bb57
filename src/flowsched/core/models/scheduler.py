"""Scheduler table models (``flow_schedules``, ``flow_schedule_runs``).

Manifesto:
    Schedule definitions and execution history need typed dataclass
    representations so the evaluator, executor and worker work with
    structured objects instead of raw rows.  Datetimes are aware UTC
    ``datetime`` values here; the repository converts to and from the
    stored ISO-8601 text.

Tags:
    flowsched, models, scheduling, dataclasses, cron, schema-mapping

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import Any

from flowsched.core.enums import RunStatus, ScheduleStatus, ScheduleType, TargetType
from flowsched.core.errors import ConfigurationError
from flowsched.core.timestamps import to_iso8601

# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LiveTarget:
    """Target resolved from the current stored definition at execution time."""

    target_type: TargetType
    target_id: str


@dataclass(frozen=True)
class FrozenTarget:
    """Target pinned to the definition snapshot captured on the schedule."""

    target_type: TargetType
    target_id: str
    definition: Any


ScheduleTarget = LiveTarget | FrozenTarget


# ---------------------------------------------------------------------------
# flow_schedules
# ---------------------------------------------------------------------------


@dataclass
class Schedule:
    """Schedule definition row (``flow_schedules``)."""

    id: str = ""
    name: str = ""
    target_type: TargetType = TargetType.CHATFLOW
    target_id: str = ""
    frozen_version: str | None = None  # JSON snapshot of the target definition
    schedule_type: ScheduleType = ScheduleType.CRON
    cron_expression: str | None = None
    interval_ms: int | None = None
    timezone: str = "UTC"
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    started_at: datetime | None = None
    ends_at: datetime | None = None
    max_retries: int = 3
    retry_delay_ms: int = 1000
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    run_count: int = 0
    failure_count: int = 0
    input_payload: str | None = None  # JSON
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def interval(self) -> timedelta | None:
        if self.interval_ms is None:
            return None
        return timedelta(milliseconds=self.interval_ms)

    @property
    def retry_delay(self) -> timedelta:
        return timedelta(milliseconds=self.retry_delay_ms or 0)

    @property
    def is_terminal(self) -> bool:
        return ScheduleStatus(self.status).is_terminal

    @property
    def target(self) -> ScheduleTarget:
        """Live or frozen target, depending on whether a snapshot was captured."""
        target_type = TargetType(self.target_type)
        if not self.frozen_version:
            return LiveTarget(target_type, self.target_id)
        try:
            definition = json.loads(self.frozen_version)
        except ValueError as e:
            raise ConfigurationError(
                "Frozen target definition is not valid JSON", cause=e
            ).with_context(schedule_id=self.id, target_id=self.target_id) from e
        return FrozenTarget(target_type, self.target_id, definition)

    @property
    def payload(self) -> dict[str, Any]:
        """Decoded ``input_payload`` (empty when unset)."""
        if not self.input_payload:
            return {}
        try:
            return json.loads(self.input_payload)
        except ValueError as e:
            raise ConfigurationError(
                "Schedule input_payload is not valid JSON", cause=e
            ).with_context(schedule_id=self.id) from e

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)


# ---------------------------------------------------------------------------
# flow_schedule_runs
# ---------------------------------------------------------------------------


@dataclass
class ScheduleRun:
    """Scheduled execution history row (``flow_schedule_runs``)."""

    id: str = ""
    schedule_id: str = ""
    status: RunStatus = RunStatus.PENDING
    job_id: str | None = None  # queue mode only
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    attempt: int = 1
    result: str | None = None  # JSON
    error_message: str | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return RunStatus(self.status).is_terminal

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)


def _serialize(obj: Any) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, datetime):
            value = to_iso8601(value)
        elif hasattr(value, "value"):
            value = value.value
        result[f.name] = value
    return result
