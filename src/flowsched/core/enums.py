"""
Shared enums for schedules and their runs.

Values match what is stored in the ``flow_schedules`` and
``flow_schedule_runs`` text columns.

STDLIB ONLY - NO PYDANTIC.
"""

from enum import Enum


class ScheduleType(str, Enum):
    """
    Cadence of a schedule.

    Rows written by older releases use ``once`` for one-time schedules;
    it is accepted as an alias when loading.
    """

    ONE_TIME = "one-time"
    INTERVAL = "interval"
    CRON = "cron"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str) and value.lower() in ("once", "one_time", "onetime"):
            return cls.ONE_TIME
        return None


class ScheduleStatus(str, Enum):
    """Lifecycle status of a schedule. COMPLETED and FAILED are terminal."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScheduleStatus.COMPLETED, ScheduleStatus.FAILED)


class TargetType(str, Enum):
    """Kind of workflow a schedule fires."""

    CHATFLOW = "CHATFLOW"    # workflow
    AGENTFLOW = "AGENTFLOW"  # agent-workflow


class RunStatus(str, Enum):
    """
    Status of one execution attempt.

    Queue-mode runs stay PENDING until the queue consumer picks them up;
    direct-mode runs move to RUNNING before the workflow is invoked.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.SKIPPED)
