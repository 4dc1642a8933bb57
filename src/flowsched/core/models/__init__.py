"""Dataclass models for the schedule store tables.

Field names match SQL column names exactly; the repository maps rows to
these models and converts stored ISO-8601 text to aware UTC datetimes.

Tags:
    flowsched, models, dataclasses, schema-mapping
"""

from flowsched.core.models.scheduler import (
    FrozenTarget,
    LiveTarget,
    Schedule,
    ScheduleRun,
    ScheduleTarget,
)

__all__ = [
    "FrozenTarget",
    "LiveTarget",
    "Schedule",
    "ScheduleRun",
    "ScheduleTarget",
]
