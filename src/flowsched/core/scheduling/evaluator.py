"""Next-run evaluation for schedules.

Manifesto:
    "When does this schedule fire next?" is a pure function of the
    schedule's cadence and the current instant.  Keeping it free of I/O
    makes every cadence rule unit-testable with a fixed clock.

Rules:
    - one-time  → never again (``None``)
    - interval  → ``now + interval``
    - cron      → first instant strictly after ``now``, evaluated in the
                  schedule's timezone, returned in UTC; a sixth field is
                  seconds and comes first (``"30 0 9 * * *"`` is 09:00:30)

Invalid definitions raise :class:`~flowsched.core.errors.ConfigurationError`
synchronously; nothing is silently defaulted.

Tags:
    flowsched, scheduling, cron, croniter, zoneinfo, pure-functions

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from flowsched.core.enums import ScheduleType
from flowsched.core.errors import ConfigurationError
from flowsched.core.models.scheduler import Schedule
from flowsched.core.timestamps import ensure_utc


def _schedule_type(schedule: Schedule) -> ScheduleType:
    try:
        return ScheduleType(schedule.schedule_type)
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown schedule type: {schedule.schedule_type}", cause=e
        ).with_context(schedule_id=schedule.id) from e


def _zone(schedule: Schedule) -> ZoneInfo:
    name = schedule.timezone or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {name}", cause=e).with_context(
            schedule_id=schedule.id
        ) from e


def _next_cron(schedule: Schedule, now: datetime) -> datetime:
    if not schedule.cron_expression:
        raise ConfigurationError("Cron schedule missing cron_expression").with_context(
            schedule_id=schedule.id
        )

    local_now = now.astimezone(_zone(schedule))
    try:
        itr = croniter(schedule.cron_expression, local_now, second_at_beginning=True)
        next_local = itr.get_next(datetime)
    except (ValueError, KeyError) as e:  # croniter errors subclass ValueError
        raise ConfigurationError(
            f"Invalid cron expression: {schedule.cron_expression}", cause=e
        ).with_context(schedule_id=schedule.id) from e

    next_run = next_local.astimezone(UTC)
    # croniter resolves at minute granularity; guard the strictly-after rule
    if next_run <= now:
        next_run = itr.get_next(datetime).astimezone(UTC)
    return next_run


def calculate_next_run(schedule: Schedule, now: datetime) -> datetime | None:
    """Compute the next instant ``schedule`` should fire after ``now``.

    Args:
        schedule: Schedule definition
        now: Current instant (naive values are treated as UTC)

    Returns:
        Next run in UTC, or ``None`` when the cadence is exhausted
        (one-time schedules).

    Raises:
        ConfigurationError: interval without a positive duration, cron
            without a (valid) expression, unknown timezone or type.
    """
    now = ensure_utc(now)
    schedule_type = _schedule_type(schedule)

    if schedule_type == ScheduleType.ONE_TIME:
        return None

    if schedule_type == ScheduleType.INTERVAL:
        if not schedule.interval_ms or schedule.interval_ms <= 0:
            raise ConfigurationError(
                "Interval schedule missing a positive interval_ms"
            ).with_context(schedule_id=schedule.id)
        return now + schedule.interval

    return _next_cron(schedule, now)


def is_due(schedule: Schedule, now: datetime) -> bool:
    """True when ``next_run_at`` is set and not in the future."""
    if schedule.next_run_at is None:
        return False
    return ensure_utc(schedule.next_run_at) <= ensure_utc(now)


def has_ended(schedule: Schedule, now: datetime) -> bool:
    """True when ``ends_at`` is set and has passed."""
    if schedule.ends_at is None:
        return False
    return ensure_utc(schedule.ends_at) <= ensure_utc(now)


class ScheduleEvaluator:
    """Object facade over the evaluation functions, injected into the worker."""

    def calculate_next_run(self, schedule: Schedule, now: datetime) -> datetime | None:
        return calculate_next_run(schedule, now)

    def is_due(self, schedule: Schedule, now: datetime) -> bool:
        return is_due(schedule, now)

    def has_ended(self, schedule: Schedule, now: datetime) -> bool:
        return has_ended(schedule, now)
