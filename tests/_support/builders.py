"""Clock and schedule builders shared by the test suite."""

import itertools
import json
from datetime import UTC, datetime, timedelta
from typing import Any

from flowsched.core.enums import ScheduleStatus, ScheduleType, TargetType
from flowsched.core.models.scheduler import Schedule

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)

FLOW_DEFINITION = {"id": "flow-1", "name": "Daily digest", "nodes": [], "edges": []}


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


_ids = itertools.count(1)


def build_schedule(**overrides: Any) -> Schedule:
    """Active interval schedule that became due one second before NOW."""
    n = next(_ids)
    fields: dict[str, Any] = {
        "id": f"sch-{n}",
        "name": f"schedule {n}",
        "target_type": TargetType.CHATFLOW,
        "target_id": "flow-1",
        "frozen_version": json.dumps(FLOW_DEFINITION),
        "schedule_type": ScheduleType.INTERVAL,
        "interval_ms": 60_000,
        "next_run_at": NOW - timedelta(seconds=1),
        "status": ScheduleStatus.ACTIVE,
        "input_payload": json.dumps({"question": "What changed today?"}),
        "created_by": "user-7",
    }
    fields.update(overrides)
    return Schedule(**fields)
