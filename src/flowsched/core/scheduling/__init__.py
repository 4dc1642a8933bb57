"""Scheduler package for flowsched.

Manifesto:
    Firing recurring workflows from a fleet of workers requires more than
    ``time.sleep()`` in a loop.  It needs lease-guarded execution (so two
    workers don't fire the same due schedule), a retry budget (so a broken
    target stops being retried), and a run record for every attempt.

┌──────────────────────────────────────────────────────────────────────────────┐
│  FLOWSCHED SCHEDULER                                                          │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from flowsched.core.scheduling import create_worker               │   │
│  │                                                                      │   │
│  │   worker = create_worker(runner=run_flow)                            │   │
│  │   worker.run_forever()          # or start() / stop()               │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│  Architecture:                                                                │
│                                                                               │
│   SchedulerWorker ──► ScheduleRepository   (due query, updates, runs)        │
│         │        ──► LockManager ──► LeaseBackend (Redis / DB / memory)      │
│         │        ──► ScheduleEvaluator     (next run, due, ended)            │
│         └──────────► ScheduleExecutor ──► ExecutionSink (direct / queue)     │
│                                                                               │
│  Dependencies:                                                                │
│  - croniter: Cron expression parsing                                          │
│  - redis: Lease backend                                                       │
│  - celery: Queue-mode job submission (optional)                               │
│                                                                               │
│  Tables: flow_schedules, flow_schedule_runs, flow_schedule_locks,             │
│          flow_definitions                                                     │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Executing a due schedule without holding its lease
    ✅ Always acquire_lock → re-check → execute → release_lock
"""

from flowsched.core.scheduling.evaluator import (
    ScheduleEvaluator,
    calculate_next_run,
    has_ended,
    is_due,
)
from flowsched.core.scheduling.executor import ScheduleExecutor
from flowsched.core.scheduling.factory import (
    create_execution_sink,
    create_lease_backend,
    create_worker,
    load_callable,
)
from flowsched.core.scheduling.lease_backends import (
    DatabaseLeaseBackend,
    InMemoryLeaseBackend,
    LeaseBackend,
    RedisLeaseBackend,
)
from flowsched.core.scheduling.lock_manager import Lease, LockManager
from flowsched.core.scheduling.repository import ScheduleRepository
from flowsched.core.scheduling.sinks import (
    CeleryJobQueue,
    DirectExecutionSink,
    ExecutionRequest,
    ExecutionSink,
    InMemoryJobQueue,
    JobHandle,
    JobQueue,
    QueueExecutionSink,
    WorkflowRunner,
)
from flowsched.core.scheduling.targets import (
    DatabaseTargetLoader,
    InMemoryTargetLoader,
    TargetLoader,
    resolve_target,
)
from flowsched.core.scheduling.worker import (
    SchedulerWorker,
    WorkerHealth,
    WorkerState,
    WorkerStats,
)

__all__ = [
    # Evaluation
    "ScheduleEvaluator",
    "calculate_next_run",
    "has_ended",
    "is_due",
    # Locks
    "Lease",
    "LockManager",
    "LeaseBackend",
    "RedisLeaseBackend",
    "DatabaseLeaseBackend",
    "InMemoryLeaseBackend",
    # Store
    "ScheduleRepository",
    # Execution
    "ScheduleExecutor",
    "ExecutionRequest",
    "ExecutionSink",
    "DirectExecutionSink",
    "QueueExecutionSink",
    "JobQueue",
    "JobHandle",
    "InMemoryJobQueue",
    "CeleryJobQueue",
    "WorkflowRunner",
    "TargetLoader",
    "InMemoryTargetLoader",
    "DatabaseTargetLoader",
    "resolve_target",
    # Worker
    "SchedulerWorker",
    "WorkerState",
    "WorkerStats",
    "WorkerHealth",
    # Factory
    "create_worker",
    "create_lease_backend",
    "create_execution_sink",
    "load_callable",
]
