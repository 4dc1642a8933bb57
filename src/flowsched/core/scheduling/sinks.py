"""Execution sinks - where a scheduled execution request goes.

Manifesto:
    The executor decides *what* to run; a sink decides *how*.  Queue mode
    hands the request to a job queue and returns immediately, direct mode
    runs the workflow in-process and records its result.  The strategy is
    chosen once when the worker is built, never per run.

::

    ExecutionRequest ──► QueueExecutionSink  ──► JobQueue.enqueue()  (run: pending + job_id)
                     └─► DirectExecutionSink ──► WorkflowRunner()     (run: running → completed)

Queue backends:
    InMemoryJobQueue   collected payloads (tests, development)
    CeleryJobQueue     ``app.send_task`` (requires ``pip install flowsched[celery]``)

Tags:
    flowsched, scheduling, execution, queue, celery, sinks
"""

from __future__ import annotations

import itertools
import json
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from flowsched.core.enums import RunStatus
from flowsched.core.logging import get_logger
from flowsched.core.timestamps import utc_now

if TYPE_CHECKING:
    from flowsched.core.scheduling.repository import ScheduleRepository

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Request / job types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionRequest:
    """Everything the workflow engine needs to run one scheduled execution."""

    target_definition: Any
    execution_id: str
    input_payload: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    tenant_id: str = "1"
    user_id: str = "0"

    def to_payload(self) -> dict[str, Any]:
        """JSON-serializable job payload for queue mode."""
        return {
            "target_definition": self.target_definition,
            "execution_id": self.execution_id,
            "input_payload": self.input_payload,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "is_internal": True,
            "schedule_meta": self.metadata,
        }


@dataclass(frozen=True)
class JobHandle:
    """Identifier of an enqueued job."""

    id: str


@runtime_checkable
class JobQueue(Protocol):
    def enqueue(self, payload: dict[str, Any]) -> JobHandle: ...


@runtime_checkable
class WorkflowRunner(Protocol):
    """Workflow engine entry point: run a request, return a JSON-able result."""

    def __call__(self, request: ExecutionRequest) -> Any: ...


class InMemoryJobQueue:
    """Keeps enqueued payloads in a list."""

    def __init__(self) -> None:
        self.jobs: list[tuple[JobHandle, dict[str, Any]]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def enqueue(self, payload: dict[str, Any]) -> JobHandle:
        with self._lock:
            handle = JobHandle(id=f"job-{next(self._ids)}")
            self.jobs.append((handle, payload))
        return handle


def _require_celery():
    """Validate that celery is installed."""
    try:
        import celery

        return celery
    except ImportError:
        raise ImportError(
            "Celery is required for CeleryJobQueue. "
            "Install it with: pip install flowsched[celery]"
        ) from None


class CeleryJobQueue:
    """Enqueue scheduled executions as Celery tasks.

    Example::

        >>> queue = CeleryJobQueue(broker_url="redis://localhost:6379/1")
        >>> handle = queue.enqueue(request.to_payload())
    """

    def __init__(
        self,
        celery_app: Any = None,
        *,
        broker_url: str | None = None,
        task_name: str = "flowsched.execute_prediction",
        queue: str | None = None,
    ) -> None:
        if celery_app is None:
            celery = _require_celery()
            if broker_url is None:
                raise ValueError("CeleryJobQueue needs celery_app or broker_url")
            celery_app = celery.Celery("flowsched", broker=broker_url)
        self._celery = celery_app
        self.task_name = task_name
        self.queue = queue

    def enqueue(self, payload: dict[str, Any]) -> JobHandle:
        options: dict[str, Any] = {}
        if self.queue:
            options["queue"] = self.queue
        result = self._celery.send_task(self.task_name, kwargs={"job": payload}, **options)
        return JobHandle(id=str(result.id))


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


@runtime_checkable
class ExecutionSink(Protocol):
    name: str

    def submit(
        self,
        request: ExecutionRequest,
        run_id: str,
        repository: ScheduleRepository,
    ) -> None: ...


class QueueExecutionSink:
    """Queue mode: enqueue and record the job id; the run stays pending."""

    name = "queue"

    def __init__(self, queue: JobQueue, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.queue = queue
        self._clock = clock

    def submit(self, request: ExecutionRequest, run_id: str, repository: ScheduleRepository) -> None:
        started_at = self._clock()
        job = self.queue.enqueue(request.to_payload())
        repository.update_run(
            run_id, job_id=job.id, status=RunStatus.PENDING, started_at=started_at
        )
        logger.info("job_enqueued", run_id=run_id, job_id=job.id)


class DirectExecutionSink:
    """Direct mode: call the workflow runner synchronously and store its result."""

    name = "direct"

    def __init__(
        self,
        runner: WorkflowRunner | Callable[[ExecutionRequest], Any],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.runner = runner
        self._clock = clock

    def submit(self, request: ExecutionRequest, run_id: str, repository: ScheduleRepository) -> None:
        started_at = self._clock()
        repository.update_run(run_id, status=RunStatus.RUNNING, started_at=started_at)

        result = self.runner(request)

        completed_at = self._clock()
        duration_ms = int((completed_at - started_at).total_seconds() * 1000)
        recorded = repository.finalize_run(
            run_id,
            RunStatus.COMPLETED,
            completed_at=completed_at,
            duration_ms=duration_ms,
            result=json.dumps(result, default=str),
        )
        if not recorded:
            # the run was already finalized, e.g. failed at timeout
            logger.warning("direct_execution_result_discarded", run_id=run_id, duration_ms=duration_ms)
            return
        logger.info("direct_execution_completed", run_id=run_id, duration_ms=duration_ms)
