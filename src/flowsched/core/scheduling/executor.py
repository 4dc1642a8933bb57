"""Schedule executor - one execution of one schedule.

Manifesto:
    Every attempt to fire a schedule leaves a run record, whatever
    happens.  The executor creates the run, resolves the target, hands an
    :class:`ExecutionRequest` to the configured sink, and races all of it
    against a hard timeout so a hung workflow can't stall the worker loop.

Flow::

    execute(schedule)
      ├── create_run (pending, attempt 1)
      ├── [timeout race on a helper thread]
      │     resolve_target → ExecutionRequest → sink.submit
      ├── success → run_id
      └── failure / timeout → finalize_run(failed, error_message) → raise

    On timeout the helper thread is *not* cancelled.  It may finish later,
    but ``finalize_run`` only touches non-terminal runs, so the failed
    outcome recorded at timeout stands.  The helper is a daemon thread, so
    a hung workflow never keeps the process alive at shutdown.

Tags:
    flowsched, scheduling, executor, timeout, run-history

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
import threading
from concurrent.futures import Future, wait
from datetime import datetime

from flowsched.core.enums import RunStatus
from flowsched.core.errors import (
    ExecutionError,
    ExecutionTimeoutError,
    FlowschedError,
    error_message,
)
from flowsched.core.logging import get_logger
from flowsched.core.models.scheduler import Schedule
from flowsched.core.scheduling.repository import ScheduleRepository
from flowsched.core.scheduling.sinks import ExecutionRequest, ExecutionSink
from flowsched.core.scheduling.targets import TargetLoader, resolve_target
from flowsched.core.timestamps import to_iso8601, utc_now

logger = get_logger(__name__)

DEFAULT_EXECUTION_TIMEOUT = 300.0


class ScheduleExecutor:
    """Runs one schedule through an execution sink with a hard timeout.

    Example:
        >>> executor = ScheduleExecutor(repo, DirectExecutionSink(run_flow),
        ...                             target_loader=DatabaseTargetLoader(conn))
        >>> run_id = executor.execute(schedule)
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        sink: ExecutionSink,
        *,
        target_loader: TargetLoader | None = None,
        timeout_seconds: float = DEFAULT_EXECUTION_TIMEOUT,
        tenant_id: str = "1",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.sink = sink
        self.target_loader = target_loader
        self.timeout_seconds = timeout_seconds
        self.tenant_id = tenant_id
        self._clock = clock

    def execute(self, schedule: Schedule) -> str:
        """Execute ``schedule`` once and return the run id.

        Raises:
            ExecutionTimeoutError: the execution did not finish in time
            ExecutionError: the execution failed (non-engine errors are
                wrapped, engine errors such as NotFoundError pass through)
        """
        run = self.repository.create_run(schedule.id, scheduled_at=self._clock())
        log = logger.bind(schedule_id=schedule.id, run_id=run.id)
        log.info("schedule_execution_started", mode=self.sink.name)

        future = self._start_execution(schedule, run.id, run.scheduled_at)
        done, _ = wait([future], timeout=self.timeout_seconds)
        try:
            if done:
                future.result()
        except FlowschedError as e:
            e.with_context(schedule_id=schedule.id, run_id=run.id)
            self._fail_run(run.id, e)
            log.error("schedule_execution_failed", error=e.message, category=e.category.value)
            raise
        except Exception as e:
            self._fail_run(run.id, e)
            log.error("schedule_execution_failed", error=error_message(e))
            raise ExecutionError(error_message(e), cause=e).with_context(
                schedule_id=schedule.id, run_id=run.id
            ) from e

        if not done:
            error = ExecutionTimeoutError(self.timeout_seconds).with_context(
                schedule_id=schedule.id, run_id=run.id
            )
            self._fail_run(run.id, error)
            future.add_done_callback(lambda f: _log_late_outcome(f, schedule.id, run.id))
            log.error("schedule_execution_timed_out", timeout_seconds=self.timeout_seconds)
            raise error

        log.info("schedule_execution_submitted", mode=self.sink.name)
        return run.id

    def _start_execution(self, schedule: Schedule, run_id: str, scheduled_at: datetime) -> Future[None]:
        """Run ``_execute_internal`` on a daemon thread and return its future."""
        future: Future[None] = Future()

        def _target() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                self._execute_internal(schedule, run_id, scheduled_at)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(None)

        thread = threading.Thread(target=_target, name=f"flowsched-exec-{run_id}", daemon=True)
        thread.start()
        return future

    def _execute_internal(self, schedule: Schedule, run_id: str, scheduled_at: datetime) -> None:
        definition = resolve_target(schedule, self.target_loader)
        request = ExecutionRequest(
            target_definition=definition,
            execution_id=f"schedule-{schedule.id}-{run_id}",
            input_payload=schedule.payload,
            metadata={
                "schedule_id": schedule.id,
                "run_id": run_id,
                "scheduled_at": to_iso8601(scheduled_at),
            },
            tenant_id=self.tenant_id,
            user_id=str(schedule.created_by) if schedule.created_by else "0",
        )
        self.sink.submit(request, run_id, self.repository)

    def _fail_run(self, run_id: str, error: BaseException) -> None:
        self.repository.finalize_run(
            run_id,
            RunStatus.FAILED,
            completed_at=self._clock(),
            error_message=error_message(error),
        )


def _log_late_outcome(future: Future, schedule_id: str, run_id: str) -> None:
    error = future.exception()
    logger.warning(
        "timed_out_execution_finished",
        schedule_id=schedule_id,
        run_id=run_id,
        error=error_message(error) if error else None,
    )
