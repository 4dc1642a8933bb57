"""Scheduler worker - the self-rescheduling poll loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER WORKER                                                             │
│                                                                               │
│   start() ──► daemon thread:  while not stop_event.wait(poll_interval):      │
│                                   poll_cycle()                               │
│                                                                               │
│   poll_cycle()                                                                │
│      ├── complete_ended_schedules(now)            housekeeping               │
│      ├── get_due_schedules(now, batch_size)                                  │
│      └── for each schedule (sequential, errors isolated):                    │
│             has_ended?        ──► status=completed              [ended]      │
│             acquire_lock      ──► None: skip           [locked-elsewhere]    │
│             re-read + is_due  ──► stale: skip                                │
│             execute           ──► success: run_count+1, next_run_at          │
│                                   failure: failure_count+1, retry/failed     │
│             release_lock      (always)                          [updated]    │
│                                                                               │
│   stop() ──► stop_event.set(), join, lock_manager.shutdown()                 │
└──────────────────────────────────────────────────────────────────────────────┘

The next wait only begins after the current cycle returns, so cycles of
one worker never overlap.  Loop state lives on the worker instance; any
number of workers can run in one process.

Tags:
    flowsched, scheduling, worker, polling, threading, retry
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from flowsched.core.enums import ScheduleStatus
from flowsched.core.errors import ConfigurationError, error_message
from flowsched.core.logging import LogContext, get_logger
from flowsched.core.models.scheduler import Schedule
from flowsched.core.scheduling.evaluator import ScheduleEvaluator
from flowsched.core.scheduling.executor import ScheduleExecutor
from flowsched.core.scheduling.lock_manager import LockManager
from flowsched.core.scheduling.repository import ScheduleRepository
from flowsched.core.timestamps import to_iso8601, utc_now

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class WorkerState(str, Enum):
    """Observable position of the worker in its cycle."""

    IDLE = "idle"
    POLLING = "polling"
    ENDED = "ended"
    LOCKED_ELSEWHERE = "locked-elsewhere"
    EXECUTING = "executing"
    UPDATED = "updated"
    STOPPED = "stopped"


class Outcome(str, Enum):
    """What happened to one due schedule in a cycle."""

    ENDED = "ended"
    SKIPPED = "skipped"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass
class WorkerStats:
    """Counters accumulated since the worker was created."""

    cycles: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    completed: int = 0
    last_cycle_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "completed": self.completed,
            "last_cycle_at": to_iso8601(self.last_cycle_at),
            "last_error": self.last_error,
        }


@dataclass
class WorkerHealth:
    """Point-in-time health of a worker."""

    healthy: bool
    state: WorkerState
    running: bool
    poll_interval_seconds: float
    stats: WorkerStats = field(default_factory=WorkerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "state": self.state.value,
            "running": self.running,
            "poll_interval_seconds": self.poll_interval_seconds,
            "stats": self.stats.to_dict(),
        }


class _LoopState:
    """Timer state owned by exactly one worker."""

    def __init__(self) -> None:
        self.running = False
        self.stop_event = threading.Event()
        self.thread: threading.Thread | None = None
        self.lock = threading.Lock()
        # bumped on every start; a loop only clears state for its own generation
        self.generation = 0
        self.loop_active = False
        self.shutdown_deferred = False


class SchedulerWorker:
    """Polls for due schedules and executes each under a per-schedule lease.

    Example:
        >>> worker = SchedulerWorker(repo, lock_manager, executor, poll_interval_seconds=5)
        >>> worker.start()
        >>> # ... later ...
        >>> worker.stop()
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        lock_manager: LockManager,
        executor: ScheduleExecutor,
        *,
        evaluator: ScheduleEvaluator | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = 100,
        clock: Callable[[], datetime] = utc_now,
        name: str = "flowsched-worker",
    ) -> None:
        self.repository = repository
        self.lock_manager = lock_manager
        self.executor = executor
        self.evaluator = evaluator or ScheduleEvaluator()
        self.poll_interval_seconds = poll_interval_seconds
        self.batch_size = batch_size
        self.name = name
        self._clock = clock
        self._loop = _LoopState()
        self._stats = WorkerStats()
        self._stats_lock = threading.Lock()
        self._state = WorkerState.IDLE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._loop.running

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    def start(self) -> None:
        """Initialize the lock manager and start polling on a daemon thread."""
        with self._loop.lock:
            if self._loop.running:
                logger.warning("scheduler_worker_already_running", worker=self.name)
                return
            self.lock_manager.initialize()
            self._loop.stop_event.clear()
            self._loop.running = True
            self._state = WorkerState.IDLE
            generation = self._begin_loop()
            self._loop.thread = threading.Thread(
                target=self._run_loop, args=(generation,), daemon=True, name=self.name
            )
            self._loop.thread.start()

    def stop(self, timeout: float | None = 30.0) -> None:
        """Stop polling, wait for the current cycle, and release resources.

        Args:
            timeout: Max seconds to wait for an in-flight cycle to finish
        """
        with self._loop.lock:
            if not self._loop.running:
                return
            self._loop.running = False
            self._loop.stop_event.set()
            thread = self._loop.thread
            self._loop.thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

        with self._loop.lock:
            # a cycle still in flight releases its own lease; the loop shuts
            # the lock manager down once it returns
            deferred = self._loop.loop_active
            self._loop.shutdown_deferred = deferred

        if deferred:
            logger.warning("scheduler_worker_stop_timeout", worker=self.name, lock_shutdown="deferred")
        else:
            self.lock_manager.shutdown()
        self._state = WorkerState.STOPPED
        logger.info("scheduler_worker_stopped", worker=self.name)

    def run_forever(self) -> None:
        """Poll in the calling thread until stopped or signalled.

        SIGINT / SIGTERM trigger a graceful stop when called from the main
        thread.
        """
        with self._loop.lock:
            if self._loop.running:
                logger.warning("scheduler_worker_already_running", worker=self.name)
                return
            self.lock_manager.initialize()
            self._loop.stop_event.clear()
            self._loop.running = True
            self._state = WorkerState.IDLE
            generation = self._begin_loop()
            # stop() from another thread joins this one
            self._loop.thread = threading.current_thread()

        previous: dict[int, Any] = {}
        if threading.current_thread() is threading.main_thread():
            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, self._handle_signal)
        try:
            self._run_loop(generation)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            self.stop()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info("scheduler_worker_signal", worker=self.name, signal=signal.Signals(signum).name)
        self._loop.stop_event.set()

    def _begin_loop(self) -> int:
        """Mark a new loop active; caller holds ``self._loop.lock``."""
        self._loop.generation += 1
        self._loop.loop_active = True
        self._loop.shutdown_deferred = False
        return self._loop.generation

    def _run_loop(self, generation: int) -> None:
        logger.info(
            "scheduler_worker_started",
            worker=self.name,
            poll_interval_seconds=self.poll_interval_seconds,
        )
        try:
            while not self._loop.stop_event.wait(self.poll_interval_seconds):
                self.poll_cycle()
        finally:
            self._end_loop(generation)

    def _end_loop(self, generation: int) -> None:
        with self._loop.lock:
            if generation != self._loop.generation:
                return
            self._loop.loop_active = False
            deferred = self._loop.shutdown_deferred
            self._loop.shutdown_deferred = False
        if deferred:
            self.lock_manager.shutdown()
            logger.info("scheduler_worker_locks_released", worker=self.name)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def poll_cycle(self) -> int:
        """Run one poll cycle.

        Returns:
            Number of schedules that were executed (successfully or not)
        """
        self._state = WorkerState.POLLING
        now = self._clock()
        executed = 0
        try:
            self.repository.complete_ended_schedules(now)
            due = self.repository.get_due_schedules(now, limit=self.batch_size)
            if due:
                logger.info("due_schedules_found", worker=self.name, count=len(due))
            else:
                logger.debug("no_due_schedules", worker=self.name)

            for schedule in due:
                try:
                    with LogContext(worker=self.name, schedule_id=schedule.id):
                        outcome = self._process_schedule(schedule)
                except Exception as e:
                    logger.exception("schedule_processing_failed", schedule_id=schedule.id)
                    self._record_error(e)
                    continue
                if outcome in (Outcome.EXECUTED, Outcome.FAILED):
                    executed += 1
        except Exception as e:
            logger.exception("poll_cycle_failed", worker=self.name)
            self._record_error(e)
        finally:
            with self._stats_lock:
                self._stats.cycles += 1
                self._stats.last_cycle_at = now
            self._state = WorkerState.IDLE
        return executed

    def _process_schedule(self, schedule: Schedule) -> Outcome:
        log = logger.bind(schedule_id=schedule.id)
        now = self._clock()

        if self.evaluator.has_ended(schedule, now):
            self._state = WorkerState.ENDED
            self.repository.update_schedule(schedule.id, status=ScheduleStatus.COMPLETED)
            log.info("schedule_ended")
            self._count("completed")
            return Outcome.ENDED

        lease = self.lock_manager.acquire_lock(schedule.id)
        if lease is None:
            self._state = WorkerState.LOCKED_ELSEWHERE
            log.debug("schedule_locked_elsewhere")
            self._count("skipped")
            return Outcome.SKIPPED

        try:
            # Another worker may have run it between our query and our lease.
            current = self.repository.get_schedule(schedule.id)
            if (
                current is None
                or current.status != ScheduleStatus.ACTIVE
                or not self.evaluator.is_due(current, now)
            ):
                log.debug("schedule_no_longer_due")
                self._count("skipped")
                return Outcome.SKIPPED

            self._state = WorkerState.EXECUTING
            try:
                run_id = self.executor.execute(current)
            except Exception as e:
                self._record_failure(current, e)
                return Outcome.FAILED

            return self._record_success(current, run_id)
        finally:
            self.lock_manager.release_lock(lease)
            self._state = WorkerState.UPDATED

    def _record_success(self, schedule: Schedule, run_id: str) -> Outcome:
        log = logger.bind(schedule_id=schedule.id, run_id=run_id)
        finished = self._clock()
        updates: dict[str, Any] = {
            "last_run_at": finished,
            "run_count": schedule.run_count + 1,
        }

        try:
            next_run = self.evaluator.calculate_next_run(schedule, finished)
        except ConfigurationError as e:
            updates["failure_count"] = schedule.failure_count + 1
            updates["status"] = ScheduleStatus.FAILED
            self.repository.update_schedule(schedule.id, **updates)
            log.error("schedule_misconfigured", error=e.message)
            self._record_error(e)
            return Outcome.FAILED

        if next_run is None:
            updates["status"] = ScheduleStatus.COMPLETED
        else:
            updates["next_run_at"] = next_run
        self.repository.update_schedule(schedule.id, **updates)

        self._count("processed")
        if next_run is None:
            self._count("completed")
        log.info("schedule_executed", next_run_at=to_iso8601(next_run))
        return Outcome.EXECUTED

    def _record_failure(self, schedule: Schedule, error: Exception) -> None:
        log = logger.bind(schedule_id=schedule.id)
        failures = schedule.failure_count + 1
        updates: dict[str, Any] = {"failure_count": failures}

        if failures >= schedule.max_retries:
            updates["status"] = ScheduleStatus.FAILED
            log.warning("schedule_max_retries_exceeded", failure_count=failures)
        elif schedule.retry_delay.total_seconds() > 0:
            updates["next_run_at"] = self._clock() + schedule.retry_delay

        self.repository.update_schedule(schedule.id, **updates)
        log.error("schedule_execution_error", error=error_message(error), failure_count=failures)
        self._record_error(error)

    # ------------------------------------------------------------------
    # Stats / health
    # ------------------------------------------------------------------

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def _record_error(self, error: BaseException) -> None:
        with self._stats_lock:
            self._stats.failed += 1
            self._stats.last_error = error_message(error)

    def health(self) -> WorkerHealth:
        """Return structured health status."""
        thread = self._loop.thread
        running = self._loop.running
        alive = thread.is_alive() if thread is not None else running
        with self._stats_lock:
            stats = WorkerStats(**vars(self._stats))
        return WorkerHealth(
            healthy=running and alive,
            state=self._state,
            running=running,
            poll_interval_seconds=self.poll_interval_seconds,
            stats=stats,
        )
