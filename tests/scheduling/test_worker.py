"""Tests for SchedulerWorker."""

import threading
import time
from datetime import timedelta

from structlog.testing import capture_logs

from flowsched.core.enums import RunStatus, ScheduleStatus, ScheduleType
from flowsched.core.errors import StoreError
from flowsched.core.scheduling.executor import ScheduleExecutor
from flowsched.core.scheduling.lock_manager import LockManager
from flowsched.core.scheduling.sinks import DirectExecutionSink
from flowsched.core.scheduling.worker import Outcome, SchedulerWorker, WorkerState
from tests._support.builders import NOW


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestPollCycleSuccess:
    """Successful executions advance the schedule."""

    def test_interval_schedule_advances(self, worker, repository, add_schedule, lease_backend):
        schedule = add_schedule(interval_ms=60_000)

        assert worker.poll_cycle() == 1

        updated = repository.get_schedule(schedule.id)
        assert updated.status is ScheduleStatus.ACTIVE
        assert updated.run_count == 1
        assert updated.failure_count == 0
        assert updated.last_run_at == NOW
        assert updated.next_run_at == NOW + timedelta(minutes=1)
        (run,) = repository.list_runs(schedule.id)
        assert run.status is RunStatus.COMPLETED
        assert lease_backend.holder(f"schedule:lock:{schedule.id}") is None

    def test_cron_schedule_advances(self, worker, repository, add_schedule):
        schedule = add_schedule(
            schedule_type=ScheduleType.CRON, interval_ms=None, cron_expression="0 * * * *"
        )
        worker.poll_cycle()
        assert repository.get_schedule(schedule.id).next_run_at == NOW + timedelta(hours=1)

    def test_one_time_schedule_completes(self, worker, repository, add_schedule):
        schedule = add_schedule(schedule_type=ScheduleType.ONE_TIME, interval_ms=None)

        assert worker.poll_cycle() == 1

        updated = repository.get_schedule(schedule.id)
        assert updated.status is ScheduleStatus.COMPLETED
        assert updated.run_count == 1
        assert worker.stats.completed == 1
        assert worker.poll_cycle() == 0

    def test_not_due_schedules_untouched(self, worker, repository, add_schedule, runner):
        schedule = add_schedule(next_run_at=NOW + timedelta(minutes=5))
        assert worker.poll_cycle() == 0
        assert runner.requests == []
        assert repository.list_runs(schedule.id) == []

    def test_success_keeps_failure_count(self, worker, repository, add_schedule):
        """A success after earlier failures does not reset the counter."""
        schedule = add_schedule(failure_count=2, max_retries=5)
        worker.poll_cycle()
        assert repository.get_schedule(schedule.id).failure_count == 2

    def test_misconfigured_schedule_fails_after_run(self, worker, repository, add_schedule):
        """A cadence that cannot be evaluated marks the schedule failed."""
        schedule = add_schedule(
            schedule_type=ScheduleType.CRON, interval_ms=None, cron_expression="bad cron"
        )

        assert worker.poll_cycle() == 1

        updated = repository.get_schedule(schedule.id)
        assert updated.status is ScheduleStatus.FAILED
        assert updated.failure_count == 1
        assert updated.run_count == 1
        assert repository.list_runs(schedule.id)[0].status is RunStatus.COMPLETED
        assert worker.stats.failed == 1


class TestPollCycleFailure:
    """Failures count against the retry budget."""

    def test_failure_schedules_retry(self, worker, repository, add_schedule, runner):
        schedule = add_schedule(max_retries=3, retry_delay_ms=30_000)
        runner.fail_for.add(schedule.id)

        assert worker.poll_cycle() == 1

        updated = repository.get_schedule(schedule.id)
        assert updated.status is ScheduleStatus.ACTIVE
        assert updated.failure_count == 1
        assert updated.run_count == 0
        assert updated.next_run_at == NOW + timedelta(seconds=30)
        (run,) = repository.list_runs(schedule.id)
        assert run.status is RunStatus.FAILED
        assert run.error_message == f"workflow failed for {schedule.id}"
        assert worker.stats.failed == 1
        assert worker.stats.last_error == f"workflow failed for {schedule.id}"

    def test_retry_fires_after_delay(self, worker, repository, add_schedule, runner, clock):
        schedule = add_schedule(max_retries=3, retry_delay_ms=30_000)
        runner.fail_for.add(schedule.id)
        worker.poll_cycle()

        clock.advance(seconds=10)
        assert worker.poll_cycle() == 0
        clock.advance(seconds=20)
        assert worker.poll_cycle() == 1
        assert repository.get_schedule(schedule.id).failure_count == 2

    def test_zero_retry_delay_keeps_next_run(self, worker, repository, add_schedule, runner):
        schedule = add_schedule(max_retries=3, retry_delay_ms=0)
        runner.fail_for.add(schedule.id)
        worker.poll_cycle()
        assert repository.get_schedule(schedule.id).next_run_at == schedule.next_run_at

    def test_max_retries_marks_failed(self, worker, repository, add_schedule, runner):
        schedule = add_schedule(max_retries=3, failure_count=2)
        runner.fail_for.add(schedule.id)

        worker.poll_cycle()

        updated = repository.get_schedule(schedule.id)
        assert updated.status is ScheduleStatus.FAILED
        assert updated.failure_count == 3
        assert worker.poll_cycle() == 0

    def test_terminal_failure_is_logged(self, worker, add_schedule, runner):
        schedule = add_schedule(max_retries=1)
        runner.fail_for.add(schedule.id)

        with capture_logs() as logs:
            worker.poll_cycle()

        exceeded = [e for e in logs if e["event"] == "schedule_max_retries_exceeded"]
        assert len(exceeded) == 1
        assert exceeded[0]["schedule_id"] == schedule.id
        assert exceeded[0]["log_level"] == "warning"

    def test_failures_are_isolated(self, worker, repository, add_schedule, runner):
        """One failing schedule does not stop the rest of the batch."""
        broken = add_schedule(next_run_at=NOW - timedelta(minutes=2))
        healthy = add_schedule(next_run_at=NOW - timedelta(minutes=1))
        runner.fail_for.add(broken.id)

        assert worker.poll_cycle() == 2

        assert repository.get_schedule(broken.id).failure_count == 1
        assert repository.get_schedule(healthy.id).run_count == 1

    def test_lease_released_after_failure(self, worker, add_schedule, runner, lease_backend):
        schedule = add_schedule()
        runner.fail_for.add(schedule.id)
        worker.poll_cycle()
        assert lease_backend.holder(f"schedule:lock:{schedule.id}") is None

    def test_cycle_error_is_contained(self, worker, repository, monkeypatch):
        def broken(now, limit=100):
            raise StoreError("database is locked")

        monkeypatch.setattr(repository, "get_due_schedules", broken)

        assert worker.poll_cycle() == 0
        assert worker.stats.cycles == 1
        assert worker.stats.failed == 1
        assert worker.stats.last_error == "database is locked"
        assert worker.state is WorkerState.IDLE


class TestLeaseAndStaleness:
    """Lease contention and stale snapshots."""

    def test_locked_elsewhere_is_skipped(
        self, worker, repository, add_schedule, lease_backend, clock, runner
    ):
        schedule = add_schedule()
        other = LockManager(lease_backend, clock=clock)
        other.initialize()
        lease = other.acquire_lock(schedule.id)

        assert worker.poll_cycle() == 0

        assert runner.requests == []
        assert repository.list_runs(schedule.id) == []
        assert worker.stats.skipped == 1
        assert lease_backend.holder(lease.key) == lease.token

    def test_stale_snapshot_is_skipped(self, worker, repository, add_schedule, runner):
        """A schedule another worker already advanced is not run again."""
        snapshot = add_schedule()
        repository.update_schedule(snapshot.id, next_run_at=NOW + timedelta(minutes=1))

        assert worker._process_schedule(snapshot) is Outcome.SKIPPED
        assert runner.requests == []

    def test_paused_after_query_is_skipped(self, worker, repository, add_schedule, runner):
        snapshot = add_schedule()
        repository.update_schedule(snapshot.id, status=ScheduleStatus.PAUSED)

        assert worker._process_schedule(snapshot) is Outcome.SKIPPED
        assert runner.requests == []

    def test_ended_snapshot_completes(self, worker, repository, add_schedule, runner):
        snapshot = add_schedule(ends_at=NOW - timedelta(seconds=1))

        assert worker._process_schedule(snapshot) is Outcome.ENDED
        assert repository.get_schedule(snapshot.id).status is ScheduleStatus.COMPLETED
        assert runner.requests == []

    def test_housekeeping_completes_ended_schedules(self, worker, repository, add_schedule):
        schedule = add_schedule(ends_at=NOW - timedelta(hours=1), next_run_at=None)
        worker.poll_cycle()
        assert repository.get_schedule(schedule.id).status is ScheduleStatus.COMPLETED

    def test_batch_size_limits_cycle(self, worker, add_schedule):
        for _ in range(3):
            add_schedule()
        worker.batch_size = 2
        assert worker.poll_cycle() == 2
        assert worker.poll_cycle() == 1


class TestWorkerLifecycle:
    """start / stop / run_forever / health."""

    def test_health_before_start(self, worker):
        health = worker.health()
        assert health.healthy is False
        assert health.state is WorkerState.IDLE
        assert health.to_dict()["stats"]["cycles"] == 0

    def test_start_polls_and_stop(self, worker, repository, add_schedule, lock_manager):
        schedule = add_schedule()

        worker.start()
        assert worker.is_running is True
        assert wait_for(lambda: repository.get_schedule(schedule.id).run_count == 1)
        assert worker.health().healthy is True

        worker.stop()
        assert worker.is_running is False
        assert worker.state is WorkerState.STOPPED
        assert worker.health().healthy is False
        assert lock_manager.initialized is False

    def test_double_start_ignored(self, worker):
        worker.start()
        worker.start()
        assert worker.is_running is True
        worker.stop()

    def test_stop_when_not_running(self, worker):
        worker.stop()
        assert worker.is_running is False

    def test_run_forever_in_thread(self, worker):
        thread = threading.Thread(target=worker.run_forever, daemon=True)
        thread.start()
        assert wait_for(lambda: worker.stats.cycles >= 2)

        worker.stop()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert worker.state is WorkerState.STOPPED

    def test_stop_timeout_defers_lock_shutdown(
        self, repository, add_schedule, lock_manager, lease_backend, clock
    ):
        """An in-flight cycle still releases its lease after stop() gives up waiting."""
        entered = threading.Event()
        release = threading.Event()

        def blocking_runner(request):
            entered.set()
            release.wait(5)
            return {"text": "ok"}

        executor = ScheduleExecutor(
            repository, DirectExecutionSink(blocking_runner, clock=clock), timeout_seconds=10, clock=clock
        )
        worker = SchedulerWorker(
            repository, lock_manager, executor, poll_interval_seconds=0.01, clock=clock
        )
        schedule = add_schedule()
        key = f"schedule:lock:{schedule.id}"

        worker.start()
        assert entered.wait(5)
        with capture_logs() as logs:
            worker.stop(timeout=0.05)

        assert worker.state is WorkerState.STOPPED
        assert lock_manager.initialized is True
        assert lease_backend.holder(key) is not None
        assert any(e["event"] == "scheduler_worker_stop_timeout" for e in logs)

        release.set()
        assert wait_for(lambda: not lock_manager.initialized)
        assert lease_backend.holder(key) is None
        assert repository.get_schedule(schedule.id).run_count == 1

    def test_stats_to_dict(self, worker, add_schedule):
        add_schedule()
        worker.poll_cycle()
        stats = worker.stats.to_dict()
        assert stats["cycles"] == 1
        assert stats["processed"] == 1
        assert stats["last_cycle_at"] == "2025-01-15T12:00:00.000000+00:00"


def test_workers_are_independent(repository, executor, clock, lease_backend):
    """Two workers in one process keep separate loop state."""
    workers = [
        SchedulerWorker(
            repository,
            LockManager(lease_backend, clock=clock),
            executor,
            poll_interval_seconds=0.01,
            clock=clock,
            name=f"w{i}",
        )
        for i in range(2)
    ]
    for w in workers:
        w.start()
    assert wait_for(lambda: all(w.stats.cycles >= 1 for w in workers))
    workers[0].stop()
    assert workers[1].is_running is True
    workers[1].stop()
