"""Fixtures for scheduler component tests."""

from datetime import timedelta

import pytest

from flowsched.core.scheduling.executor import ScheduleExecutor
from flowsched.core.scheduling.lease_backends import InMemoryLeaseBackend
from flowsched.core.scheduling.lock_manager import LockManager
from flowsched.core.scheduling.sinks import DirectExecutionSink
from flowsched.core.scheduling.targets import InMemoryTargetLoader
from flowsched.core.scheduling.worker import SchedulerWorker
from tests._support.runners import RecordingRunner


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def lease_backend():
    return InMemoryLeaseBackend()


@pytest.fixture
def lock_manager(lease_backend, clock):
    manager = LockManager(lease_backend, ttl=timedelta(seconds=60), clock=clock)
    manager.initialize()
    return manager


@pytest.fixture
def executor(repository, runner, clock):
    return ScheduleExecutor(
        repository,
        DirectExecutionSink(runner, clock=clock),
        target_loader=InMemoryTargetLoader(),
        timeout_seconds=5.0,
        clock=clock,
    )


@pytest.fixture
def worker(repository, lock_manager, executor, clock):
    worker = SchedulerWorker(
        repository,
        lock_manager,
        executor,
        poll_interval_seconds=0.01,
        clock=clock,
    )
    yield worker
    worker.stop(timeout=5)
