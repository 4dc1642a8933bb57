"""Tests for the settings-driven factory functions."""

import json
from unittest.mock import MagicMock

import pytest

from flowsched.core.dialect import PostgreSQLDialect, SQLiteDialect
from flowsched.core.errors import ConfigurationError
from flowsched.core.scheduling.factory import (
    create_execution_sink,
    create_lease_backend,
    create_worker,
    load_callable,
)
from flowsched.core.scheduling.lease_backends import (
    DatabaseLeaseBackend,
    InMemoryLeaseBackend,
    RedisLeaseBackend,
)
from flowsched.core.scheduling.sinks import (
    DirectExecutionSink,
    InMemoryJobQueue,
    QueueExecutionSink,
)
from flowsched.core.scheduling.targets import DatabaseTargetLoader, InMemoryTargetLoader
from flowsched.core.settings import SchedulerSettings
from tests._support.builders import build_schedule
from tests._support.runners import RecordingRunner


class _PsycopgConnection(MagicMock):
    """Stand-in whose type lives in a psycopg module."""


_PsycopgConnection.__module__ = "psycopg.connection"


class TestLoadCallable:
    """Test load_callable import paths."""

    def test_colon_path(self):
        assert load_callable("json:dumps") is json.dumps

    def test_dotted_path(self):
        assert load_callable("json.dumps") is json.dumps

    @pytest.mark.parametrize("path", ["no_such_module_xyz:run", "json:no_such_attr", "dumps"])
    def test_bad_paths(self, path):
        with pytest.raises(ConfigurationError):
            load_callable(path)

    def test_not_callable(self):
        with pytest.raises(ConfigurationError, match="not callable"):
            load_callable("json:__name__")


class TestCreateLeaseBackend:
    """Test create_lease_backend."""

    def test_redis(self):
        settings = SchedulerSettings(lock_backend="redis", redis_url="redis://cache:6379/4")
        backend = create_lease_backend(settings)
        assert isinstance(backend, RedisLeaseBackend)
        assert backend.url == "redis://cache:6379/4"

    def test_database(self, db_conn):
        backend = create_lease_backend(SchedulerSettings(lock_backend="database"), db_conn)
        assert isinstance(backend, DatabaseLeaseBackend)

    def test_database_needs_connection(self):
        with pytest.raises(ConfigurationError):
            create_lease_backend(SchedulerSettings(lock_backend="database"))

    def test_memory(self):
        backend = create_lease_backend(SchedulerSettings(lock_backend="memory"))
        assert isinstance(backend, InMemoryLeaseBackend)


class TestCreateExecutionSink:
    """Test create_execution_sink."""

    def test_queue_mode(self):
        queue = InMemoryJobQueue()
        sink = create_execution_sink(SchedulerSettings(execution_mode="queue"), job_queue=queue)
        assert isinstance(sink, QueueExecutionSink)
        assert sink.queue is queue

    def test_direct_mode_with_runner(self):
        runner = RecordingRunner()
        sink = create_execution_sink(SchedulerSettings(), runner=runner)
        assert isinstance(sink, DirectExecutionSink)
        assert sink.runner is runner

    def test_direct_mode_runner_from_settings(self):
        sink = create_execution_sink(SchedulerSettings(runner="json:dumps"))
        assert sink.runner is json.dumps

    def test_direct_mode_without_runner(self):
        with pytest.raises(ConfigurationError, match="FLOWSCHED_RUNNER"):
            create_execution_sink(SchedulerSettings())


class TestCreateWorker:
    """Test create_worker wiring."""

    def test_wired_worker_executes(self, db_conn, repository, clock):
        schedule = repository.add_schedule(build_schedule())
        runner = RecordingRunner()
        settings = SchedulerSettings(
            lock_backend="memory", poll_interval_seconds=2, poll_batch_size=10
        )

        worker = create_worker(
            settings,
            conn=db_conn,
            runner=runner,
            target_loader=InMemoryTargetLoader(),
            clock=clock,
        )
        worker.lock_manager.initialize()

        assert worker.poll_interval_seconds == 2
        assert worker.batch_size == 10
        assert worker.poll_cycle() == 1
        assert len(runner.requests) == 1
        assert repository.get_schedule(schedule.id).run_count == 1

    def test_settings_from_environment(self, monkeypatch, db_conn):
        monkeypatch.setenv("FLOWSCHED_LOCK_BACKEND", "database")
        monkeypatch.setenv("FLOWSCHED_EXECUTION_MODE", "queue")
        monkeypatch.setenv("FLOWSCHED_EXECUTION_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("FLOWSCHED_TENANT_ID", "acme")

        worker = create_worker(conn=db_conn, job_queue=InMemoryJobQueue())

        assert isinstance(worker.lock_manager.backend, DatabaseLeaseBackend)
        assert isinstance(worker.executor.sink, QueueExecutionSink)
        assert worker.executor.timeout_seconds == 30
        assert worker.executor.tenant_id == "acme"

    def test_opens_database_from_settings(self, tmp_path):
        db_path = tmp_path / "sched" / "flowsched.db"
        settings = SchedulerSettings(database_url=str(db_path), lock_backend="memory")

        worker = create_worker(settings, runner=RecordingRunner())

        assert db_path.exists()
        assert worker.repository.get_due_schedules(build_schedule().next_run_at) == []

    def test_dialect_follows_connection_driver(self):
        """A PostgreSQL connection gets PostgreSQL SQL in every store component."""
        conn = _PsycopgConnection()
        settings = SchedulerSettings(lock_backend="database", execution_mode="queue")

        worker = create_worker(settings, conn=conn, job_queue=InMemoryJobQueue())

        assert isinstance(worker.repository.dialect, PostgreSQLDialect)
        assert isinstance(worker.lock_manager.backend.dialect, PostgreSQLDialect)
        assert isinstance(worker.executor.target_loader, DatabaseTargetLoader)
        assert isinstance(worker.executor.target_loader.dialect, PostgreSQLDialect)
        conn.execute.assert_not_called()

    def test_sqlite_connection_keeps_sqlite_dialect(self, db_conn):
        settings = SchedulerSettings(lock_backend="database")
        worker = create_worker(settings, conn=db_conn, runner=RecordingRunner())
        assert isinstance(worker.repository.dialect, SQLiteDialect)
        assert isinstance(worker.lock_manager.backend.dialect, SQLiteDialect)
