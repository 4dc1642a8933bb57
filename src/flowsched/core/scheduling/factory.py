"""
Factory functions that build scheduler components from settings.

Manifesto:
    Wiring is decided once, at process start.  ``create_worker`` reads
    :class:`~flowsched.core.settings.SchedulerSettings` and picks the
    lease backend and the execution sink; nothing downstream re-reads the
    environment.

Features:
    - ``create_lease_backend()`` - Redis / Database / InMemory
    - ``create_execution_sink()`` - Direct (runner) / Queue (Celery)
    - ``load_callable()`` - resolve ``"package.module:attr"`` import paths
    - ``create_worker()`` - fully wired :class:`SchedulerWorker`

Tags:
    flowsched, configuration, factory-pattern, redis, celery

Doc-Types:
    api-reference
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from flowsched.core.connection import create_connection
from flowsched.core.dialect import Dialect, dialect_for
from flowsched.core.errors import ConfigurationError
from flowsched.core.logging import get_logger
from flowsched.core.protocols import Connection
from flowsched.core.scheduling.executor import ScheduleExecutor
from flowsched.core.scheduling.lease_backends import (
    DatabaseLeaseBackend,
    InMemoryLeaseBackend,
    LeaseBackend,
    RedisLeaseBackend,
)
from flowsched.core.scheduling.lock_manager import LockManager
from flowsched.core.scheduling.repository import ScheduleRepository
from flowsched.core.scheduling.sinks import (
    CeleryJobQueue,
    DirectExecutionSink,
    ExecutionSink,
    JobQueue,
    QueueExecutionSink,
)
from flowsched.core.scheduling.targets import DatabaseTargetLoader, TargetLoader
from flowsched.core.scheduling.worker import SchedulerWorker
from flowsched.core.settings import LockBackend, SchedulerSettings, get_settings
from flowsched.core.timestamps import utc_now

logger = get_logger(__name__)


def load_callable(path: str) -> Callable[..., Any]:
    """Import ``"package.module:attr"`` (or ``"package.module.attr"``)."""
    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid import path: {path!r}")
    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot import {path!r}: {e}", cause=e) from e
    if not callable(target):
        raise ConfigurationError(f"{path!r} is not callable")
    return target


def create_lease_backend(
    settings: SchedulerSettings,
    conn: Connection | None = None,
    dialect: Dialect | None = None,
) -> LeaseBackend:
    """Create the lease backend selected by ``settings.lock_backend``.

    The database backend uses ``dialect``, or one picked from ``conn``.
    """
    if settings.lock_backend == LockBackend.REDIS:
        return RedisLeaseBackend(settings.redis_url)
    if settings.lock_backend == LockBackend.DATABASE:
        if conn is None:
            raise ConfigurationError("lock_backend=database needs a database connection")
        return DatabaseLeaseBackend(conn, dialect or dialect_for(conn))
    return InMemoryLeaseBackend()


def create_execution_sink(
    settings: SchedulerSettings,
    *,
    runner: Callable[..., Any] | None = None,
    job_queue: JobQueue | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> ExecutionSink:
    """Create the sink selected by ``settings.execution_mode``."""
    if settings.is_queue_mode:
        queue = job_queue or CeleryJobQueue(
            broker_url=settings.celery_broker_url, task_name=settings.celery_task_name
        )
        return QueueExecutionSink(queue, clock=clock)

    if runner is None:
        if not settings.runner:
            raise ConfigurationError(
                "execution_mode=direct requires a workflow runner "
                "(set FLOWSCHED_RUNNER=package.module:function)"
            )
        runner = load_callable(settings.runner)
    return DirectExecutionSink(runner, clock=clock)


def create_worker(
    settings: SchedulerSettings | None = None,
    *,
    conn: Connection | None = None,
    runner: Callable[..., Any] | None = None,
    job_queue: JobQueue | None = None,
    lease_backend: LeaseBackend | None = None,
    target_loader: TargetLoader | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> SchedulerWorker:
    """Build a fully wired :class:`SchedulerWorker`.

    Every collaborator can be injected; anything not given is created
    from ``settings`` (default: :func:`get_settings`).
    """
    settings = settings or get_settings()
    for warning in settings.warnings:
        logger.warning("settings_warning", message=warning)

    if conn is None:
        conn, _info = create_connection(settings.database_url, init_schema=True)

    dialect = dialect_for(conn)
    repository = ScheduleRepository(conn, dialect, clock=clock)
    backend = lease_backend or create_lease_backend(settings, conn, dialect)
    lock_manager = LockManager(
        backend,
        ttl=timedelta(seconds=settings.lock_ttl_seconds),
        key_prefix=settings.lock_key_prefix,
        clock=clock,
    )
    sink = create_execution_sink(settings, runner=runner, job_queue=job_queue, clock=clock)
    executor = ScheduleExecutor(
        repository,
        sink,
        target_loader=target_loader or DatabaseTargetLoader(conn, dialect),
        timeout_seconds=settings.execution_timeout_seconds,
        tenant_id=settings.tenant_id,
        clock=clock,
    )
    return SchedulerWorker(
        repository,
        lock_manager,
        executor,
        poll_interval_seconds=settings.poll_interval_seconds,
        batch_size=settings.poll_batch_size,
        clock=clock,
    )
