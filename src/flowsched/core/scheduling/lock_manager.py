"""Distributed lock manager for the scheduler.

Manifesto:
    Multiple scheduler workers must never execute the same due schedule
    simultaneously.  The lock manager hands out short-lived leases keyed
    by schedule id: atomic set-if-absent with a TTL so a crashed worker
    can't block a schedule forever, and a random token so a worker only
    ever releases the lease it acquired.

This module provides non-blocking acquire / release / extend for
schedule leases on top of a pluggable :class:`LeaseBackend`.

Tags:
    flowsched, scheduling, distributed-locks, TTL, concurrency, safety

Doc-Types:
    api-reference, architecture-diagram


    Lock Manager Architecture::

        Worker A: acquire_lock("sch-1") ─► SET schedule:lock:sch-1 tokA NX PX 60000 ─► Lease
        Worker B: acquire_lock("sch-1") ─► SET ... NX  (key exists)                 ─► None (skip)
        Worker A: release_lock(lease)   ─► DEL if value == tokA

        A backend failure on acquire is reported as a miss (None): the
        schedule is simply picked up on a later cycle.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from flowsched.core.errors import LockBackendError
from flowsched.core.logging import get_logger
from flowsched.core.scheduling.lease_backends import LeaseBackend
from flowsched.core.timestamps import utc_now

logger = get_logger(__name__)

DEFAULT_LOCK_TTL = timedelta(seconds=60)
DEFAULT_KEY_PREFIX = "schedule:lock:"


@dataclass(frozen=True)
class Lease:
    """A held schedule lock."""

    key: str
    token: str
    expires_at: datetime


class LockManager:
    """Per-schedule lease manager.

    Example:
        >>> manager = LockManager(RedisLeaseBackend(settings.redis_url))
        >>> manager.initialize()
        >>>
        >>> lease = manager.acquire_lock("sch-123")
        >>> if lease:
        ...     try:
        ...         # Execute schedule
        ...         pass
        ...     finally:
        ...         manager.release_lock(lease)
        ... else:
        ...     print("Another worker has the lock")
    """

    def __init__(
        self,
        backend: LeaseBackend,
        *,
        ttl: timedelta = DEFAULT_LOCK_TTL,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize lock manager.

        Args:
            backend: Shared cache holding the leases
            ttl: Lease lifetime (default: 60 seconds)
            key_prefix: Prefix for lease keys
            clock: Wall clock used for ``Lease.expires_at``
        """
        self.backend = backend
        self.ttl = ttl
        self.key_prefix = key_prefix
        self._clock = clock
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def lock_key(self, schedule_id: str) -> str:
        return f"{self.key_prefix}{schedule_id}"

    def initialize(self) -> None:
        """Connect to the shared cache. Safe to call more than once."""
        if self._initialized:
            return
        self.backend.connect()
        self._initialized = True
        logger.info("lock_manager_initialized", backend=type(self.backend).__name__)

    def acquire_lock(self, schedule_id: str, ttl: timedelta | None = None) -> Lease | None:
        """Try to take the lease for ``schedule_id``. Never blocks.

        Returns:
            The held :class:`Lease`, or None when another worker holds it,
            the manager is not initialized, or the backend failed.
        """
        if not self._initialized:
            logger.warning("lock_manager_not_initialized", schedule_id=schedule_id)
            return None

        ttl = ttl or self.ttl
        key = self.lock_key(schedule_id)
        token = uuid4().hex
        now = self._clock()
        try:
            acquired = self.backend.set_if_absent(key, token, _ms(ttl))
        except LockBackendError as e:
            logger.error("lock_acquire_failed", schedule_id=schedule_id, error=e.message)
            return None

        if not acquired:
            logger.debug("lock_held_elsewhere", schedule_id=schedule_id)
            return None

        logger.debug("lock_acquired", schedule_id=schedule_id, ttl_seconds=ttl.total_seconds())
        return Lease(key=key, token=token, expires_at=now + ttl)

    def release_lock(self, lease: Lease) -> None:
        """Release ``lease`` if still held by it. Never raises."""
        if not self._initialized:
            return
        try:
            released = self.backend.delete_if_token(lease.key, lease.token)
        except LockBackendError as e:
            logger.error("lock_release_failed", key=lease.key, error=e.message)
            return
        if released:
            logger.debug("lock_released", key=lease.key)
        else:
            logger.debug("lock_already_expired", key=lease.key)

    def extend_lock(self, lease: Lease, duration: timedelta | None = None) -> Lease | None:
        """Push the expiry of a still-held lease ``duration`` into the future.

        Returns:
            The refreshed lease, or None if it expired, was taken over, or
            the backend failed.
        """
        if not self._initialized:
            return None
        duration = duration or self.ttl
        try:
            refreshed = self.backend.refresh_if_token(lease.key, lease.token, _ms(duration))
        except LockBackendError as e:
            logger.error("lock_extend_failed", key=lease.key, error=e.message)
            return None
        if not refreshed:
            logger.warning("lock_extend_lost", key=lease.key)
            return None
        return Lease(key=lease.key, token=lease.token, expires_at=self._clock() + duration)

    def shutdown(self) -> None:
        """Close the backend connection. Safe to call more than once."""
        if not self._initialized:
            return
        self._initialized = False
        try:
            self.backend.close()
        except Exception as e:
            logger.warning("lock_manager_close_failed", error=str(e))
        logger.info("lock_manager_shutdown")


def _ms(delta: timedelta) -> int:
    return max(1, int(delta.total_seconds() * 1000))
