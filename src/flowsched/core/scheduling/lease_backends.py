"""Lease backends for the schedule lock manager.

Manifesto:
    A lease is a key in a cache shared by every worker, created only if
    absent, carrying a random token and a TTL.  The backend is the only
    piece that knows which cache that is; the lock manager above it deals
    in schedule ids and ``Lease`` objects.

Backends:
    ==================  ===============================================
    RedisLeaseBackend   ``SET key token NX PX ttl``; compare-and-delete
                        / compare-and-expire via Lua (production)
    DatabaseLeaseBackend insert-or-ignore into ``flow_schedule_locks``
                        with expired-row cleanup (single-DB deployments)
    InMemoryLeaseBackend dict + ``threading.Lock`` (tests, development)
    ==================  ===============================================

    Backends raise :class:`~flowsched.core.errors.LockBackendError` when
    the cache cannot be reached.  A key held by someone else is *not* an
    error: ``set_if_absent`` returns ``False``.

Tags:
    flowsched, scheduling, distributed-locks, redis, TTL, leases

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

import redis

from flowsched.core.dialect import Dialect, SQLiteDialect
from flowsched.core.errors import LockBackendError
from flowsched.core.protocols import Connection
from flowsched.core.timestamps import to_iso8601, utc_now


@runtime_checkable
class LeaseBackend(Protocol):
    """Atomic set-if-absent key store with per-key TTL and token checks."""

    def connect(self) -> None: ...

    def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool: ...

    def delete_if_token(self, key: str, token: str) -> bool: ...

    def refresh_if_token(self, key: str, token: str, ttl_ms: int) -> bool: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
else
  return 0
end
"""

_REFRESH_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("pexpire", KEYS[1], ARGV[2])
else
  return 0
end
"""


class RedisLeaseBackend:
    """Redis ``SET NX PX`` leases.

    Example::

        backend = RedisLeaseBackend("redis://localhost:6379/3")
        backend.connect()
        backend.set_if_absent("schedule:lock:sch-1", token, 60_000)
    """

    def __init__(self, url: str = "redis://localhost:6379/3", *, client: Any = None) -> None:
        self.url = url
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            raise LockBackendError("Redis lease backend is not connected")
        return self._client

    def connect(self) -> None:
        if self._client is None:
            self._client = redis.Redis.from_url(self.url, decode_responses=True)
        try:
            self._client.ping()
        except redis.RedisError as e:
            raise LockBackendError(f"Cannot reach Redis at {self.url}", cause=e) from e

    def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        try:
            return bool(self.client.set(key, token, nx=True, px=ttl_ms))
        except redis.RedisError as e:
            raise LockBackendError(f"Redis SET NX failed for {key}", cause=e) from e

    def delete_if_token(self, key: str, token: str) -> bool:
        try:
            return bool(self.client.eval(_RELEASE_SCRIPT, 1, key, token))
        except redis.RedisError as e:
            raise LockBackendError(f"Redis release failed for {key}", cause=e) from e

    def refresh_if_token(self, key: str, token: str, ttl_ms: int) -> bool:
        try:
            return bool(self.client.eval(_REFRESH_SCRIPT, 1, key, token, ttl_ms))
        except redis.RedisError as e:
            raise LockBackendError(f"Redis refresh failed for {key}", cause=e) from e

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseLeaseBackend:
    """Leases stored as rows in ``flow_schedule_locks``.

    The primary key on ``lock_key`` makes the insert the atomic step;
    expired rows for the key are deleted first so a crashed holder never
    blocks the schedule for longer than its TTL.
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self._clock = clock
        self._lock = threading.RLock()

    def _ph(self, index: int) -> str:
        return self.dialect.placeholder(index)

    def connect(self) -> None:
        # Tables are created by `flowsched db init`; nothing to open here.
        pass

    def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        now = self._clock()
        expires = now + timedelta(milliseconds=ttl_ms)
        with self._lock:
            try:
                self.conn.execute(
                    f"DELETE FROM flow_schedule_locks "
                    f"WHERE lock_key = {self._ph(0)} AND expires_at <= {self._ph(1)}",
                    (key, to_iso8601(now)),
                )
                cursor = self.conn.execute(
                    self.dialect.insert_or_ignore(
                        "flow_schedule_locks",
                        ["lock_key", "token", "acquired_at", "expires_at"],
                    ),
                    (key, token, to_iso8601(now), to_iso8601(expires)),
                )
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                raise LockBackendError(f"Lease insert failed for {key}", cause=e) from e
            return cursor.rowcount > 0

    def delete_if_token(self, key: str, token: str) -> bool:
        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"DELETE FROM flow_schedule_locks "
                    f"WHERE lock_key = {self._ph(0)} AND token = {self._ph(1)}",
                    (key, token),
                )
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                raise LockBackendError(f"Lease delete failed for {key}", cause=e) from e
            return cursor.rowcount > 0

    def refresh_if_token(self, key: str, token: str, ttl_ms: int) -> bool:
        now = self._clock()
        expires = now + timedelta(milliseconds=ttl_ms)
        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"UPDATE flow_schedule_locks SET expires_at = {self._ph(0)} "
                    f"WHERE lock_key = {self._ph(1)} AND token = {self._ph(2)} "
                    f"AND expires_at > {self._ph(3)}",
                    (to_iso8601(expires), key, token, to_iso8601(now)),
                )
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                raise LockBackendError(f"Lease refresh failed for {key}", cause=e) from e
            return cursor.rowcount > 0

    def close(self) -> None:
        # The connection belongs to the caller.
        pass


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryLeaseBackend:
    """Process-local leases. Share one instance between workers in tests."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._leases: dict[str, tuple[str, float]] = {}

    def connect(self) -> None:
        pass

    def _live(self, key: str, now: float) -> tuple[str, float] | None:
        entry = self._leases.get(key)
        if entry is not None and entry[1] <= now:
            del self._leases[key]
            return None
        return entry

    def set_if_absent(self, key: str, token: str, ttl_ms: int) -> bool:
        with self._lock:
            now = self._clock()
            if self._live(key, now) is not None:
                return False
            self._leases[key] = (token, now + ttl_ms / 1000)
            return True

    def delete_if_token(self, key: str, token: str) -> bool:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None or entry[0] != token:
                return False
            del self._leases[key]
            return True

    def refresh_if_token(self, key: str, token: str, ttl_ms: int) -> bool:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None or entry[0] != token:
                return False
            self._leases[key] = (token, now + ttl_ms / 1000)
            return True

    def holder(self, key: str) -> str | None:
        """Token currently holding ``key`` (None when free or expired)."""
        with self._lock:
            entry = self._live(key, self._clock())
            return entry[0] if entry else None

    def close(self) -> None:
        # Leases may be shared by several managers; they expire on their own.
        pass
