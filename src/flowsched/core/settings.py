"""
Centralized settings for flowsched.

Manifesto:
    One validated, cached settings object is the single place a worker
    process reads its configuration from.  Values come from ``FLOWSCHED_*``
    environment variables or a ``.env`` file and are type-checked at
    startup, not at the first poll cycle.

Tags:
    flowsched, configuration, settings, pydantic, caching, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LockBackend(str, Enum):
    """Shared cache holding the per-schedule leases."""

    REDIS = "redis"
    DATABASE = "database"
    MEMORY = "memory"


class ExecutionMode(str, Enum):
    """Execution sink strategy, chosen once per worker."""

    DIRECT = "direct"
    QUEUE = "queue"


class SchedulerSettings(BaseSettings):
    """flowsched worker configuration.

    All fields can be set via ``FLOWSCHED_*`` environment variables (e.g.
    ``FLOWSCHED_EXECUTION_MODE=queue``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWSCHED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(
        default="data/flowsched.db",
        description="SQLite database path (or ':memory:')",
    )

    # ── Locking ──────────────────────────────────────────────────
    lock_backend: LockBackend = Field(default=LockBackend.REDIS)
    redis_url: str = Field(default="redis://localhost:6379/3")
    lock_ttl_seconds: float = Field(default=60.0, gt=0)
    lock_key_prefix: str = Field(default="schedule:lock:")

    # ── Polling ──────────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    poll_batch_size: int = Field(default=100, ge=1)

    # ── Execution ────────────────────────────────────────────────
    execution_mode: ExecutionMode = Field(default=ExecutionMode.DIRECT)
    execution_timeout_seconds: float = Field(default=300.0, gt=0)
    tenant_id: str = Field(default="1", description="Tenant passed to the workflow runner")
    runner: str | None = Field(
        default=None,
        description="Import path of the workflow entry point, e.g. 'app.flows:run_flow'",
    )

    # ── Queue mode ───────────────────────────────────────────────
    celery_broker_url: str = Field(default="redis://localhost:6379/1")
    celery_task_name: str = Field(default="flowsched.execute_prediction")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", pattern="^(json|console)$")

    # ── Computed ─────────────────────────────────────────────────
    warnings: list[str] = Field(default_factory=list, exclude=True)

    @model_validator(mode="after")
    def _check_lease_covers_execution(self) -> SchedulerSettings:
        """Flag configurations where a lease can expire mid-execution."""
        warnings = []
        if self.lock_ttl_seconds < self.execution_timeout_seconds:
            warnings.append(
                f"lock_ttl_seconds ({self.lock_ttl_seconds:g}) is shorter than "
                f"execution_timeout_seconds ({self.execution_timeout_seconds:g}); "
                "a long execution can outlive its lease and overlap with another worker"
            )
        if self.lock_backend == LockBackend.MEMORY:
            warnings.append("lock_backend=memory only excludes workers inside this process")
        object.__setattr__(self, "warnings", warnings)
        return self

    @property
    def is_queue_mode(self) -> bool:
        return self.execution_mode == ExecutionMode.QUEUE


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, SchedulerSettings] = {}


def get_settings(*, env_file: str | None = None, _force_reload: bool = False) -> SchedulerSettings:
    """Load, validate, and cache a :class:`SchedulerSettings` instance.

    Parameters
    ----------
    env_file:
        Override the ``.env`` file location.
    _force_reload:
        Bypass cache and reload.
    """
    cache_key = env_file or ""
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file:
        settings = SchedulerSettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = SchedulerSettings()

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
