"""Tests for SchedulerSettings."""

import pytest
from pydantic import ValidationError

from flowsched.core.settings import (
    ExecutionMode,
    LockBackend,
    SchedulerSettings,
    clear_settings_cache,
    get_settings,
)


class TestDefaults:
    """Default configuration."""

    def test_defaults(self):
        settings = SchedulerSettings()
        assert settings.lock_backend is LockBackend.REDIS
        assert settings.execution_mode is ExecutionMode.DIRECT
        assert settings.lock_ttl_seconds == 60
        assert settings.execution_timeout_seconds == 300
        assert settings.poll_interval_seconds == 5
        assert settings.lock_key_prefix == "schedule:lock:"
        assert settings.is_queue_mode is False

    def test_default_ttl_shorter_than_timeout_warns(self):
        (warning,) = SchedulerSettings().warnings
        assert "lock_ttl_seconds (60) is shorter than execution_timeout_seconds (300)" in warning

    def test_no_warning_when_lease_covers_execution(self):
        settings = SchedulerSettings(lock_ttl_seconds=600)
        assert settings.warnings == []

    def test_memory_backend_warns(self):
        settings = SchedulerSettings(lock_backend="memory", lock_ttl_seconds=600)
        assert settings.warnings == [
            "lock_backend=memory only excludes workers inside this process"
        ]

    def test_warnings_not_serialized(self):
        assert "warnings" not in SchedulerSettings().model_dump()


class TestValidation:
    """Invalid values are rejected."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"lock_ttl_seconds": 0},
            {"poll_interval_seconds": -1},
            {"poll_batch_size": 0},
            {"lock_backend": "zookeeper"},
            {"execution_mode": "batch"},
            {"log_format": "xml"},
        ],
    )
    def test_rejected(self, overrides):
        with pytest.raises(ValidationError):
            SchedulerSettings(**overrides)


class TestEnvironment:
    """Environment and .env loading."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("FLOWSCHED_EXECUTION_MODE", "queue")
        monkeypatch.setenv("FLOWSCHED_POLL_INTERVAL_SECONDS", "0.5")
        monkeypatch.setenv("FLOWSCHED_RUNNER", "app.flows:run_flow")
        settings = SchedulerSettings()
        assert settings.is_queue_mode is True
        assert settings.poll_interval_seconds == 0.5
        assert settings.runner == "app.flows:run_flow"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "worker.env"
        env_file.write_text("FLOWSCHED_LOCK_BACKEND=database\nFLOWSCHED_TENANT_ID=acme\n")
        settings = get_settings(env_file=str(env_file))
        assert settings.lock_backend is LockBackend.DATABASE
        assert settings.tenant_id == "acme"

    def test_get_settings_is_cached(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("FLOWSCHED_TENANT_ID", "changed")
        assert get_settings() is first
        assert get_settings(_force_reload=True).tenant_id == "changed"

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
