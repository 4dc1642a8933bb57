"""
Shared pytest fixtures for flowsched tests.

This module provides:
- Settings / environment isolation
- A controllable clock
- In-memory SQLite schedule store with the flowsched schema
"""

import os
import sqlite3
from typing import Any

import pytest
import structlog

from flowsched.core.models.scheduler import Schedule
from flowsched.core.schema import create_core_tables
from flowsched.core.scheduling.repository import ScheduleRepository
from flowsched.core.settings import clear_settings_cache
from tests._support.builders import FakeClock, build_schedule


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Drop FLOWSCHED_* variables and any cached settings."""
    for key in list(os.environ):
        if key.startswith("FLOWSCHED_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def clean_log_context():
    """Clear structlog contextvars between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_conn():
    """In-memory SQLite database with the flowsched schema."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    create_core_tables(conn)
    yield conn
    conn.close()


@pytest.fixture
def repository(db_conn, clock) -> ScheduleRepository:
    return ScheduleRepository(db_conn, clock=clock)


@pytest.fixture
def add_schedule(repository):
    """Insert a schedule built by ``build_schedule`` and return it."""

    def _add(**overrides: Any) -> Schedule:
        return repository.add_schedule(build_schedule(**overrides))

    return _add
