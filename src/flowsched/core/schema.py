"""
Core schema definitions for the schedule store.

Manifesto:
    Schedules, their run history, the database-backed leases and the live
    target definitions live in four shared tables.  Every worker in a
    fleet points at the same tables; the DDL below is the single source of
    truth for their layout.

Architecture:
    ::

        flow_schedules ──< flow_schedule_runs
              │
              └── target_id ──> flow_definitions   (live targets)

        flow_schedule_locks   (lease rows for lock_backend=database)

    Timestamps are stored as fixed-width ISO-8601 UTC text
    (microsecond precision, ``+00:00`` offset) so that string comparison
    orders them correctly on every backend.

Guardrails:
    ❌ DON'T: Write timestamps with varying precision or offsets
    ✅ DO: Go through flowsched.core.timestamps.to_iso8601

Tags:
    schema, ddl, tables, flowsched, database, scheduling

Doc-Types:
    - API Reference
    - Schema Documentation
"""

# =============================================================================
# TABLE NAMES
# =============================================================================

CORE_TABLES = {
    "schedules": "flow_schedules",
    "schedule_runs": "flow_schedule_runs",
    "schedule_locks": "flow_schedule_locks",
    "definitions": "flow_definitions",
}


# =============================================================================
# DDL
# =============================================================================

CORE_DDL = {
    # =========================================================================
    # FLOW_SCHEDULES: Recurring workflow execution schedules
    #
    # One row per schedule. The worker reads active rows whose next_run_at
    # has passed and writes back counters, next_run_at and status.
    # =========================================================================
    "schedules": """
        CREATE TABLE IF NOT EXISTS flow_schedules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            target_type TEXT NOT NULL DEFAULT 'CHATFLOW',
            target_id TEXT NOT NULL,
            frozen_version TEXT,
            schedule_type TEXT NOT NULL,
            cron_expression TEXT,
            interval_ms INTEGER,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            next_run_at TEXT,
            last_run_at TEXT,
            started_at TEXT,
            ends_at TEXT,
            max_retries INTEGER NOT NULL DEFAULT 3,
            retry_delay_ms INTEGER NOT NULL DEFAULT 1000,
            status TEXT NOT NULL DEFAULT 'active',
            run_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0,
            input_payload TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "schedules_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_flow_schedules_status_next_run
        ON flow_schedules(status, next_run_at)
    """,
    "schedules_idx_target": """
        CREATE INDEX IF NOT EXISTS idx_flow_schedules_target
        ON flow_schedules(target_type, target_id)
    """,
    # =========================================================================
    # FLOW_SCHEDULE_RUNS: Append-only execution history
    # =========================================================================
    "schedule_runs": """
        CREATE TABLE IF NOT EXISTS flow_schedule_runs (
            id TEXT PRIMARY KEY,
            schedule_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            job_id TEXT,
            scheduled_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            duration_ms INTEGER,
            attempt INTEGER NOT NULL DEFAULT 1,
            result TEXT,
            error_message TEXT,
            created_at TEXT NOT NULL
        )
    """,
    "schedule_runs_idx_schedule": """
        CREATE INDEX IF NOT EXISTS idx_flow_schedule_runs_schedule
        ON flow_schedule_runs(schedule_id, created_at)
    """,
    # =========================================================================
    # FLOW_SCHEDULE_LOCKS: Lease rows (lock_backend=database)
    #
    # Rows expire after expires_at and are deleted by the next acquirer.
    # =========================================================================
    "schedule_locks": """
        CREATE TABLE IF NOT EXISTS flow_schedule_locks (
            lock_key TEXT PRIMARY KEY,
            token TEXT NOT NULL,
            acquired_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
    """,
    "schedule_locks_idx_expires": """
        CREATE INDEX IF NOT EXISTS idx_flow_schedule_locks_expires
        ON flow_schedule_locks(expires_at)
    """,
    # =========================================================================
    # FLOW_DEFINITIONS: Live target definitions (chatflows / agentflows)
    # =========================================================================
    "definitions": """
        CREATE TABLE IF NOT EXISTS flow_definitions (
            id TEXT PRIMARY KEY,
            name TEXT,
            flow_type TEXT NOT NULL DEFAULT 'CHATFLOW',
            definition TEXT NOT NULL,
            updated_at TEXT
        )
    """,
}


def create_core_tables(conn) -> None:
    """
    Create all schedule store tables.

    Call this once at application startup (``flowsched db init``).
    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
    conn.commit()
