"""flowsched core -- platform primitives shared by the scheduling engine.

Manifesto:
    The scheduler needs the same foundation every long-running service
    needs: typed errors, structured logging, validated settings, UTC
    timestamps and a portable database connection contract.  These live
    here so the scheduling package only contains scheduling.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (FlowschedError, ...)
        protocols.py       Connection protocol (DB-API shaped)
        timestamps.py      UTC helpers + short run IDs

    Layer 2 -- Database
        dialect.py         SQLite / PostgreSQL placeholder differences
        schema.py          Table DDL + create_core_tables()
        models/            Dataclass rows (Schedule, ScheduleRun)

    Layer 3 -- Ambient
        logging.py         structlog configuration
        settings.py        pydantic-settings configuration

    Layer 4 -- Engine
        scheduling/        Evaluator, LockManager, Repository, Executor, Worker

Tags:
    flowsched, core, package-overview
"""
