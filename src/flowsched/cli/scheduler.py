"""
CLI: ``flowsched scheduler``: run a worker and inspect schedules.
"""

from __future__ import annotations

from typing import Any

import typer

from flowsched.cli.utils import console, fail, get_connection, output_items
from flowsched.core.dialect import dialect_for
from flowsched.core.enums import RunStatus, ScheduleStatus
from flowsched.core.errors import FlowschedError
from flowsched.core.logging import configure_logging
from flowsched.core.scheduling import ScheduleRepository, create_worker
from flowsched.core.settings import SchedulerSettings
from flowsched.core.timestamps import utc_now

app = typer.Typer(no_args_is_help=True)

_SCHEDULE_COLUMNS = ["id", "name", "status", "schedule_type", "next_run_at", "run_count", "failure_count"]
_DUE_COLUMNS = ["id", "name", "schedule_type", "target_id", "next_run_at", "failure_count", "max_retries"]
_RUN_COLUMNS = ["id", "status", "job_id", "scheduled_at", "completed_at", "duration_ms", "error_message"]


def _repository(database: str | None) -> ScheduleRepository:
    conn = get_connection(database)
    return ScheduleRepository(conn, dialect_for(conn))


@app.command("run")
def run_worker(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    lock_backend: str | None = typer.Option(None, "--lock-backend", help="redis | database | memory"),
    mode: str | None = typer.Option(None, "--mode", help="Execution mode: direct | queue"),
    runner: str | None = typer.Option(None, "--runner", help="Workflow runner import path"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between polls"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Run a scheduler worker until SIGINT / SIGTERM."""
    overrides: dict[str, Any] = {
        "database_url": database,
        "lock_backend": lock_backend,
        "execution_mode": mode,
        "runner": runner,
        "poll_interval_seconds": poll_interval,
        "log_level": log_level,
    }
    settings = SchedulerSettings(**{k: v for k, v in overrides.items() if v is not None})
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        service="flowsched-worker",
    )

    try:
        worker = create_worker(settings)
    except FlowschedError as e:
        fail(e)

    console.print(
        f"[bold]flowsched worker[/bold] polling every {settings.poll_interval_seconds:g}s "
        f"(locks: {settings.lock_backend.value}, mode: {settings.execution_mode.value})"
    )
    worker.run_forever()


@app.command("list")
def list_schedules(
    database: str | None = typer.Option(None, "--database", "-d"),
    status: ScheduleStatus | None = typer.Option(None, "--status"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List schedules by name, optionally filtered by status."""
    try:
        schedules = _repository(database).list_schedules(status)
    except FlowschedError as e:
        fail(e)
    output_items(
        [s.to_dict() for s in schedules],
        as_json=json_out,
        title="Schedules",
        columns=_SCHEDULE_COLUMNS,
    )


@app.command("due")
def list_due(
    database: str | None = typer.Option(None, "--database", "-d"),
    limit: int = typer.Option(100, "--limit", "-n"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List schedules that are due now."""
    try:
        repo = _repository(database)
        due = repo.get_due_schedules(utc_now(), limit=limit)
    except FlowschedError as e:
        fail(e)
    output_items(
        [s.to_dict() for s in due],
        as_json=json_out,
        title="Due Schedules",
        columns=_DUE_COLUMNS,
    )


@app.command("runs")
def list_runs(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    limit: int = typer.Option(20, "--limit", "-n"),
    status: RunStatus | None = typer.Option(None, "--status"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the run history of a schedule, newest first."""
    try:
        repo = _repository(database)
        runs = repo.list_runs(schedule_id, limit=limit, status=status)
    except FlowschedError as e:
        fail(e)
    output_items(
        [r.to_dict() for r in runs],
        as_json=json_out,
        title=f"Runs: {schedule_id}",
        columns=_RUN_COLUMNS,
    )
