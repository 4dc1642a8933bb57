"""
Structured logging for scheduler workers and CLI commands.

Manifesto:
    Several workers poll the same store, so a log line is only useful when
    it says which worker, schedule and run it belongs to.  Every module
    logs named events with keyword fields
    (``logger.info("lock_acquired", schedule_id=...)``); correlation ids
    bound with :class:`LogContext` ride along on every line emitted inside
    the block.

Output::

    configure_logging(json_format=True)
        {"event": "schedule_executed", "schedule_id": "sch-1",
         "log.level": "info", "@timestamp": "...", "service.name": "flowsched-worker",
         "log.logger": "flowsched.core.scheduling.worker"}

    configure_logging(json_format=False)
        2025-01-15T12:00:00Z [info] schedule_executed  schedule_id=sch-1 ...

JSON output uses ECS field names (``@timestamp``, ``log.level``, ``log.logger``,
``service.name``) so worker logs can be shipped to Elasticsearch as-is.

Tags:
    logging, structlog, json-logging, correlation, flowsched
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_ECS_RENAMES = {"timestamp": "@timestamp", "level": "log.level", "logger_name": "log.logger"}


class _ServiceName:
    """Processor stamping ``service.name`` on every event."""

    def __init__(self, service: str) -> None:
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.service)
        return event_dict


def _rename_ecs_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for field, ecs_field in _ECS_RENAMES.items():
        if field in event_dict:
            event_dict[ecs_field] = event_dict.pop(field)
    return event_dict


def _processor_chain(json_format: bool, service: str, add_timestamp: bool) -> list[Processor]:
    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _ServiceName(service),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            _rename_ecs_fields,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "flowsched",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog (and stdlib logging) for this process.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines when True, console output when False;
            None picks JSON unless stdout is a terminal
        service: Value of the ``service.name`` field
        add_timestamp: Include an ISO 8601 UTC timestamp
    """
    if json_format is None:
        json_format = not sys.stdout.isatty()
    numeric_level = getattr(logging, level.upper())

    structlog.configure(
        processors=_processor_chain(json_format, service, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # redis and celery log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger; ``name`` is emitted as the ``log.logger`` field."""
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every subsequent log line in the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind correlation fields for the duration of a ``with`` block.

    Example:
        with LogContext(worker="flowsched-worker", schedule_id="sch-1"):
            logger.info("lock_acquired")
    """

    def __init__(self, **kwargs: Any) -> None:
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *exc: object) -> None:
        unbind_context(*self._context)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
