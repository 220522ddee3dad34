"""
Spindle Logging - structured logging for the toolkit and its callers.

Manifesto:
    Scheduling problems (stuck workers, starving queues, exhausted pools) are
    only diagnosable when every admission, retry and timeout leaves a
    structured trace. Events are dotted names (``task_queue.admitted``,
    ``worker_pool.timeout``) and identifiers travel as fields, never prose.

Architecture:
    ::

        configure_logging(level, json_format, service)
            │
            ▼
        ┌──────────────────────────────────────────────────────────┐
        │ TimeStamper(iso)            (optional)                   │
        │ merge_contextvars           LogContext / bind_context    │
        │ add_log_level, add_logger_name                           │
        │ ServiceTag(service)         service.name on every event  │
        │ JSON:    _ecs_field_names + format_exc_info + JSONRenderer│
        │ console: ConsoleRenderer                                  │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> from spindle.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", service="swap-ui")
    >>> logger = get_logger(__name__)
    >>> logger.info("task_queue.admitted", task_id="a1b2", running=2)

Tags:
    logging, structlog, observability, spindle
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


class ServiceTag:
    """Processor stamping ``service.name`` onto every event."""

    def __init__(self, service: str) -> None:
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.service)
        return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename timestamp/level to their ECS field names for log shippers."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def _level_number(level: str) -> int:
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return number


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "spindle",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for spindle and the application around it.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for JSON only
            when stdout is not a TTY
        service: Value of the ``service.name`` field
        add_timestamp: Include an ISO timestamp in every event
    """
    if json_format is None:
        json_format = not sys.stdout.isatty()
    threshold = _level_number(level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        ServiceTag(service),
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors += [_ecs_field_names, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=threshold)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields onto every subsequent event in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Scoped logging fields, usable with ``with`` and ``async with``.

    Example:
        async with LogContext(pipeline="swap", run_id=ctx.run_id):
            await pipeline.run(ctx)
    """

    def __init__(self, **fields: Any):
        self.fields = fields

    def __enter__(self) -> LogContext:
        bind_context(**self.fields)
        return self

    def __exit__(self, *args: object) -> None:
        unbind_context(*self.fields)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *args: object) -> None:
        self.__exit__(*args)


__all__ = [
    "ServiceTag",
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
