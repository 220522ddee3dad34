"""Factory functions that build spindle primitives from settings.

Each ``create_*`` function reads the relevant fields of a
:class:`~spindle.core.config.settings.SpindleSettings` and returns a new,
independently configured instance. Nothing here is cached; sharing an
instance is the caller's (or :class:`SpindleContainer`'s) decision.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from spindle.core.logging import configure_logging

from .settings import SpindleSettings


def configure_logging_from_settings(settings: SpindleSettings) -> None:
    """Apply ``log_level``, ``log_format`` and ``service_name``."""
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        service=settings.service_name,
    )


def create_retry_policy(settings: SpindleSettings) -> Any:
    """Build a :class:`~spindle.execution.retry.RetryPolicy` from *settings*."""
    from spindle.execution.retry import RetryPolicy

    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        delay=settings.retry_delay,
        backoff=settings.retry_backoff,
        backoff_multiplier=settings.retry_backoff_multiplier,
        max_delay=settings.retry_max_delay,
    )


def create_retry_executor(settings: SpindleSettings) -> Any:
    from spindle.execution.retry import RetryExecutor

    return RetryExecutor(create_retry_policy(settings))


def create_task_queue(settings: SpindleSettings, *, name: str = "task_queue") -> Any:
    from spindle.execution.task_queue import BoundedTaskQueue

    return BoundedTaskQueue(concurrency=settings.queue_concurrency, name=name)


def create_worker_pool(
    settings: SpindleSettings,
    handler: Callable[..., Any],
    *,
    name: str = "worker_pool",
) -> Any:
    from spindle.execution.worker_pool import WorkerPool

    return WorkerPool(
        handler,
        max_workers=settings.worker_max_workers,
        task_timeout=settings.worker_task_timeout,
        backend=settings.worker_backend,
        name=name,
    )


def create_resource_pool(settings: SpindleSettings, factory: Any, *, name: str = "resource_pool") -> Any:
    from spindle.execution.resource_pool import ResourcePool

    return ResourcePool(factory, max_size=settings.resource_pool_max_size, name=name)
