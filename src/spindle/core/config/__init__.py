"""Centralized configuration and dependency container.

Manifesto:
    Pool sizes, timeouts and retry schedules are configured in one
    validated place instead of in option objects scattered across callers.

    * **Component enums** -- ``WorkerBackend``, ``LogFormat``
    * **Settings** -- validated ``SpindleSettings`` (Pydantic, cached)
    * **Factory functions** -- build queues, pools and retry executors
    * **DI container** -- :class:`SpindleContainer` with lazy component init

Quick start::

    from spindle.core.config import get_settings, SpindleContainer

    settings = get_settings()
    print(settings.worker_task_timeout)   # 30.0

    with SpindleContainer(settings) as c:
        queue = c.task_queue

Architecture::

    settings.py       SpindleSettings (Pydantic) + get_settings() cache
    components.py     Backend enums
    factory.py        create_task_queue / worker_pool / resource_pool / retry
    container.py      SpindleContainer (lazy DI)
"""

from .components import LogFormat, WorkerBackend
from .container import SpindleContainer
from .factory import (
    configure_logging_from_settings,
    create_resource_pool,
    create_retry_executor,
    create_retry_policy,
    create_task_queue,
    create_worker_pool,
)
from .settings import SpindleSettings, clear_settings_cache, get_settings

__all__ = [
    "LogFormat",
    "WorkerBackend",
    "SpindleSettings",
    "get_settings",
    "clear_settings_cache",
    "configure_logging_from_settings",
    "create_retry_policy",
    "create_retry_executor",
    "create_task_queue",
    "create_worker_pool",
    "create_resource_pool",
    "SpindleContainer",
]
