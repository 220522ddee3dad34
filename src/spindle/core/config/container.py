"""
Lazy-initialised dependency-injection container.

:class:`SpindleContainer` replaces process-wide singletons: it owns one
explicitly configured instance per concern (the shared task queue, the
shared retry executor) and builds it on first access. Per-purpose pools
(a worker pool per handler, a resource pool per factory) are registered by
name so every consumer of the same concern receives the same instance.

Usage::

    from spindle.core.config import SpindleContainer

    container = SpindleContainer()
    queue = container.task_queue                  # lazy-created
    hashing = container.worker_pool("hashing", hash_payload)
    buffers = container.resource_pool("buffers", ResourceFactory(bytearray))

    # As a context manager for automatic teardown:
    with SpindleContainer(settings) as c:
        ...
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from spindle.core.logging import get_logger

from .factory import (
    create_resource_pool,
    create_retry_executor,
    create_task_queue,
    create_worker_pool,
)
from .settings import SpindleSettings, get_settings

logger = get_logger(__name__)


class SpindleContainer:
    """Lazy-initialised dependency container.

    Components are created on first access and torn down via :meth:`close`
    (or the context-manager protocol).
    """

    def __init__(self, settings: SpindleSettings | None = None) -> None:
        self._settings = settings
        self._task_queue: Any | None = None
        self._retry_executor: Any | None = None
        self._worker_pools: dict[str, Any] = {}
        self._resource_pools: dict[str, Any] = {}

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> SpindleSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def task_queue(self) -> Any:
        """Shared :class:`~spindle.execution.task_queue.BoundedTaskQueue`."""
        if self._task_queue is None:
            self._task_queue = create_task_queue(self.settings)
        return self._task_queue

    @property
    def retry_executor(self) -> Any:
        """Shared :class:`~spindle.execution.retry.RetryExecutor`."""
        if self._retry_executor is None:
            self._retry_executor = create_retry_executor(self.settings)
        return self._retry_executor

    def worker_pool(self, name: str, handler: Callable[..., Any] | None = None) -> Any:
        """Get the worker pool called *name*, creating it with *handler* on first use."""
        if name not in self._worker_pools:
            if handler is None:
                raise KeyError(f"No worker pool named '{name}' and no handler to create one")
            self._worker_pools[name] = create_worker_pool(self.settings, handler, name=name)
        return self._worker_pools[name]

    def resource_pool(self, name: str, factory: Any | None = None) -> Any:
        """Get the resource pool called *name*, creating it from *factory* on first use."""
        if name not in self._resource_pools:
            if factory is None:
                raise KeyError(f"No resource pool named '{name}' and no factory to create one")
            self._resource_pools[name] = create_resource_pool(self.settings, factory, name=name)
        return self._resource_pools[name]

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Terminate worker pools, drop queued work, and forget pooled resources."""
        for pool in self._worker_pools.values():
            pool.terminate()
        for pool in self._resource_pools.values():
            pool.clear()
        if self._task_queue is not None:
            self._task_queue.clear()
        logger.debug(
            "container.closed",
            worker_pools=len(self._worker_pools),
            resource_pools=len(self._resource_pools),
        )
        self._worker_pools.clear()
        self._resource_pools.clear()
        self._task_queue = None
        self._retry_executor = None

    def __enter__(self) -> SpindleContainer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
