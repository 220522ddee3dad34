"""Resource Pool — bounded, non-blocking pool of reusable objects.

WHY
───
Some objects (RPC clients, codec buffers, contract encoders) are costly to
build and cheap to reset. ``ResourcePool`` keeps up to ``max_size`` of them
alive and hands them out one caller at a time. It never waits: when every
slot is taken, ``acquire()`` fails fast with ``PoolExhausted`` and the
caller decides whether to retry.

ARCHITECTURE
────────────
::

    ResourcePool(factory, max_size)
      ├── .acquire()             ─ reuse available, else create, else PoolExhausted
      ├── .release(resource)     ─ reset + return (no-op if not in use)
      ├── .scoped() / .use(fn)   ─ acquire-use-release, release on every path
      ├── .scoped_async() / .use_async(fn)
      └── .clear() / .stats()

    Partition invariant (guarded by one lock):
      available ∩ in_use = ∅   and   |available| + |in_use| + resetting ≤ max_size

    The reset hook runs outside the lock, so it may call back into the pool.

    Resources are tracked by identity, so unhashable objects pool fine.

Example::

    pool = ResourcePool(ResourceFactory(create=bytearray, reset=lambda b: b.clear()), max_size=4)
    with pool.scoped() as buffer:
        buffer.extend(payload)
"""

from __future__ import annotations

import inspect
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from spindle.core.errors import PoolExhausted, ResourceResetFailed
from spindle.core.logging import get_logger

T = TypeVar("T")
R = TypeVar("R")

logger = get_logger(__name__)


@runtime_checkable
class Factory(Protocol[T]):
    """Anything with ``create()``; an optional ``reset(resource)`` is honoured."""

    def create(self) -> T: ...


@dataclass(frozen=True)
class ResourceFactory(Generic[T]):
    """Build a pool factory from plain callables."""

    create: Callable[[], T]
    reset: Callable[[T], None] | None = None


class ResourcePool(Generic[T]):
    """Generic bounded pool of reusable resources.

    Parameters
    ----------
    factory : Factory
        Object with ``create()`` and optionally ``reset(resource)``.
    max_size : int
        Maximum number of resources alive at once (default 10).
    name : str
        Pool name used in logs and error context.
    """

    def __init__(self, factory: Factory[T], max_size: int = 10, *, name: str = "resource_pool") -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._factory = factory
        self._reset = getattr(factory, "reset", None)
        self._max_size = max_size
        self._name = name
        self._available: list[T] = []
        self._in_use: dict[int, T] = {}
        self._resetting = 0
        self._generation = 0
        self._lock = threading.Lock()

    # ── Acquire / release ────────────────────────────────────────────

    def acquire(self) -> T:
        """Take a resource out of the pool.

        Raises:
            PoolExhausted: If ``max_size`` resources are already in use.
        """
        with self._lock:
            if self._available:
                resource = self._available.pop()
                created = False
            elif len(self._in_use) + self._resetting < self._max_size:
                resource = self._factory.create()
                created = True
            else:
                raise PoolExhausted(
                    f"Resource pool '{self._name}' is exhausted ({self._max_size} in use)",
                    max_size=self._max_size,
                ).with_context(pool=self._name)
            self._in_use[id(resource)] = resource

        logger.debug("resource_pool.acquired", pool=self._name, created=created, in_use=len(self._in_use))
        return resource

    def release(self, resource: T) -> bool:
        """Return a resource to the pool.

        Returns:
            True if the resource was returned, False if it was not in use
            (double release or a foreign object).

        Raises:
            ResourceResetFailed: If the factory's reset hook raised. The
                resource is discarded and its slot freed.
        """
        with self._lock:
            if self._in_use.get(id(resource)) is not resource:
                logger.debug("resource_pool.release_ignored", pool=self._name)
                return False
            del self._in_use[id(resource)]
            if self._reset is None:
                self._available.append(resource)
                logger.debug("resource_pool.released", pool=self._name, available=len(self._available))
                return True
            # slot stays reserved while the hook runs unlocked
            self._resetting += 1
            generation = self._generation

        try:
            self._reset(resource)
        except Exception as e:
            with self._lock:
                self._resetting -= 1
            logger.error("resource_pool.reset_failed", pool=self._name, error=repr(e))
            raise ResourceResetFailed(
                f"Reset hook failed in pool '{self._name}': {e}",
                cause=e,
            ).with_context(pool=self._name) from e

        with self._lock:
            self._resetting -= 1
            if generation == self._generation:
                self._available.append(resource)

        logger.debug("resource_pool.released", pool=self._name, available=len(self._available))
        return True

    def _release_after_failure(self, resource: T) -> None:
        try:
            self.release(resource)
        except ResourceResetFailed:
            logger.warning("resource_pool.reset_failed_during_error", pool=self._name)

    # ── Scoped acquisition ───────────────────────────────────────────

    @contextmanager
    def scoped(self) -> Iterator[T]:
        """Acquire a resource for the duration of a ``with`` block."""
        resource = self.acquire()
        try:
            yield resource
        except BaseException:
            self._release_after_failure(resource)
            raise
        self.release(resource)

    @asynccontextmanager
    async def scoped_async(self) -> AsyncIterator[T]:
        """Acquire a resource for the duration of an ``async with`` block."""
        resource = self.acquire()
        try:
            yield resource
        except BaseException:
            self._release_after_failure(resource)
            raise
        self.release(resource)

    def use(self, fn: Callable[[T], R]) -> R:
        """Run ``fn(resource)`` with a pooled resource and return its result."""
        with self.scoped() as resource:
            return fn(resource)

    async def use_async(self, fn: Callable[[T], Awaitable[R] | R]) -> R:
        """Run ``fn(resource)`` (sync or async) with a pooled resource."""
        async with self.scoped_async() as resource:
            result = fn(resource)
            if inspect.isawaitable(result):
                result = await result
            return result

    # ── Inspection / maintenance ─────────────────────────────────────

    def clear(self) -> None:
        """Forget every resource, available and in use."""
        with self._lock:
            self._available.clear()
            self._in_use.clear()
            self._generation += 1
        logger.info("resource_pool.cleared", pool=self._name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def available_count(self) -> int:
        return len(self._available)

    @property
    def in_use_count(self) -> int:
        return len(self._in_use)

    @property
    def size(self) -> int:
        """Resources alive in the pool (available + in use)."""
        with self._lock:
            return len(self._available) + len(self._in_use)

    def __len__(self) -> int:
        return self.size

    def is_in_use(self, resource: Any) -> bool:
        return self._in_use.get(id(resource)) is resource

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "pool": self._name,
                "max_size": self._max_size,
                "available": len(self._available),
                "in_use": len(self._in_use),
            }


def with_pooled_resource(pool: ResourcePool[T], fn: Callable[[T], R]) -> R:
    """Acquire from ``pool``, run ``fn``, release on every exit path."""
    return pool.use(fn)
