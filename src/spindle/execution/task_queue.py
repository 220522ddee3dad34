"""Bounded Task Queue — FIFO scheduler with a concurrency ceiling.

WHY
───
Callers fire work at unpredictable rates (quote refreshes, balance polls,
approval checks) but the things they talk to tolerate only a handful of
concurrent requests. ``BoundedTaskQueue`` admits at most ``concurrency``
operations at a time and holds the rest in strict submission order.

ARCHITECTURE
────────────
::

    BoundedTaskQueue(concurrency=C)
      ├── .add(operation, token=None) ─ enqueue, returns asyncio.Future
      ├── .clear()                    ─ fail queued futures with Cancelled
      ├── .join()                     ─ await until idle
      └── .size / .running / .stats()

    Task lifecycle
      QUEUED ──admit──▶ RUNNING ──▶ COMPLETED | FAILED
         │                  │
         └── clear/token ───┴──▶ CANCELLED

    Admission happens in ``_pump()``: a plain (non-async) method running
    on the event loop. It never suspends, so two tasks can never be
    promoted into the same slot.

Example::

    queue = BoundedTaskQueue(concurrency=2)
    futures = [queue.add(functools.partial(fetch_price, s)) for s in symbols]
    prices = await asyncio.gather(*futures)
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from spindle.core.errors import Cancelled
from spindle.core.logging import get_logger

from .cancellation import CancellationToken

logger = get_logger(__name__)


class TaskState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class QueuedTask:
    """One submitted operation and the future its caller awaits."""

    operation: Callable[[], Any]
    future: asyncio.Future[Any]
    token: CancellationToken | None = None
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    enqueued_at: float = field(default_factory=time.monotonic)
    started_at: float | None = None
    finished_at: float | None = None
    state: TaskState = TaskState.QUEUED
    runner: asyncio.Task[None] | None = field(default=None, repr=False)
    on_token_cancelled: Callable[[CancellationToken], None] | None = field(default=None, repr=False)

    @property
    def wait_seconds(self) -> float | None:
        """Time spent queued before admission."""
        if self.started_at is None:
            return None
        return self.started_at - self.enqueued_at


class BoundedTaskQueue:
    """FIFO task scheduler admitting at most ``concurrency`` running tasks.

    Must be used from a single event loop. ``add`` may only be called while
    that loop is running.

    Parameters
    ----------
    concurrency : int
        Maximum number of operations running at once (default 1).
    name : str
        Queue name used in logs.
    """

    def __init__(self, concurrency: int = 1, *, name: str = "task_queue") -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._concurrency = concurrency
        self._name = name
        self._pending: deque[QueuedTask] = deque()
        self._running: set[QueuedTask] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._loop: asyncio.AbstractEventLoop | None = None

    # ── Submission ───────────────────────────────────────────────────

    def add(
        self,
        operation: Callable[[], Awaitable[Any] | Any],
        *,
        token: CancellationToken | None = None,
    ) -> asyncio.Future[Any]:
        """Enqueue ``operation`` and return a future of its result.

        The future fails with the operation's own exception if it raises,
        or with :class:`~spindle.core.errors.Cancelled` if the task is
        cleared or its token fires first.
        """
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        elif self._loop is not loop:
            raise RuntimeError(f"Task queue '{self._name}' is bound to a different event loop")

        task = QueuedTask(operation=operation, future=loop.create_future(), token=token)
        self._pending.append(task)
        self._idle.clear()

        if token is not None:
            task.on_token_cancelled = functools.partial(self._token_fired, loop, task)
            token.add_callback(task.on_token_cancelled)

        logger.debug("task_queue.enqueued", queue=self._name, task_id=task.task_id, pending=len(self._pending))
        self._pump()
        return task.future

    # ── Admission (single serialized control path) ───────────────────

    def _pump(self) -> None:
        while self._pending and len(self._running) < self._concurrency:
            task = self._pending.popleft()
            if task.future.done():
                # caller gave up on it while queued
                task.state = TaskState.CANCELLED
                self._detach_token(task)
                continue
            if task.token is not None and task.token.cancelled:
                self._cancel_queued(task, task.token.reason)
                continue

            task.state = TaskState.RUNNING
            task.started_at = time.monotonic()
            self._running.add(task)
            task.runner = asyncio.ensure_future(self._run(task), loop=self._loop)
            logger.debug(
                "task_queue.admitted",
                queue=self._name,
                task_id=task.task_id,
                running=len(self._running),
                waited=round(task.wait_seconds or 0.0, 4),
            )

        if not self._pending and not self._running:
            self._idle.set()

    async def _run(self, task: QueuedTask) -> None:
        try:
            result = task.operation()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            if task.token is not None and task.token.cancelled:
                task.state = TaskState.CANCELLED
                if not task.future.done():
                    task.future.set_exception(Cancelled(f"Task cancelled while running: {task.token.reason}"))
            else:
                task.state = TaskState.CANCELLED
                if not task.future.done():
                    task.future.cancel()
                raise
        except Exception as e:
            task.state = TaskState.FAILED
            if not task.future.done():
                task.future.set_exception(e)
            logger.debug("task_queue.task_failed", queue=self._name, task_id=task.task_id, error=repr(e))
        else:
            task.state = TaskState.COMPLETED
            if not task.future.done():
                task.future.set_result(result)
        finally:
            task.finished_at = time.monotonic()
            self._detach_token(task)
            self._running.discard(task)
            self._pump()

    # ── Cancellation ─────────────────────────────────────────────────

    def _token_fired(self, loop: asyncio.AbstractEventLoop, task: QueuedTask, _token: CancellationToken) -> None:
        loop.call_soon_threadsafe(self._on_token_cancelled, task)

    @staticmethod
    def _detach_token(task: QueuedTask) -> None:
        if task.token is not None and task.on_token_cancelled is not None:
            task.token.remove_callback(task.on_token_cancelled)
            task.on_token_cancelled = None

    def _cancel_queued(self, task: QueuedTask, reason: str | None) -> None:
        task.state = TaskState.CANCELLED
        self._detach_token(task)
        if not task.future.done():
            task.future.set_exception(Cancelled(f"Task cancelled before it started: {reason}"))

    def _on_token_cancelled(self, task: QueuedTask) -> None:
        if task.state is TaskState.QUEUED:
            try:
                self._pending.remove(task)
            except ValueError:
                return
            self._cancel_queued(task, task.token.reason if task.token else None)
            logger.info("task_queue.cancelled_queued", queue=self._name, task_id=task.task_id)
            if not self._pending and not self._running:
                self._idle.set()
        elif task.state is TaskState.RUNNING and task.runner is not None:
            task.runner.cancel()
            logger.info("task_queue.cancelled_running", queue=self._name, task_id=task.task_id)

    def clear(self) -> int:
        """Discard every queued task without running it.

        Queued futures fail with :class:`~spindle.core.errors.Cancelled`.
        Running tasks are unaffected.

        Returns:
            Number of tasks discarded.
        """
        discarded = 0
        while self._pending:
            task = self._pending.popleft()
            self._cancel_queued(task, "queue cleared")
            discarded += 1
        if not self._running:
            self._idle.set()
        if discarded:
            logger.info("task_queue.cleared", queue=self._name, discarded=discarded)
        return discarded

    # ── Inspection ───────────────────────────────────────────────────

    async def join(self) -> None:
        """Wait until no task is queued or running."""
        await self._idle.wait()

    @property
    def name(self) -> str:
        return self._name

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def size(self) -> int:
        """Number of queued (not yet running) tasks."""
        return len(self._pending)

    @property
    def running(self) -> int:
        return len(self._running)

    def __len__(self) -> int:
        return len(self._pending)

    def stats(self) -> dict[str, Any]:
        return {
            "queue": self._name,
            "concurrency": self._concurrency,
            "pending": len(self._pending),
            "running": len(self._running),
        }
