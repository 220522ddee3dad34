"""Worker Pool — fixed-capacity parallel executors with timeout and overflow.

WHY
───
CPU-heavy or blocking work (signature checks, route computation, large
payload decoding) must not run on the event loop. ``WorkerPool`` runs a
single ``handler`` on up to ``max_workers`` dedicated execution units, each
busy with one task at a time. A task that overruns its deadline costs the
caller a ``TaskTimeout`` and costs the pool that executor, which is torn
down and replaced on demand.

ARCHITECTURE
────────────
::

    WorkerPool(handler, max_workers=N, task_timeout=30.0)
      ├── .execute_task(payload)  ─ idle handle → new handle (< N) → overflow FIFO
      ├── .terminate()            ─ tear down all handles, drop overflow
      └── .worker_count / .active_count / .pending_count / .stats()

    WorkerHandle
      └── single-slot concurrent.futures executor
            THREAD  ─ DaemonThreadExecutor (one daemon thread + work queue)
            PROCESS ─ ProcessPoolExecutor(max_workers=1)

    Dispatch outcome
      result               → handle idle, next overflow task dispatched
      handler raised       → TaskExecutionFailed, handle idle
      deadline passed      → TaskTimeout, task token cancelled, handle discarded
      pool terminated      → PoolTerminated

    Task tokens: every task runs with its own token. A caller-supplied
    token is linked to it (cancelling the caller's token cancels the
    task), but a timeout cancels only the task's token.

    Abandonment: Python cannot kill a thread. A timed-out handle is shut
    down without waiting. Its daemon thread keeps running the stuck call
    until it returns or honours the task token, and never blocks
    interpreter exit. Handlers that may stall should accept a ``token``
    parameter and check it.

Example::

    pool = WorkerPool(verify_signature, max_workers=4, task_timeout=5.0)
    ok = await pool.execute_task({"message": msg, "signature": sig})
    pool.terminate()
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import queue
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, Future, ProcessPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from spindle.core.config.components import WorkerBackend
from spindle.core.errors import Cancelled, PoolTerminated, TaskExecutionFailed, TaskTimeout
from spindle.core.logging import get_logger

from .cancellation import CancellationToken

logger = get_logger(__name__)

DEFAULT_TASK_TIMEOUT = 30.0

_STOP = None


class DaemonThreadExecutor(Executor):
    """Single-slot executor running submissions on one daemon thread.

    Unlike ``ThreadPoolExecutor``, its thread is not joined at interpreter
    exit, so a call that never returns cannot keep the process alive.
    """

    def __init__(self, name: str) -> None:
        self._work: queue.SimpleQueue[tuple[Future[Any], Callable[..., Any], tuple, dict] | None] = queue.SimpleQueue()
        self._lock = threading.Lock()
        self._shutdown = False
        self._thread = threading.Thread(target=self._serve, name=name, daemon=True)
        self._thread.start()

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
            future: Future[Any] = Future()
            self._work.put((future, fn, args, kwargs))
            return future

    def _serve(self) -> None:
        while True:
            item = self._work.get()
            if item is _STOP:
                return
            future, fn, args, kwargs = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        with self._lock:
            if not self._shutdown:
                self._shutdown = True
                if cancel_futures:
                    while True:
                        try:
                            item = self._work.get_nowait()
                        except queue.Empty:
                            break
                        if item is not _STOP:
                            item[0].cancel()
                self._work.put(_STOP)
        if wait:
            self._thread.join()


@dataclass(eq=False)
class WorkerHandle:
    """One parallel execution unit owned by a single WorkerPool."""

    worker_id: str
    executor: Executor
    busy: bool = False
    tasks_completed: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)


@dataclass(eq=False)
class _PendingTask:
    payload: Any
    future: asyncio.Future[Any]
    timeout: float
    token: CancellationToken = field(default_factory=CancellationToken)
    parent: CancellationToken | None = None
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    enqueued_at: float = field(default_factory=time.monotonic)

    def link(self) -> None:
        """Propagate cancellation of the caller's token to this task's token."""
        if self.parent is not None:
            self.parent.add_callback(self._parent_cancelled)
            self.future.add_done_callback(self._unlink)

    def _parent_cancelled(self, parent: CancellationToken) -> None:
        self.token.cancel(parent.reason or "cancelled")

    def _unlink(self, _: asyncio.Future[Any]) -> None:
        if self.parent is not None:
            self.parent.remove_callback(self._parent_cancelled)


def _accepts_token(handler: Callable[..., Any]) -> bool:
    try:
        return "token" in inspect.signature(handler).parameters
    except (TypeError, ValueError):
        return False


def _run_handler(handler: Callable[..., Any], payload: Any, token: CancellationToken | None) -> Any:
    """Entry point executed inside a worker thread."""
    result = handler(payload, token=token) if token is not None else handler(payload)
    if inspect.isawaitable(result):
        return asyncio.run(_await(result))
    return result


async def _await(awaitable: Any) -> Any:
    return await awaitable


class WorkerPool:
    """Pool of up to ``max_workers`` executor handles running ``handler``.

    Parameters
    ----------
    handler : Callable
        ``handler(payload) -> result``. With the thread backend it may be a
        coroutine function and may declare a ``token`` parameter to receive
        the task's :class:`CancellationToken`. With the process backend it
        must be picklable (module-level function) and receives no token.
    max_workers : int
        Maximum number of executor handles (default 4).
    task_timeout : float
        Seconds a dispatched task may run before ``TaskTimeout`` (default 30).
    backend : WorkerBackend
        ``THREAD`` (default) or ``PROCESS``.
    name : str
        Pool name used in logs and error context.
    """

    def __init__(
        self,
        handler: Callable[..., Any],
        *,
        max_workers: int = 4,
        task_timeout: float = DEFAULT_TASK_TIMEOUT,
        backend: WorkerBackend = WorkerBackend.THREAD,
        name: str = "worker_pool",
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if task_timeout <= 0:
            raise ValueError(f"task_timeout must be positive, got {task_timeout}")
        self._handler = handler
        self._max_workers = max_workers
        self._task_timeout = task_timeout
        self._backend = WorkerBackend(backend)
        self._name = name
        self._pass_token = self._backend is WorkerBackend.THREAD and _accepts_token(handler)
        self._workers: list[WorkerHandle] = []
        self._overflow: deque[_PendingTask] = deque()
        self._dispatching: dict[asyncio.Task[None], _PendingTask] = {}
        self._ids = itertools.count(1)
        self._terminated = False

    # ── Submission ───────────────────────────────────────────────────

    async def execute_task(
        self,
        payload: Any,
        *,
        timeout: float | None = None,
        token: CancellationToken | None = None,
    ) -> Any:
        """Run ``handler(payload)`` on a worker and return its result.

        Args:
            payload: Passed to the handler unchanged.
            timeout: Per-task override of ``task_timeout``.
            token: Caller-owned cancellation token. Cancelling it cancels
                this task; a timeout never cancels it.

        Raises:
            TaskTimeout: The handler did not finish within the timeout.
            TaskExecutionFailed: The handler raised; the original error is
                the ``cause``.
            PoolTerminated: The pool was terminated before or during the task.
            Cancelled: ``token`` fired before the task was dispatched.
        """
        if self._terminated:
            raise PoolTerminated(f"Worker pool '{self._name}' has been terminated").with_context(pool=self._name)

        loop = asyncio.get_running_loop()
        pending = _PendingTask(
            payload=payload,
            future=loop.create_future(),
            timeout=timeout if timeout is not None else self._task_timeout,
            parent=token,
        )
        pending.link()
        self._overflow.append(pending)
        self._pump()
        if not pending.future.done() and pending in self._overflow:
            logger.debug(
                "worker_pool.overflow_queued",
                pool=self._name,
                task_id=pending.task_id,
                pending=len(self._overflow),
            )
        return await pending.future

    # ── Dispatch (single serialized control path) ────────────────────

    def _pump(self) -> None:
        while self._overflow and not self._terminated:
            worker = self._idle_worker()
            if worker is None:
                return
            pending = self._overflow.popleft()
            if pending.future.done():
                continue
            if pending.token.cancelled:
                self._settle(
                    pending,
                    exception=Cancelled(f"Worker task cancelled before dispatch: {pending.token.reason}"),
                )
                continue
            worker.busy = True
            dispatch = asyncio.ensure_future(self._dispatch(worker, pending))
            self._dispatching[dispatch] = pending
            dispatch.add_done_callback(self._dispatch_done)

    def _dispatch_done(self, dispatch: asyncio.Task[None]) -> None:
        self._dispatching.pop(dispatch, None)
        if not dispatch.cancelled() and dispatch.exception() is not None:
            logger.error("worker_pool.dispatch_failed", pool=self._name, error=repr(dispatch.exception()))

    def _idle_worker(self) -> WorkerHandle | None:
        for worker in self._workers:
            if not worker.busy:
                return worker
        if len(self._workers) < self._max_workers:
            return self._create_worker()
        return None

    def _create_worker(self) -> WorkerHandle:
        worker_id = f"{self._name}-{next(self._ids)}"
        if self._backend is WorkerBackend.PROCESS:
            executor: Executor = ProcessPoolExecutor(max_workers=1)
        else:
            executor = DaemonThreadExecutor(name=worker_id)
        worker = WorkerHandle(worker_id=worker_id, executor=executor)
        self._workers.append(worker)
        logger.info("worker_pool.worker_created", pool=self._name, worker_id=worker_id, workers=len(self._workers))
        return worker

    def _submit(self, worker: WorkerHandle, pending: _PendingTask) -> asyncio.Future[Any]:
        if self._backend is WorkerBackend.PROCESS:
            cf = worker.executor.submit(self._handler, pending.payload)
        else:
            token = pending.token if self._pass_token else None
            cf = worker.executor.submit(_run_handler, self._handler, pending.payload, token)
        return asyncio.wrap_future(cf)

    def _terminated_error(self) -> PoolTerminated:
        return PoolTerminated(f"Worker pool '{self._name}' terminated while task was running").with_context(
            pool=self._name
        )

    async def _dispatch(self, worker: WorkerHandle, pending: _PendingTask) -> None:
        if self._terminated:
            self._settle(pending, exception=self._terminated_error())
            return

        started = time.monotonic()
        try:
            running = self._submit(worker, pending)
        except Exception as e:
            self._discard(worker, reason="submit_failed")
            if self._terminated:
                self._settle(pending, exception=self._terminated_error())
            else:
                self._settle(pending, exception=TaskExecutionFailed(f"Could not submit task: {e}", cause=e))
            self._pump()
            return

        try:
            result = await asyncio.wait_for(running, timeout=pending.timeout)
        except TimeoutError:
            elapsed = time.monotonic() - started
            pending.token.cancel("worker task timeout")
            self._discard(worker, reason="timeout")
            logger.warning(
                "worker_pool.timeout",
                pool=self._name,
                worker_id=worker.worker_id,
                task_id=pending.task_id,
                timeout=pending.timeout,
            )
            self._settle(
                pending,
                exception=TaskTimeout(timeout=pending.timeout, elapsed=elapsed).with_context(
                    pool=self._name, worker_id=worker.worker_id, task_id=pending.task_id
                ),
            )
        except asyncio.CancelledError:
            pending.token.cancel("worker pool terminated" if self._terminated else "dispatch cancelled")
            self._discard(worker, reason="cancelled")
            if self._terminated:
                self._settle(pending, exception=self._terminated_error())
            else:
                pending.future.cancel()
                raise
        except Exception as e:
            worker.busy = False
            logger.debug(
                "worker_pool.task_failed",
                pool=self._name,
                worker_id=worker.worker_id,
                task_id=pending.task_id,
                error=repr(e),
            )
            self._settle(
                pending,
                exception=TaskExecutionFailed(f"Worker task failed: {e}", cause=e).with_context(
                    pool=self._name, worker_id=worker.worker_id, task_id=pending.task_id
                ),
            )
        else:
            worker.busy = False
            worker.tasks_completed += 1
            self._settle(pending, result=result)
        finally:
            self._pump()

    @staticmethod
    def _settle(pending: _PendingTask, *, result: Any = None, exception: BaseException | None = None) -> None:
        if pending.future.done():
            return
        if exception is not None:
            pending.future.set_exception(exception)
        else:
            pending.future.set_result(result)

    def _discard(self, worker: WorkerHandle, *, reason: str) -> None:
        if worker in self._workers:
            self._workers.remove(worker)
        worker.busy = False
        worker.shutdown()
        logger.info("worker_pool.worker_discarded", pool=self._name, worker_id=worker.worker_id, reason=reason)

    # ── Lifecycle ────────────────────────────────────────────────────

    def terminate(self) -> None:
        """Tear down every executor and drop pending overflow work.

        In-flight and overflow callers fail with ``PoolTerminated``; later
        submissions are rejected with ``PoolTerminated``.
        """
        if self._terminated:
            return
        self._terminated = True

        dropped = 0
        while self._overflow:
            pending = self._overflow.popleft()
            self._settle(pending, exception=PoolTerminated(f"Worker pool '{self._name}' terminated before dispatch"))
            dropped += 1

        # a dispatch cancelled before its first step never runs, so settle here
        for dispatch, pending in list(self._dispatching.items()):
            pending.token.cancel("worker pool terminated")
            self._settle(pending, exception=self._terminated_error())
            dispatch.cancel()

        for worker in self._workers:
            worker.shutdown()
        workers = len(self._workers)
        self._workers.clear()

        logger.info("worker_pool.terminated", pool=self._name, workers=workers, dropped=dropped)

    async def __aenter__(self) -> WorkerPool:
        return self

    async def __aexit__(self, *args: object) -> None:
        self.terminate()

    # ── Inspection ───────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def task_timeout(self) -> float:
        return self._task_timeout

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def workers(self) -> tuple[WorkerHandle, ...]:
        return tuple(self._workers)

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def active_count(self) -> int:
        """Handles currently running a task."""
        return sum(1 for w in self._workers if w.busy)

    @property
    def pending_count(self) -> int:
        """Tasks waiting in the overflow queue."""
        return len(self._overflow)

    @property
    def dispatching_count(self) -> int:
        """Dispatch tasks not yet settled."""
        return len(self._dispatching)

    def stats(self) -> dict[str, Any]:
        return {
            "pool": self._name,
            "backend": self._backend.value,
            "max_workers": self._max_workers,
            "workers": len(self._workers),
            "active": self.active_count,
            "pending": len(self._overflow),
            "terminated": self._terminated,
        }
