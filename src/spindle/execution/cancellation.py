"""Cancellation tokens — an explicit stop signal threaded through tasks.

WHY
───
Timeouts alone can only *abandon* work: the caller stops waiting, but the
operation keeps running and keeps holding whatever it acquired. A
``CancellationToken`` travels with the task so the work itself can notice
it is no longer wanted and stop.

ARCHITECTURE
────────────
::

    CancellationToken
      ├── .cancel(reason)          ─ fire once (thread-safe)
      ├── .cancelled / .reason     ─ inspect
      ├── .raise_if_cancelled()    ─ raise Cancelled at a checkpoint
      ├── .add_callback(fn)        ─ run fn(token) when fired
      └── .wait(timeout)           ─ block a worker thread until fired

    Consumers:
      BoundedTaskQueue  ─ drops queued tasks / cancels running ones
      RetryExecutor     ─ stops between attempts
      WorkerPool        ─ fires the token of a timed-out task

Example::

    token = CancellationToken()
    future = queue.add(fetch_quotes, token=token)
    token.cancel("user navigated away")
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from spindle.core.errors import Cancelled
from spindle.core.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """One-shot, thread-safe cancellation signal.

    Safe to share between the event loop and worker threads: state lives in
    a :class:`threading.Event` and callbacks are registered under a lock.
    Callbacks run on the thread that calls :meth:`cancel`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._callbacks: list[Callable[[CancellationToken], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def callback_count(self) -> int:
        """Callbacks still waiting for the token to fire."""
        with self._lock:
            return len(self._callbacks)

    def cancel(self, reason: str = "cancelled") -> bool:
        """Fire the token.

        Returns:
            True if this call cancelled the token, False if it was already
            cancelled.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("cancellation.callback_failed", reason=reason)
        return True

    def add_callback(self, callback: Callable[[CancellationToken], None]) -> None:
        """Register ``callback(token)``; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback(self)

    def remove_callback(self, callback: Callable[[CancellationToken], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def raise_if_cancelled(self) -> None:
        """Raise :class:`~spindle.core.errors.Cancelled` if the token fired."""
        if self._event.is_set():
            raise Cancelled(f"Operation cancelled: {self._reason}")

    def wait(self, timeout: float | None = None) -> bool:
        """Block the calling thread until cancelled or ``timeout`` elapses.

        Only for use from worker threads; never call on the event loop.
        """
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "active"
        return f"CancellationToken({state})"
