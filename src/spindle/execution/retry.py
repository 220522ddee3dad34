"""Retry with exponential backoff for fallible asynchronous operations.

Provides an immutable, validated :class:`RetryPolicy` and the
:class:`RetryExecutor` that applies it.

Example:
    >>> from spindle.execution.retry import RetryExecutor, RetryPolicy
    >>>
    >>> policy = RetryPolicy(max_attempts=4, delay=0.5, backoff_multiplier=2.0)
    >>> list(policy.delays())
    [0.5, 1.0, 2.0]
    >>> executor = RetryExecutor(policy)
    >>> quote = await executor.execute(lambda: fetch_quote("ETH"))
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import random
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

from spindle.core.errors import Cancelled, ConfigError
from spindle.core.logging import get_logger

from .cancellation import CancellationToken

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to attempt an operation and how long to wait between.

    Delay before retry *n* (zero-based) is
    ``min(delay * backoff_multiplier ** n, max_delay)`` when ``backoff`` is
    on, and ``delay`` otherwise, plus optional jitter.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1)
        delay: Seconds to wait before the first retry (>= 0)
        backoff: Grow the delay after every failed attempt
        backoff_multiplier: Growth factor when ``backoff`` is on (>= 1)
        max_delay: Optional cap on any single delay
        jitter: Randomize each delay by up to this fraction (0.0-1.0)
        retry_on: Exception types that trigger a retry; others propagate at once
    """

    max_attempts: int = 3
    delay: float = 1.0
    backoff: bool = True
    backoff_multiplier: float = 2.0
    max_delay: float | None = None
    jitter: float = 0.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ConfigError(f"delay must be non-negative, got {self.delay}")
        if self.backoff_multiplier < 1:
            raise ConfigError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")
        if self.max_delay is not None and self.max_delay < 0:
            raise ConfigError(f"max_delay must be non-negative, got {self.max_delay}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ConfigError(f"jitter must be within 0.0-1.0, got {self.jitter}")
        if not self.retry_on:
            raise ConfigError("retry_on must name at least one exception type")

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Single attempt, no waiting."""
        return cls(max_attempts=1, delay=0.0, backoff=False)

    def delay_for(self, retry: int) -> float:
        """Delay in seconds before zero-based retry number ``retry``."""
        delay = self.delay * (self.backoff_multiplier**retry) if self.backoff else self.delay
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry (``max_attempts - 1`` values)."""
        for retry in range(self.max_attempts - 1):
            yield self.delay_for(retry)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


class RetryExecutor:
    """Runs a zero-argument operation until it succeeds or attempts run out.

    The policy is never mutated; each :meth:`execute` call computes its own
    delay schedule, so one executor can serve concurrent callers.

    Args:
        policy: Retry policy (default: ``RetryPolicy()``)
        on_retry: Called as ``on_retry(attempt, error, delay)`` before each wait
        sleep: Awaitable sleep used between attempts
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._on_retry = on_retry
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T] | T],
        *,
        token: CancellationToken | None = None,
    ) -> T:
        """Invoke ``operation`` with retries.

        Returns:
            Result of the first successful attempt

        Raises:
            The operation's own exception from the final attempt, unchanged.
            Cancelled: If ``token`` fires before or between attempts.
        """
        policy = self.policy
        name = getattr(operation, "__name__", "operation")

        last_error: BaseException | None = None

        for attempt, delay in enumerate(_schedule(policy), start=1):
            if token is not None and token.cancelled:
                raise Cancelled(f"Retry cancelled: {token.reason}", cause=last_error)
            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await result
                if attempt > 1:
                    logger.info("retry.succeeded", operation=name, attempt=attempt)
                return result
            except Exception as e:
                last_error = e
                if not policy.is_retryable(e):
                    logger.debug("retry.not_retryable", operation=name, attempt=attempt, error=repr(e))
                    raise
                if delay is None:
                    if policy.max_attempts > 1:
                        logger.warning("retry.exhausted", operation=name, attempts=attempt, error=repr(e))
                    raise

                logger.warning(
                    "retry.attempt_failed",
                    operation=name,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error=repr(e),
                )
                if self._on_retry:
                    self._on_retry(attempt, e, delay)

                if token is not None:
                    await _sleep_unless_cancelled(self._sleep, delay, token)
                else:
                    await self._sleep(delay)

        raise AssertionError("unreachable: retry schedule is never empty")


def _schedule(policy: RetryPolicy) -> Iterator[float | None]:
    """Pair every attempt with the delay that follows it (None after the last)."""
    yield from policy.delays()
    yield None


async def _sleep_unless_cancelled(
    sleep: Callable[[float], Awaitable[Any]],
    delay: float,
    token: CancellationToken,
) -> None:
    """Sleep for ``delay``, waking early if ``token`` fires."""
    loop = asyncio.get_running_loop()
    fired = loop.create_future()

    def _wake(_: CancellationToken) -> None:
        loop.call_soon_threadsafe(lambda: fired.done() or fired.set_result(None))

    token.add_callback(_wake)
    sleeper = asyncio.ensure_future(sleep(delay))
    try:
        await asyncio.wait({sleeper, fired}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        token.remove_callback(_wake)
        sleeper.cancel()
        fired.cancel()


def with_retry(
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator factory adding retry logic to an async function.

    Example:
        >>> @with_retry(RetryPolicy(max_attempts=3, delay=0.2))
        ... async def load_balance(address):
        ...     return await rpc.get_balance(address)
    """
    executor = RetryExecutor(policy, on_retry=on_retry)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"with_retry requires an async function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await executor.execute(functools.partial(func, *args, **kwargs))

        return wrapper

    return decorator
