"""Middleware Pipeline — ordered async handlers sharing one context.

WHY
───
Request processing (a swap quote, an approval, a transfer) is a chain of
cross-cutting steps: log it, time it, contain its errors, then do the work.
``MiddlewarePipeline`` composes such steps as ``async (context, next)``
handlers: each decides whether the rest of the chain runs by awaiting (or
not awaiting) ``next``.

ARCHITECTURE
────────────
::

    MiddlewarePipeline(h1, h2, h3)
      └── .run(context)
            h1(ctx, next) ──await next()──▶ h2(ctx, next) ──▶ h3(ctx, next)
              ◀───────────── returns ──────────┘
            returns ctx once the chain settles (completed or short-circuited)

    Built-in handlers
      error_handler()   ─ await next() in try/except, record ctx.error
      request_logging() ─ log request / response
      timing()          ─ ctx.duration_ms
      step(fn)          ─ run ``await fn(ctx)`` then next()

Rules:
    - A handler that never awaits ``next`` stops the chain.
    - An uncaught exception aborts the rest of the chain and propagates
      out of ``run`` unless an earlier ``error_handler`` contains it.
    - Each handler runs at most once per run; awaiting ``next`` twice
      raises ``RuntimeError``.

Example::

    pipeline = MiddlewarePipeline(error_handler(), timing(), step(submit_swap))
    ctx = await pipeline.run({"amount_in": 10, "token_in": "ETH"})
    if ctx.error:
        show_toast(ctx.error)
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from spindle.core.logging import get_logger

logger = get_logger(__name__)

Next = Callable[[], Awaitable[None]]
Handler = Callable[["PipelineContext", Next], Awaitable[None]]


@dataclass(eq=False)
class PipelineContext:
    """Mutable record passed by reference through one pipeline run.

    Free-form caller data lives in ``data``; item access on the context
    reads and writes it (``ctx["amount"] = 5``).
    """

    data: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    duration_ms: float | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    trail: list[str] = field(default_factory=list)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__name__", type(handler).__name__)


class Middleware:
    """Ordered handler chain. Prefer :class:`MiddlewarePipeline` for new code."""

    def __init__(self) -> None:
        self.handlers: list[Handler] = []

    def use(self, handler: Handler) -> Middleware:
        """Append a handler; returns ``self`` for fluent chaining."""
        if not callable(handler):
            raise TypeError(f"Middleware handler must be callable, got {handler!r}")
        self.handlers.append(handler)
        return self

    async def execute(self, context: PipelineContext) -> PipelineContext:
        handlers = tuple(self.handlers)

        async def dispatch(index: int) -> None:
            if index >= len(handlers):
                return
            handler = handlers[index]
            called = False

            async def next_() -> None:
                nonlocal called
                if called:
                    raise RuntimeError(f"next() called multiple times by handler '{_handler_name(handler)}'")
                called = True
                await dispatch(index + 1)

            context.trail.append(_handler_name(handler))
            await handler(context, next_)

        await dispatch(0)
        return context


class MiddlewarePipeline:
    """Build once, run many times; every run gets its own context."""

    def __init__(self, *handlers: Handler) -> None:
        self.middleware = Middleware()
        for handler in handlers:
            self.middleware.use(handler)

    def use(self, handler: Handler) -> MiddlewarePipeline:
        self.middleware.use(handler)
        return self

    def __len__(self) -> int:
        return len(self.middleware.handlers)

    async def run(self, context: PipelineContext | Mapping[str, Any] | None = None) -> PipelineContext:
        """Run the chain over ``context`` and return it once settled.

        A mapping is copied into a fresh :class:`PipelineContext`.
        """
        if context is None:
            context = PipelineContext()
        elif not isinstance(context, PipelineContext):
            context = PipelineContext(data=dict(context))
        return await self.middleware.execute(context)


# ── Built-in handlers ────────────────────────────────────────────────────


def error_handler() -> Handler:
    """Contain any error raised further down the chain on ``context.error``."""

    async def error_handler(context: PipelineContext, next: Next) -> None:
        try:
            await next()
        except Exception as e:
            context.error = e
            logger.error("pipeline.error", run_id=context.run_id, error=repr(e), trail=list(context.trail))

    return error_handler


def request_logging(event: str = "pipeline") -> Handler:
    """Log the context data before and after the rest of the chain."""

    async def request_logging(context: PipelineContext, next: Next) -> None:
        logger.info(f"{event}.request", run_id=context.run_id, data=dict(context.data))
        await next()
        logger.info(f"{event}.response", run_id=context.run_id, data=dict(context.data))

    return request_logging


def timing() -> Handler:
    """Record how long the rest of the chain took in ``context.duration_ms``."""

    async def timing(context: PipelineContext, next: Next) -> None:
        start = time.perf_counter()
        try:
            await next()
        finally:
            context.duration_ms = round((time.perf_counter() - start) * 1000, 3)

    return timing


def step(fn: Callable[[PipelineContext], Awaitable[Any]], *, name: str | None = None) -> Handler:
    """Wrap ``async fn(context)`` as a handler that runs it, then continues."""

    async def run_step(context: PipelineContext, next: Next) -> None:
        await fn(context)
        await next()

    run_step.__name__ = name or getattr(fn, "__name__", "step")
    return run_step
