"""Spindle Execution — scheduling, retry, worker and resource primitives.

ARCHITECTURE
────────────
::

    Leaves
      ├── ResourcePool       ─ bounded non-blocking pool of reusable objects
      └── RetryExecutor      ─ retry with exponential backoff
      │
      ▼
    Scheduling
      ├── BoundedTaskQueue   ─ FIFO, at most C running
      └── WorkerPool         ─ N parallel handles, timeout, overflow FIFO
      │
      ▼
    Composition
      └── MiddlewarePipeline ─ (context, next) handler chain

    Cross-cutting
      └── CancellationToken  ─ explicit stop signal threaded through tasks

MODULE MAP
──────────
  1. cancellation.py   ─ CancellationToken
  2. resource_pool.py  ─ ResourcePool, ResourceFactory, with_pooled_resource
  3. retry.py          ─ RetryPolicy, RetryExecutor, with_retry
  4. task_queue.py     ─ BoundedTaskQueue, QueuedTask, TaskState
  5. worker_pool.py    ─ WorkerPool, WorkerHandle
  6. middleware.py     ─ MiddlewarePipeline, PipelineContext, built-in handlers
"""

from .cancellation import CancellationToken
from .middleware import (
    Middleware,
    MiddlewarePipeline,
    PipelineContext,
    error_handler,
    request_logging,
    step,
    timing,
)
from .resource_pool import ResourceFactory, ResourcePool, with_pooled_resource
from .retry import RetryExecutor, RetryPolicy, with_retry
from .task_queue import BoundedTaskQueue, QueuedTask, TaskState
from .worker_pool import WorkerHandle, WorkerPool

__all__ = [
    "CancellationToken",
    "ResourcePool",
    "ResourceFactory",
    "with_pooled_resource",
    "RetryPolicy",
    "RetryExecutor",
    "with_retry",
    "BoundedTaskQueue",
    "QueuedTask",
    "TaskState",
    "WorkerPool",
    "WorkerHandle",
    "Middleware",
    "MiddlewarePipeline",
    "PipelineContext",
    "error_handler",
    "request_logging",
    "timing",
    "step",
]
