"""Spindle — in-process concurrency and resource orchestration.

Five cooperating primitives for applications that submit work from many
places and need it bounded, retried, isolated and composed:

    from spindle.execution import (
        BoundedTaskQueue, RetryExecutor, WorkerPool, ResourcePool, MiddlewarePipeline,
    )
"""

__version__ = "0.1.0"
