"""
Structured error types for the spindle toolkit.

Every failure a spindle primitive surfaces to its caller is a typed
``SpindleError`` carrying enough metadata for the collaborator layer to pick
the most specific message and to decide whether a retry makes sense.

Manifesto:
    - **Typed Error Hierarchy:** One error type per failure mode
    - **Explicit Retry Semantics:** Each error knows if it's transient
    - **Rich Context:** Errors carry pool/task identifiers for logging
    - **Error Chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       SpindleError                               │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ResourcePoolError       WorkerPoolError          Cancelled      │
        │  (RESOURCE)              (EXECUTION)              (SCHEDULING)   │
        │       │                       │                                  │
        │  PoolExhausted           TaskTimeout                             │
        │  (retryable)             (retryable)                             │
        │  ResourceResetFailed     TaskExecutionFailed                     │
        │                          PoolTerminated                          │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Transient vs terminal:

    >>> PoolExhausted("pool is exhausted").retryable
    True
    >>> PoolTerminated("pool terminated").retryable
    False

    Adding context fluently:

    >>> error = TaskTimeout(timeout=30.0).with_context(pool="hashing")
    >>> error.context.pool
    'hashing'

Guardrails:
    ❌ DON'T: Wrap an operation's own error when retries are exhausted
    ✅ DO: Let RetryExecutor re-raise it unchanged

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, spindle
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        RESOURCE: Pooled-resource acquisition and lifecycle
        EXECUTION: Work dispatched to an executor failed or stalled
        SCHEDULING: Work was withdrawn before or while it ran
        CONFIG: Invalid configuration values
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    RESOURCE = "RESOURCE"
    EXECUTION = "EXECUTION"
    SCHEDULING = "SCHEDULING"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        pool: Name of the pool or queue that raised the error
        task_id: Identifier of the task involved, if any
        worker_id: Identifier of the executor handle involved, if any
        metadata: Additional key-value pairs
    """

    pool: str | None = None
    task_id: str | None = None
    worker_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["pool", "task_id", "worker_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SpindleError(Exception):
    """
    Base exception for all spindle errors.

    All SpindleError instances carry:
    - **category:** ErrorCategory enum for classification
    - **retryable:** True when the condition is transient
    - **context:** ErrorContext with structured metadata
    - **cause:** Optional underlying exception for chaining

    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = SpindleError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SpindleError:
        """
        Add context to this error (fluent API).

        Usage:
            raise PoolExhausted("exhausted").with_context(pool="connections")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RESOURCE POOL ERRORS
# =============================================================================


class ResourcePoolError(SpindleError):
    """Base for errors raised by ResourcePool."""

    default_category = ErrorCategory.RESOURCE


class PoolExhausted(ResourcePoolError):
    """Every slot of a bounded resource pool is in use.

    Transient: releasing any resource makes the next acquire succeed.
    """

    default_retryable = True

    def __init__(self, message: str = "Resource pool is exhausted", *, max_size: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.max_size = max_size


class ResourceResetFailed(ResourcePoolError):
    """The factory's reset hook raised while a resource was being released."""

    default_retryable = False


# =============================================================================
# WORKER POOL ERRORS
# =============================================================================


class WorkerPoolError(SpindleError):
    """Base for errors raised by WorkerPool."""

    default_category = ErrorCategory.EXECUTION


class TaskTimeout(WorkerPoolError):
    """A dispatched task did not settle before its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the caller waited before giving up
    """

    default_retryable = True

    def __init__(
        self,
        message: str | None = None,
        *,
        timeout: float,
        elapsed: float | None = None,
        **kwargs: Any,
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        if message is None:
            message = f"Worker task timed out after {timeout}s"
            if elapsed is not None:
                message += f" (waited {elapsed:.2f}s)"
        super().__init__(message, **kwargs)


class TaskExecutionFailed(WorkerPoolError):
    """The worker handler raised while processing a task."""


class PoolTerminated(WorkerPoolError):
    """The pool was terminated; it accepts no further work."""


# =============================================================================
# SCHEDULING ERRORS
# =============================================================================


class Cancelled(SpindleError):
    """Work was withdrawn before it finished.

    Raised for tasks discarded by ``BoundedTaskQueue.clear()`` and for work
    whose CancellationToken fired.
    """

    default_category = ErrorCategory.SCHEDULING


class ConfigError(SpindleError, ValueError):
    """Invalid toolkit configuration."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error indicates a transient condition."""
    if isinstance(error, SpindleError):
        return error.retryable
    retryable_types = (
        ConnectionError,
        TimeoutError,
    )
    return isinstance(error, retryable_types)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SpindleError):
        return error.category
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SpindleError",
    "ResourcePoolError",
    "PoolExhausted",
    "ResourceResetFailed",
    "WorkerPoolError",
    "TaskTimeout",
    "TaskExecutionFailed",
    "PoolTerminated",
    "Cancelled",
    "ConfigError",
    "is_retryable",
    "categorize_error",
]
