"""Spindle core — errors, structured logging, and configuration."""

from spindle.core.errors import (
    Cancelled,
    ErrorCategory,
    ErrorContext,
    PoolExhausted,
    PoolTerminated,
    ResourceResetFailed,
    SpindleError,
    TaskExecutionFailed,
    TaskTimeout,
    is_retryable,
)
from spindle.core.logging import configure_logging, get_logger

__all__ = [
    "SpindleError",
    "ErrorCategory",
    "ErrorContext",
    "PoolExhausted",
    "ResourceResetFailed",
    "TaskTimeout",
    "TaskExecutionFailed",
    "PoolTerminated",
    "Cancelled",
    "is_retryable",
    "configure_logging",
    "get_logger",
]
