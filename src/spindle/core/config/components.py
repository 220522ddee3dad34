"""Component backend enums for spindle configuration.

Each enum names the implementations a configurable concern can be built
with. They are ``str`` enums so they round-trip through environment
variables unchanged (``SPINDLE_WORKER_BACKEND=process``).
"""

from __future__ import annotations

from enum import Enum


class WorkerBackend(str, Enum):
    """Execution unit behind each WorkerPool handle."""

    THREAD = "thread"
    PROCESS = "process"


class LogFormat(str, Enum):
    """Renderer used by :func:`spindle.core.logging.configure_logging`."""

    JSON = "json"
    CONSOLE = "console"
    AUTO = "auto"
