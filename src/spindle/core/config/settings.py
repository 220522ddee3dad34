"""
Centralized settings for spindle.

Manifesto:
    Retry counts, pool sizes and timeouts used to live in untyped option
    objects with silent fallbacks. ``SpindleSettings`` replaces them with
    one validated, cached source of truth read from ``SPINDLE_*``
    environment variables and ``.env`` files.

Tags:
    spindle, configuration, settings, pydantic, caching, validation
"""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .components import LogFormat, WorkerBackend

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class SpindleSettings(BaseSettings):
    """Spindle centralized configuration.

    All fields can be set via ``SPINDLE_*`` environment variables (e.g.
    ``SPINDLE_WORKER_MAX_WORKERS=8``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="SPINDLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default=LogFormat.AUTO)
    service_name: str = Field(default="spindle")

    # ── Task queue ───────────────────────────────────────────────
    queue_concurrency: int = Field(default=1, ge=1)

    # ── Worker pool ──────────────────────────────────────────────
    worker_max_workers: int = Field(default=4, ge=1)
    worker_task_timeout: float = Field(default=30.0, gt=0)
    worker_backend: WorkerBackend = Field(default=WorkerBackend.THREAD)

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0, description="Seconds before the first retry")
    retry_backoff: bool = Field(default=True)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay: float | None = Field(default=None, gt=0)

    # ── Resource pool ────────────────────────────────────────────
    resource_pool_max_size: int = Field(default=10, ge=1)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return level

    @model_validator(mode="after")
    def _validate_retry_delays(self) -> SpindleSettings:
        if self.retry_max_delay is not None and self.retry_max_delay < self.retry_delay:
            raise ValueError("retry_max_delay must be >= retry_delay")
        return self

    @property
    def json_logs(self) -> bool | None:
        """Map ``log_format`` onto ``configure_logging(json_format=...)``."""
        if self.log_format == LogFormat.AUTO:
            return None
        return self.log_format == LogFormat.JSON


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, SpindleSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SpindleSettings:
    """Load, validate, and cache a :class:`SpindleSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = SpindleSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, reconfiguration)."""
    _settings_cache.clear()
