"""Tests for spindle.core.config.settings — SpindleSettings + get_settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from spindle.core.config.components import LogFormat, WorkerBackend
from spindle.core.config.settings import SpindleSettings, clear_settings_cache, get_settings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Run from an empty directory so no stray .env file is read."""
    monkeypatch.chdir(tmp_path)


# ── Defaults ─────────────────────────────────────────────────────────────


class TestDefaults:
    def test_logging_defaults(self):
        s = SpindleSettings()
        assert s.log_level == "INFO"
        assert s.log_format == LogFormat.AUTO
        assert s.service_name == "spindle"
        assert s.json_logs is None

    def test_execution_defaults(self):
        s = SpindleSettings()
        assert s.queue_concurrency == 1
        assert s.worker_max_workers == 4
        assert s.worker_task_timeout == 30.0
        assert s.worker_backend == WorkerBackend.THREAD
        assert s.resource_pool_max_size == 10

    def test_retry_defaults(self):
        s = SpindleSettings()
        assert s.retry_max_attempts == 3
        assert s.retry_delay == 1.0
        assert s.retry_backoff is True
        assert s.retry_backoff_multiplier == 2.0
        assert s.retry_max_delay is None


# ── Environment overrides ────────────────────────────────────────────────


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SPINDLE_WORKER_MAX_WORKERS", "8")
        monkeypatch.setenv("SPINDLE_WORKER_BACKEND", "process")
        monkeypatch.setenv("SPINDLE_RETRY_BACKOFF", "false")
        s = SpindleSettings()
        assert s.worker_max_workers == 8
        assert s.worker_backend == WorkerBackend.PROCESS
        assert s.retry_backoff is False

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("SPINDLE_QUEUE_CONCURRENCY=5\n", encoding="utf-8")
        assert SpindleSettings().queue_concurrency == 5

    def test_log_format_maps_to_json_logs(self, monkeypatch):
        monkeypatch.setenv("SPINDLE_LOG_FORMAT", "console")
        assert SpindleSettings().json_logs is False
        monkeypatch.setenv("SPINDLE_LOG_FORMAT", "json")
        assert SpindleSettings().json_logs is True

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("SPINDLE_LOG_LEVEL", "debug")
        assert SpindleSettings().log_level == "DEBUG"


# ── Validation ───────────────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.parametrize(
        "field, value",
        [
            ("queue_concurrency", 0),
            ("worker_max_workers", 0),
            ("worker_task_timeout", 0),
            ("retry_max_attempts", 0),
            ("retry_delay", -1),
            ("retry_backoff_multiplier", 0.5),
            ("resource_pool_max_size", 0),
            ("log_level", "LOUD"),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            SpindleSettings(**{field: value})

    def test_max_delay_below_delay_rejected(self):
        with pytest.raises(ValidationError, match="retry_max_delay"):
            SpindleSettings(retry_delay=5.0, retry_max_delay=1.0)


# ── Caching ──────────────────────────────────────────────────────────────


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("SPINDLE_SERVICE_NAME", "swap-ui")
        assert get_settings() is first
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.service_name == "swap-ui"

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
