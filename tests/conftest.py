"""
Shared pytest fixtures and configuration for spindle tests.

This module provides:
- Settings cache cleanup for test isolation
- A counting, resettable resource factory
"""

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from spindle.core.config import clear_settings_cache


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    """Drop cached settings so env changes in one test never leak."""
    clear_settings_cache()
    yield
    clear_settings_cache()


class Buffer:
    """Resource used by pool tests: unhashable-by-content, resettable."""

    def __init__(self, serial: int):
        self.serial = serial
        self.items: list[Any] = []
        self.resets = 0

    __hash__ = None  # type: ignore[assignment]


class BufferFactory:
    """Creates numbered Buffers and clears them on reset."""

    def __init__(self) -> None:
        self.created = 0

    def create(self) -> Buffer:
        self.created += 1
        return Buffer(self.created)

    def reset(self, buffer: Buffer) -> None:
        buffer.items.clear()
        buffer.resets += 1


@pytest.fixture
def buffer_factory() -> BufferFactory:
    return BufferFactory()
