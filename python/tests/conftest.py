"""
Pytest configuration and fixtures for fylo tests.

Specialized fixtures are organized in the fixtures/ directory:
- fixtures.streams: Fake native handles and temp files for stream tests
- fixtures.watcher: Watch directories, files and event recorders
"""

import pytest

from fylo.config import reset_settings

# Load fixture modules
pytest_plugins = [
    "tests.fixtures.streams",
    "tests.fixtures.watcher",
]


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Resolve settings from a clean environment for every test."""
    for name in (
        "FYLO_DEBUG_MODE",
        "FYLO_DEFAULT_TIMEOUT_MS",
        "FYLO_POLLING_INTERVAL_MS",
        "FYLO_RESTART_DELAY",
        "FYLO_HIGH_WATER_MARK",
        "FYLO_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
