"""
Pytest configuration and fixtures for respawn tests.
"""

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_structlog():
    """
    Restore structlog defaults after every test.

    setup_logging() turns on logger caching, which would stop
    structlog.testing.capture_logs() from seeing events in later tests.
    """
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def clear_respawn_env(monkeypatch):
    """Keep RESPAWN_* variables from the developer's shell out of the tests."""
    import os
    for key in list(os.environ):
        if key.startswith("RESPAWN_"):
            monkeypatch.delenv(key)
