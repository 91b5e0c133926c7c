"""
Root conftest.py for pytest configuration

Pins the environment before any application module reads settings, and
marks tests by location.
"""
import os

import pytest

# Settings are read on first import of core.config
os.environ["ENVIRONMENT"] = "test"
os.environ["USE_STUBS"] = "true"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["NOTIFICATION_BACKEND"] = "memory"
os.environ["LOG_FORMAT"] = "text"
os.environ.setdefault("LOG_LEVEL", "WARNING")


def pytest_collection_modifyitems(config, items):
    """Apply unit/integration markers based on test location"""
    for item in items:
        path = str(item.fspath)
        if "/tests/integration/" in path:
            item.add_marker(pytest.mark.integration)
        elif "/tests/unit/" in path:
            item.add_marker(pytest.mark.unit)
