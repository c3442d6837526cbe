"""
Global pytest configuration and fixtures for Taskflow licensing tests.
"""

import os

import pytest

# Keep tests away from any database or catalog configured in the developer's .env
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("LICENSING__CATALOG_PATH", None)

from taskflow.platform.events import reset_event_bus  # noqa: E402
from taskflow.platform.licensing.catalog import reset_catalog_store  # noqa: E402
from taskflow.platform.settings import reset_settings  # noqa: E402


@pytest.fixture(autouse=True)
def reset_singletons():
    """Give every test fresh settings, event bus and catalog store."""
    reset_settings()
    reset_event_bus()
    reset_catalog_store()
    yield
    reset_settings()
    reset_event_bus()
    reset_catalog_store()
