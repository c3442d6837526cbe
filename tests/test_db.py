"""Tests for database URL resolution."""

import pytest

from taskflow.platform.db import get_async_database_url
from taskflow.platform.settings import reset_settings

pytestmark = pytest.mark.unit


def test_url_follows_current_settings(monkeypatch):
    monkeypatch.setenv("DATABASE__URL", "sqlite:///./first.sqlite")
    reset_settings()
    assert get_async_database_url() == "sqlite+aiosqlite:///./first.sqlite"

    monkeypatch.setenv("DATABASE__URL", "sqlite:///./second.sqlite")
    reset_settings()
    assert get_async_database_url() == "sqlite+aiosqlite:///./second.sqlite"


def test_postgres_url_uses_async_driver(monkeypatch):
    monkeypatch.setenv("DATABASE__URL", "postgresql://app:secret@db:5432/taskflow")
    reset_settings()

    assert get_async_database_url() == "postgresql+asyncpg://app:secret@db:5432/taskflow"
