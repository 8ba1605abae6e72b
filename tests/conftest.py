"""Shared test fixtures and configuration.

Sets up environment variables so taskdesk.config loads predictable values,
and provides a temp-file Store, services on a fixed clock, and a few seeded
records.
"""

import os

# Patch env vars BEFORE any taskdesk imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("API_BASE_URL", "http://taskdesk.test")
os.environ.setdefault("API_MAX_RETRIES", "3")

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Deterministic clock; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_taskdesk.db")


@pytest.fixture
def store(tmp_db_path):
    """Return a Store with every table created in a temp file."""
    from taskdesk.data.store import Store
    return Store.open(tmp_db_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gamification(store, clock):
    from taskdesk.core.gamification_service import GamificationService
    return GamificationService(store, clock)


@pytest.fixture
def task_service(store, gamification, clock):
    from taskdesk.core.task_service import TaskService
    return TaskService(store, gamification, clock)


@pytest.fixture
def client_service(store, clock):
    from taskdesk.core.client_service import ClientService
    return ClientService(store, clock)


@pytest.fixture
def user(store):
    """A registered user with a fresh level-1 profile."""
    return store.users.add_user("dana", email="dana@example.com", created_at="2026-03-01T00:00:00+00:00")


@pytest.fixture
def client(store, user):
    """An active client owned by `user`."""
    return store.clients.add_client(user.id, "Acme Bakery", created_at="2026-03-01T00:00:00+00:00")
