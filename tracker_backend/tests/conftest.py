"""Pytest configuration shared across tracker backend tests."""

import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

# Ensure we default to memory backend for tests to avoid filesystem dependencies
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ["ENABLE_BASIC_AUTH"] = "false"

from src.api.db import SQLiteRepository  # noqa: E402
from src.api.dependencies import get_clock  # noqa: E402
from src.api.main import app  # noqa: E402
from src.api.repositories import InMemoryRepository, get_repository  # noqa: E402

OWNER = "alice"
OTHER_OWNER = "bob"


class FakeClock:
    """Settable clock; call it to read the time."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_repo():
    return InMemoryRepository()


@pytest.fixture
def sqlite_repo(tmp_path):
    return SQLiteRepository(str(tmp_path / "tracker.db"))


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    """Run the test once per storage backend."""
    if request.param == "sqlite":
        return SQLiteRepository(str(tmp_path / "tracker.db"))
    return InMemoryRepository()


@pytest.fixture
def client(memory_repo, clock):
    app.dependency_overrides[get_repository] = lambda: memory_repo
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app, headers={"X-Owner-Id": OWNER}) as c:
        yield c
    app.dependency_overrides.clear()
