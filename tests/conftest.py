"""
Test Configuration
==================

Pytest fixtures shared by the store and API tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from camrelay.config import Settings
from camrelay.database import create_db_engine, create_session_factory, init_db
from camrelay.main import create_app
from camrelay.sql_store import SqlDeviceRegistry, SqlFrameStore
from camrelay.store import InMemoryDeviceRegistry, InMemoryFrameStore


class FakeClock:
    """Deterministic clock; advances only when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "database"])
def registry(request, clock):
    """A device registry for each storage backend."""
    if request.param == "memory":
        return InMemoryDeviceRegistry(heartbeat_log_size=5, clock=clock)
    return SqlDeviceRegistry(request.getfixturevalue("session_factory"), clock=clock)


@pytest.fixture(params=["memory", "database"])
def frame_store(request, clock):
    """A frame store for each storage backend, capped at 50 frames of 1KB."""
    if request.param == "memory":
        return InMemoryFrameStore(
            max_frame_bytes=1024, frames_per_device=50, clock=clock
        )
    return SqlFrameStore(
        request.getfixturevalue("session_factory"),
        max_frame_bytes=1024,
        frames_per_device=50,
        clock=clock,
    )


@pytest.fixture
def settings():
    return Settings(
        storage_backend="memory",
        max_frame_bytes=1024,
        max_request_bytes=4096,
        frames_per_device=50,
        heartbeat_log_size=10,
        device_offline_after=30,
        api_prefix="/api",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def jpeg_bytes():
    return b"\xff\xd8\xff\xe0" + bytes(range(64)) + b"\xff\xd9"
