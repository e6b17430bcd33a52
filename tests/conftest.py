"""Shared pytest fixtures for TrackTime tests."""

import sys
import pytest

from PyQt6.QtCore import QCoreApplication

from tracktime.client.mirror import TimerMirror
from tracktime.client.store import LocalStore
from tracktime.clock import FrozenClock
from tracktime.database.db import configure_engine, init_db
from tracktime.settings import Settings
from tracktime.timer.service import TimerService

from helpers import FlakyTransport, make_user, make_project, make_issue


@pytest.fixture(scope="session")
def qapp():
    """A single QCoreApplication instance shared across the entire test run."""
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    yield app


@pytest.fixture(autouse=True)
def test_db():
    """Point every test at a fresh in-memory SQLite database."""
    configure_engine("sqlite:///:memory:")
    init_db()
    yield


@pytest.fixture
def clock():
    """Frozen at 2025-07-23 09:00:00 UTC; advance it explicitly."""
    return FrozenClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite:///:memory:",
        local_state_path=str(tmp_path / "timer_state.json"),
        lock_retry_delay=0,
        request_timeout=5.0,
    )


@pytest.fixture
def service(clock, settings):
    return TimerService(clock=clock, settings=settings)


@pytest.fixture
def user_id():
    return make_user("Alice")


@pytest.fixture
def other_user_id():
    return make_user("Mallory")


@pytest.fixture
def project_id(user_id):
    """Project #3, owned by ``user_id``."""
    return make_project(user_id, "Time Tracker App", id=3)


@pytest.fixture
def issue_id(user_id, project_id):
    """Issue #7 in project #3."""
    return make_issue(user_id, project_id, "Fix timer accuracy bug", id=7)


@pytest.fixture
def transport(service, user_id, settings):
    t = FlakyTransport(service, user_id, timeout=settings.request_timeout)
    yield t
    t.close()


@pytest.fixture
def store(settings):
    return LocalStore(settings.local_state_path, settings.stale_after_seconds)


@pytest.fixture
def mirror(qapp, transport, store, settings, clock):
    """Fresh TimerMirror over the in-process service.  Timers not started."""
    return TimerMirror(transport, store, settings=settings, clock=clock)
