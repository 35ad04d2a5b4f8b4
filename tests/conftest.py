"""
Pytest configuration and shared fixtures.

Provides an in-memory store, a controllable clock, a configured config
manager and a fake remote store used across the test suite.
"""

import pytest
from helpers import FakeClock, FakeRemote, ts

from speakersync.core.config import ConfigManager
from speakersync.core.events import EventBus
from speakersync.core.exceptions import RemoteStoreError
from speakersync.core.records import DatasetRepository
from speakersync.core.storage import MemoryStore

# ==============================================================================
# Environment Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep real credentials and user .env files out of every test."""
    for var in (
        "SPEAKERSYNC_TOKEN",
        "SPEAKERSYNC_DOCUMENT_ID",
        "SPEAKERSYNC_STRATEGY",
        "SPEAKERSYNC_SYNC_INTERVAL",
        "SPEAKERSYNC_HOME",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


# ==============================================================================
# Component Fixtures
# ==============================================================================


@pytest.fixture
def clock():
    return FakeClock(ts("2024-05-01T12:00:00"))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def config(store):
    """Configured manager with instant retries."""
    manager = ConfigManager(store)
    manager.update(token="ghp_test", document_id="doc123", retry_delay=0)
    return manager


@pytest.fixture
def unconfigured(store):
    return ConfigManager(store)


@pytest.fixture
def repository(store, clock):
    return DatasetRepository(store, clock=clock)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def network_error():
    return RemoteStoreError("Remote API error: 503", status_code=503)
