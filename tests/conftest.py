"""Pytest configuration and shared fixtures for devdash tests."""

import pytest

import devdash.io.logging_setup
from devdash.app.refresh_coordinator import RefreshCoordinator
from devdash.core.staleness import StalenessPolicy
from devdash.io.cache_store import CacheStore
from tests.harness.fakes import FakeClock, FakeFetcher, ManualDispatcher, Recorder


# ---------------------------------------------------------------------------
# Isolation: no test touches the real home directory
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolated_dirs(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("DEVDASH_LOG_DIR", str(tmp_path / "logs"))
    for name in (
        "DEVDASH_LOG_LEVEL",
        "DEVDASH_LOG_FILE",
        "DEVDASH_FETCH_TIMEOUT",
        "DEVDASH_FAN_OUT_LIMIT",
        "DEVDASH_PERSIST_CACHE",
        "DEVDASH_CACHE_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    devdash.io.logging_setup.reset()


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher():
    return ManualDispatcher()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def posted():
    return Recorder()


@pytest.fixture
def store(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def coordinator(store, fetcher, dispatcher, posted, clock):
    return RefreshCoordinator(
        store,
        fetcher,
        dispatcher,
        posted,
        StalenessPolicy(clock=clock),
        fetch_timeout=10.0,
        overdue_grace=2.0,
        clock=clock,
    )
