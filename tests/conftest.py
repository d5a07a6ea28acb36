"""Shared test fixtures: seeded store injection and isolated settings."""

from __future__ import annotations

import pytest

from dealer_mcp.config import DealerSettings, set_settings
from dealer_mcp.data.inventory import set_store
from dealer_mcp.data.seed import seed_demo_data
from dealer_mcp.data.store import InMemoryRecordStore


@pytest.fixture(autouse=True)
def _inject_test_settings(tmp_path):
    """Settings that keep session files inside the test's tmp dir and skip the login gate."""
    set_settings(
        DealerSettings(
            store_backend="memory",
            session_file=str(tmp_path / "session.json"),
            require_auth=False,
        )
    )
    yield
    set_settings(None)


@pytest.fixture()
def store() -> InMemoryRecordStore:
    """A fresh, seeded in-memory record store."""
    store = InMemoryRecordStore()
    seed_demo_data(store)
    return store


@pytest.fixture(autouse=True)
def _inject_test_store(store: InMemoryRecordStore):
    """Give every test the same seeded store the ``store`` fixture returns."""
    set_store(store)
    yield
    set_store(None)
