"""
Shared pytest fixtures.

- ``vault``: temporary document root
- ``remote``: in-memory remote service with two lists (Work, Home)
- ``make_context``: builds a ``SyncContext`` around a fresh ``SyncState``
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mtd_sync.core.config import SyncState
from mtd_sync.core.models import RoutingRule
from mtd_sync.core.paths import reset_path_manager
from mtd_sync.markdown.vault import DocumentStore
from mtd_sync.sync.context import SyncContext
from tests.fakes import FakeRemote


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path):
    """Keep every test away from the real state directory."""
    monkeypatch.setenv("MTD_SYNC_HOME", str(tmp_path / "home"))
    reset_path_manager()
    yield
    reset_path_manager()


@pytest.fixture
def vault():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def remote():
    fake = FakeRemote()
    fake.add_collection("W", "Work")
    fake.add_collection("H", "Home")
    return fake


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "state.json")


@pytest.fixture
def make_context(vault, remote, state_path):
    """Factory: ``make_context(default_list="W", routes={"#home": "H"})``."""

    def factory(default_list="", routes=None, notices=None, **settings):
        state = SyncState()
        state.settings.default_list_id = default_list
        for tag, list_id in (routes or {}).items():
            state.settings.tag_routes.append(RoutingRule(tag, list_id))
        for key, value in settings.items():
            setattr(state.settings, key, value)
        notifier = notices.append if notices is not None else None
        return SyncContext(state, remote, DocumentStore(str(vault)), state_path=state_path, notifier=notifier)

    return factory

