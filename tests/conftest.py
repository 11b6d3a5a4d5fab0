"""Shared fixtures for reqgraph tests."""
import pytest

from reqgraph.engine.record_store import RecordStore
from reqgraph.models import Requirement


@pytest.fixture
def store():
    """An empty store with the built-in definitions."""
    return RecordStore()


@pytest.fixture
def add(store):
    """Add a requirement to ``store`` and return it."""
    def _add(title="Requirement", req_type="Functional", **kwargs):
        return store.add_requirement(Requirement(title=title, req_type=req_type, **kwargs), actor="tester")
    return _add


@pytest.fixture
def populated(store, add):
    """A store with a few linked requirements of different types."""
    login = add("Login", "Functional", feature="Auth")
    logout = add("Logout", "Functional", feature="Auth")
    system = add("Session service", "System", feature="Auth")
    store.add_relationship(login.id, "parent", logout.id)
    store.add_relationship(login.id, "verifies", system.id)
    store.add_comment(login.id, "alice", "Needs SSO")
    return store
