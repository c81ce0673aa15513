"""Shared fixtures for the docgraph tests."""

import pytest

from docgraph import Database, MemoryBackend, SQLiteBackend


@pytest.fixture(params=["memory", "sqlite"])
def make_backend(request):
    """Factory for a fresh backend of each kind."""

    def factory():
        if request.param == "memory":
            return MemoryBackend()
        return SQLiteBackend(path=":memory:")

    return factory


@pytest.fixture
def db(make_backend):
    """A Database over a fresh, not yet connected backend."""
    return Database(make_backend())
