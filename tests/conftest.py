"""Common test fixtures for the notegraph engine."""

import pytest

from notegraph.config import config
from notegraph.engine import ReferenceGraph
from notegraph.observability import metrics
from notegraph.services.note_service import NoteService
from notegraph.storage.graph_store import GraphStore


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "notegraph.db")
    monkeypatch.setattr(config, "retry_delay", 0.0)
    yield config


@pytest.fixture
def store(test_config):
    """Create an in-memory store, closed after the test."""
    graph_store = GraphStore(in_memory=True)
    yield graph_store
    graph_store.close()


@pytest.fixture
def file_store(test_config):
    """Create a store backed by a SQLite file in a temp directory."""
    graph_store = GraphStore(database_path=test_config.database_path, in_memory=False)
    yield graph_store
    graph_store.close()


@pytest.fixture
def graph(store):
    """Create a ReferenceGraph that does not wait between retries."""
    return ReferenceGraph(store, write_retries=2, retry_delay=0.0)


@pytest.fixture
def note_service(store, graph):
    """Create a test NoteService."""
    return NoteService(store, graph=graph)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Start every test with empty global metrics."""
    metrics.reset()
    yield
    metrics.reset()
