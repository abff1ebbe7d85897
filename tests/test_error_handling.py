"""Tests for the exception hierarchy, retries and failure atomicity."""
import datetime
import threading
from contextlib import contextmanager
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from notegraph.engine import ReferenceGraph
from notegraph.exceptions import (
    ConfigurationError,
    ErrorCode,
    NoteGraphError,
    NoteNotFoundError,
    NoteValidationError,
    StorageError,
    StoreUnavailableError,
    StoreWriteConflictError,
)
from notegraph.linking.mutator import GraphMutator
from notegraph.models.schema import Note
from notegraph.observability import metrics
from tests.invariants import assert_graph_consistent, link_snapshot, note_versions


class TestExceptionHierarchy:
    """Tests for error codes and serialization."""

    def test_note_not_found(self):
        error = NoteNotFoundError("abc")
        assert isinstance(error, NoteGraphError)
        assert error.code == ErrorCode.NOTE_NOT_FOUND
        assert error.note_id == "abc"
        assert str(error) == "[NOTE_NOT_FOUND] Note with ID 'abc' not found (note_id=abc)"

    def test_to_dict(self):
        data = NoteValidationError("Bad title", field="title", value="x" * 500).to_dict()
        assert data["error"] == "NoteValidationError"
        assert data["code"] == ErrorCode.NOTE_VALIDATION_FAILED.value
        assert data["code_name"] == "NOTE_VALIDATION_FAILED"
        assert data["retryable"] is False
        assert data["details"]["field"] == "title"
        assert len(data["details"]["value"]) == 100

    def test_write_conflict_is_retryable(self):
        error = StoreWriteConflictError("conflict", operation="op", original_error=ValueError("x"))
        assert isinstance(error, StorageError)
        assert error.retryable
        assert error.to_dict()["retryable"] is True
        assert error.code == ErrorCode.STORE_WRITE_CONFLICT
        assert error.details == {"operation": "op", "original_error": "x"}

    def test_store_unavailable_is_not_retryable(self):
        error = StoreUnavailableError("down")
        assert not error.retryable
        assert error.code == ErrorCode.STORE_UNAVAILABLE
        assert str(error) == "[STORE_UNAVAILABLE] down"

    def test_configuration_error(self):
        error = ConfigurationError("bad", config_key="write_retries")
        assert error.code == ErrorCode.CONFIG_INVALID
        assert error.details["config_key"] == "write_retries"


def _flaky_transactions(store, monkeypatch, failures):
    """Make the first ``failures`` transactions fail with a write conflict."""
    real = store.transaction
    calls = []

    @contextmanager
    def flaky(operation="transaction"):
        calls.append(operation)
        if len(calls) <= failures:
            raise StoreWriteConflictError("simulated conflict", operation=operation)
        with real(operation) as tx:
            yield tx

    monkeypatch.setattr(store, "transaction", flaky)
    return calls


class TestRetries:
    """Write conflicts are retried from a fresh diff."""

    def test_conflict_is_retried(self, store, monkeypatch):
        graph = ReferenceGraph(store, write_retries=2, retry_delay=0.0)
        graph.add_note(Note(id="b", title="B"))
        graph.add_note(Note(id="a", title="A"))
        calls = _flaky_transactions(store, monkeypatch, failures=2)

        script = graph.on_content_committed("a", "[[B]]")

        assert calls == ["content_committed"] * 3
        assert len(script.add_edges) == 1
        assert_graph_consistent(store)

    def test_conflict_surfaces_after_retries(self, store, monkeypatch):
        graph = ReferenceGraph(store, write_retries=1, retry_delay=0.0)
        graph.add_note(Note(id="a", title="A"))
        calls = _flaky_transactions(store, monkeypatch, failures=10)

        with pytest.raises(StoreWriteConflictError):
            graph.on_content_committed("a", "[[B]]")

        assert len(calls) == 2
        summary = metrics.get_metrics()["content_committed"]
        assert summary["error_count"] == 1

    def test_other_errors_are_not_retried(self, store, monkeypatch):
        graph = ReferenceGraph(store, write_retries=3, retry_delay=0.0)
        calls = _flaky_transactions(store, monkeypatch, failures=0)
        with pytest.raises(NoteNotFoundError):
            graph.on_content_committed("ghost", "x")
        assert len(calls) == 1


class TestFailureAtomicity:
    """A unit that fails part way leaves nothing behind."""

    def test_failure_mid_apply_rolls_back(self, store, graph):
        graph.add_note(Note(id="b", title="B"))
        graph.add_note(Note(id="a", title="A", body="old"))
        versions = note_versions(store)
        links = link_snapshot(store)

        with patch.object(GraphMutator, "add_placeholder", side_effect=RuntimeError("crash")):
            with pytest.raises(RuntimeError):
                graph.on_content_committed("a", "[[B]] [[Missing]]")

        assert note_versions(store) == versions
        assert link_snapshot(store) == links
        with store.transaction() as tx:
            assert tx.notes.get("a").body == "old"
            assert tx.notes.get("b").incoming == frozenset()

        # A retry from scratch lands the whole change
        graph.on_content_committed("a", "[[B]] [[Missing]]")
        assert_graph_consistent(store)

    def test_store_failure_is_unavailable(self, store, graph):
        graph.add_note(Note(id="a", title="A"))
        failure = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with patch.object(Session, "commit", side_effect=failure):
            with pytest.raises(StoreUnavailableError) as exc_info:
                graph.on_content_committed("a", "[[B]]")

        assert exc_info.value.operation == "content_committed"
        assert not exc_info.value.retryable
        with store.transaction() as tx:
            assert tx.notes.get("a").body == ""
            assert tx.links.all() == []

    def test_delete_failure_keeps_note(self, store, graph):
        created = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
        graph.add_note(Note(id="b", title="B", created_at=created, updated_at=created))
        graph.add_note(Note(id="a", title="A", body="[[B]]"))

        with patch.object(GraphMutator, "disconnect", side_effect=RuntimeError("crash")):
            with pytest.raises(RuntimeError):
                graph.on_note_deleted("b")

        with store.transaction() as tx:
            assert tx.notes.get("b") is not None
            assert tx.notes.get("a").outgoing == {"b"}
        assert_graph_consistent(store)

    def test_read_inside_failed_unit_commits_nothing(self, store, graph, note_service):
        graph.add_note(Note(id="b", title="B"))
        graph.add_note(Note(id="a", title="A", body="old"))
        versions = note_versions(store)
        links = link_snapshot(store)
        real_add_edge = GraphMutator.add_edge
        seen = []

        def add_edge_then_crash(mutator, source_id, title, target_id):
            real_add_edge(mutator, source_id, title, target_id)
            seen.append(note_service.get_note(source_id))
            raise RuntimeError("crash")

        with patch.object(GraphMutator, "add_edge", add_edge_then_crash):
            with pytest.raises(RuntimeError):
                graph.on_content_committed("a", "[[B]] [[Missing]]")

        assert len(seen) == 1
        assert note_versions(store) == versions
        assert link_snapshot(store) == links
        with store.transaction() as tx:
            assert tx.notes.get("a").body == "old"
            assert tx.notes.get("a").outgoing == frozenset()
            assert tx.notes.get("b").incoming == frozenset()
        assert_graph_consistent(store)

    def test_read_from_other_thread_waits_for_unit(self, store, graph, note_service):
        graph.add_note(Note(id="b", title="B"))
        graph.add_note(Note(id="a", title="A", body="old"))
        real_add_edge = GraphMutator.add_edge
        results = []
        readers = []

        def add_edge_then_crash(mutator, source_id, title, target_id):
            real_add_edge(mutator, source_id, title, target_id)
            reader = threading.Thread(
                target=lambda: results.append(note_service.get_note(source_id))
            )
            reader.start()
            readers.append(reader)
            reader.join(timeout=0.2)
            # Still blocked behind the unit's transaction
            assert reader.is_alive()
            raise RuntimeError("crash")

        with patch.object(GraphMutator, "add_edge", add_edge_then_crash):
            with pytest.raises(RuntimeError):
                graph.on_content_committed("a", "[[B]]")

        readers[0].join(timeout=5)
        assert [n.body for n in results] == ["old"]
        assert results[0].outgoing == frozenset()

    def test_update_note_failure_keeps_title_and_body(self, store, note_service):
        note = note_service.create_note(title="Original", body="old")
        versions = note_versions(store)

        with patch.object(GraphMutator, "add_placeholder", side_effect=RuntimeError("crash")):
            with pytest.raises(RuntimeError):
                note_service.update_note(note.id, title="Renamed", body="[[Missing]]")

        assert note_versions(store) == versions
        stored = note_service.get_note(note.id)
        assert (stored.title, stored.body) == ("Original", "old")
        assert note_service.get_all_links() == []

    def test_update_note_store_failure_keeps_title(self, store, note_service):
        note = note_service.create_note(title="Original", body="old")
        failure = OperationalError("UPDATE", {}, Exception("disk I/O error"))

        # Fails after the rename cascade has run in the same unit
        with patch.object(ReferenceGraph, "_commit_content", side_effect=failure):
            with pytest.raises(StoreUnavailableError):
                note_service.update_note(note.id, title="Renamed", body="new")

        stored = note_service.get_note(note.id)
        assert (stored.title, stored.body) == ("Original", "old")
