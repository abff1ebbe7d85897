"""Tests for the link diff engine and the graph mutator."""
import pytest

from notegraph.exceptions import NoteNotFoundError
from notegraph.linking.diff import LinkDiffEngine
from notegraph.linking.mutator import GraphMutator
from notegraph.linking.resolver import TitleResolver
from notegraph.models.schema import EdgeChange, EditScript, Link, Note
from tests.invariants import assert_graph_consistent


def _seed(store, *notes):
    with store.transaction() as tx:
        for note in notes:
            tx.notes.put(note)


def _diff(tx, source_id, titles, previous=()):
    differ = LinkDiffEngine(tx.notes, tx.links, TitleResolver(tx.notes))
    return differ.diff(source_id, list(previous), list(titles))


def _diff_and_apply(store, source_id, titles):
    with store.transaction() as tx:
        script = _diff(tx, source_id, titles)
        GraphMutator(tx.notes, tx.links).apply(source_id, script)
    return script


class TestLinkDiffEngine:
    """Tests for LinkDiffEngine."""

    def test_partition_resolved_and_unresolved(self, store):
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        with store.transaction() as tx:
            script = _diff(tx, "a", ["B", "Missing"])
        assert script.add_edges == [EdgeChange("B", "b")]
        assert script.add_placeholders == ["Missing"]
        assert script.remove_edges == []
        assert script.remove_placeholders == []

    def test_second_diff_is_empty(self, store):
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        first = _diff_and_apply(store, "a", ["B", "Missing"])
        assert first.size == 2
        with store.transaction() as tx:
            assert _diff(tx, "a", ["B", "Missing"]).is_empty

    def test_removed_titles(self, store):
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        _diff_and_apply(store, "a", ["B", "Missing"])
        with store.transaction() as tx:
            script = _diff(tx, "a", [], previous=["B", "Missing"])
        assert script.remove_edges == [EdgeChange("B", "b")]
        assert script.remove_placeholders == ["Missing"]
        assert not script.add_edges and not script.add_placeholders

    def test_diff_uses_store_state_not_previous_titles(self, store):
        """A wrong previous list does not change the script."""
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        _diff_and_apply(store, "a", ["B"])
        with store.transaction() as tx:
            script = _diff(tx, "a", ["B"], previous=["Something", "Else"])
        assert script.is_empty

    def test_stray_adjacency_is_removed(self, store):
        """An outgoing id with no row and no reference is cleaned up."""
        _seed(
            store,
            Note(id="a", title="A", outgoing=frozenset({"b"})),
            Note(id="b", title="B", incoming=frozenset({"a"})),
        )
        with store.transaction() as tx:
            script = _diff(tx, "a", [])
        assert script.remove_edges == [EdgeChange(None, "b")]
        _diff_and_apply(store, "a", [])
        assert_graph_consistent(store)

    def test_missing_row_is_repaired(self, store):
        """An edge whose row was lost is re-added."""
        _seed(
            store,
            Note(id="a", title="A", outgoing=frozenset({"b"})),
            Note(id="b", title="B", incoming=frozenset({"a"})),
        )
        with store.transaction() as tx:
            script = _diff(tx, "a", ["B"])
        assert script.add_edges == [EdgeChange("B", "b")]
        _diff_and_apply(store, "a", ["B"])
        assert_graph_consistent(store)

    def test_one_sided_edge_is_repaired(self, store):
        _seed(store, Note(id="a", title="A", outgoing=frozenset({"b"})), Note(id="b", title="B"))
        with store.transaction() as tx:
            tx.links.put(Link(source_id="a", target_id="b", target_title="B", resolved=True))
        _diff_and_apply(store, "a", ["B"])
        assert_graph_consistent(store)

    def test_stale_placeholder_is_promoted(self, store):
        """A placeholder whose title now exists becomes an edge."""
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        with store.transaction() as tx:
            tx.links.put(Link(source_id="a", target_title="B"))
            script = _diff(tx, "a", ["B"])
        assert script.add_edges == [EdgeChange("B", "b")]
        assert script.remove_placeholders == []
        _diff_and_apply(store, "a", ["B"])
        with store.transaction() as tx:
            rows = tx.links.by_source("a")
        assert len(rows) == 1 and rows[0].resolved

    def test_missing_source(self, store):
        with store.transaction() as tx:
            with pytest.raises(NoteNotFoundError):
                _diff(tx, "nope", ["X"])


class TestGraphMutator:
    """Tests for GraphMutator."""

    def test_add_and_remove_edge(self, store):
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        with store.transaction() as tx:
            GraphMutator(tx.notes, tx.links).add_edge("a", "B", "b")
        with store.transaction() as tx:
            assert tx.notes.get("a").outgoing == {"b"}
            assert tx.notes.get("b").incoming == {"a"}
            assert tx.links.get("a", "B").target_id == "b"
        assert_graph_consistent(store)

        with store.transaction() as tx:
            GraphMutator(tx.notes, tx.links).remove_edge("a", EdgeChange("B", "b"))
        with store.transaction() as tx:
            assert tx.notes.get("a").outgoing == frozenset()
            assert tx.notes.get("b").incoming == frozenset()
            assert tx.links.get("a", "B") is None

    def test_add_edge_upserts_placeholder(self, store):
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        with store.transaction() as tx:
            tx.links.put(Link(id="row-1", source_id="a", target_title="B"))
        with store.transaction() as tx:
            GraphMutator(tx.notes, tx.links).add_edge("a", "B", "b")
        with store.transaction() as tx:
            rows = tx.links.by_source("a")
        assert [(r.id, r.resolved, r.target_id) for r in rows] == [("row-1", True, "b")]

    def test_add_edge_twice_writes_nothing(self, store):
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        with store.transaction() as tx:
            mutator = GraphMutator(tx.notes, tx.links)
            assert mutator.add_edge("a", "B", "b") == 3
            assert mutator.add_edge("a", "B", "b") == 0

    def test_two_titles_same_target_keep_edge(self, store):
        """Dropping one of two references to a note keeps the edge."""
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        with store.transaction() as tx:
            mutator = GraphMutator(tx.notes, tx.links)
            mutator.add_edge("a", "B", "b")
            mutator.add_edge("a", "Bee", "b")
        with store.transaction() as tx:
            GraphMutator(tx.notes, tx.links).remove_edge("a", EdgeChange("Bee", "b"))
        with store.transaction() as tx:
            assert tx.notes.get("a").outgoing == {"b"}
            assert tx.notes.get("b").incoming == {"a"}
            assert tx.links.get("a", "Bee") is None

    def test_self_reference(self, store):
        _seed(store, Note(id="a", title="A"))
        with store.transaction() as tx:
            GraphMutator(tx.notes, tx.links).add_edge("a", "A", "a")
        with store.transaction() as tx:
            note = tx.notes.get("a")
            assert note.outgoing == {"a"}
            assert note.incoming == {"a"}
        assert_graph_consistent(store)
        with store.transaction() as tx:
            GraphMutator(tx.notes, tx.links).remove_edge("a", EdgeChange("A", "a"))
        with store.transaction() as tx:
            note = tx.notes.get("a")
            assert note.outgoing == frozenset() and note.incoming == frozenset()

    def test_placeholder_never_overwrites_edge(self, store):
        _seed(store, Note(id="a", title="A"), Note(id="b", title="B"))
        with store.transaction() as tx:
            mutator = GraphMutator(tx.notes, tx.links)
            mutator.add_edge("a", "B", "b")
            assert mutator.add_placeholder("a", "B") == 0
            assert tx.links.get("a", "B").resolved

    def test_placeholder_lifecycle(self, store):
        _seed(store, Note(id="a", title="A"))
        with store.transaction() as tx:
            mutator = GraphMutator(tx.notes, tx.links)
            assert mutator.add_placeholder("a", "X") == 1
            assert mutator.add_placeholder("a", "X") == 0
        with store.transaction() as tx:
            mutator = GraphMutator(tx.notes, tx.links)
            assert mutator.remove_placeholder("a", "X") == 1
            assert mutator.remove_placeholder("a", "X") == 0

    def test_disconnect_tolerates_missing_notes(self, store):
        _seed(store, Note(id="a", title="A", outgoing=frozenset({"gone"})))
        with store.transaction() as tx:
            assert GraphMutator(tx.notes, tx.links).disconnect("a", "gone") == 1
            assert GraphMutator(tx.notes, tx.links).disconnect("gone", "a") == 0

    def test_apply_requires_source(self, store):
        with store.transaction() as tx:
            with pytest.raises(NoteNotFoundError):
                GraphMutator(tx.notes, tx.links).apply(
                    "nope", EditScript(source_id="nope", add_placeholders=["X"])
                )

    def test_add_edge_to_missing_target(self, store):
        _seed(store, Note(id="a", title="A"))
        with store.transaction() as tx:
            with pytest.raises(NoteNotFoundError):
                GraphMutator(tx.notes, tx.links).add_edge("a", "B", "missing")
