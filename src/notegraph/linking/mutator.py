"""Application of edit scripts to adjacency sets and link rows."""
import logging

from notegraph.exceptions import NoteNotFoundError
from notegraph.models.schema import EdgeChange, EditScript, Link, Note
from notegraph.storage.base import LinkStore, NoteStore

logger = logging.getLogger(__name__)


class GraphMutator:
    """The only code path that changes ``outgoing``/``incoming`` and link rows.

    All calls are made inside one store transaction, so the two sides of an
    edge and its link row commit together or not at all.
    """

    def __init__(self, notes: NoteStore, links: LinkStore):
        self.notes = notes
        self.links = links

    def apply(self, source_id: str, script: EditScript) -> int:
        """Apply ``script`` for ``source_id``.

        Removals run before additions so a title that changes from resolved
        to unresolved (or the reverse) never holds two rows at once.

        Returns:
            Number of store writes made.

        Raises:
            NoteNotFoundError: If the source note does not exist.
        """
        if script.is_empty:
            return 0
        if self.notes.get(source_id) is None:
            raise NoteNotFoundError(source_id)

        writes = 0
        for change in script.remove_edges:
            writes += self.remove_edge(source_id, change)
        for title in script.remove_placeholders:
            writes += self.remove_placeholder(source_id, title)
        for change in script.add_edges:
            writes += self.add_edge(source_id, change.title, change.target_id)
        for title in script.add_placeholders:
            writes += self.add_placeholder(source_id, title)

        logger.debug(f"Applied {script.size} edits to {source_id} ({writes} writes)")
        return writes

    def add_edge(self, source_id: str, title: str, target_id: str) -> int:
        """Link ``source_id`` to ``target_id`` through the reference ``title``.

        Upserts the ``(source, title)`` row, so a placeholder for the same
        title is promoted in place.
        """
        writes = self._connect(source_id, target_id)

        row = self.links.get(source_id, title)
        if row is None:
            self.links.put(
                Link(source_id=source_id, target_id=target_id, target_title=title, resolved=True)
            )
            writes += 1
        elif not row.resolved or row.target_id != target_id:
            self.links.put(row.evolve(target_id=target_id, resolved=True))
            writes += 1
        return writes

    def remove_edge(self, source_id: str, change: EdgeChange) -> int:
        """Drop the row for ``change`` and, if it was the last one, the adjacency."""
        writes = 0
        if change.title is not None:
            row = self.links.get(source_id, change.title)
            if row is not None and row.resolved and row.target_id == change.target_id:
                self.links.delete(row.id)
                writes += 1

        still_linked = any(
            link.resolved and link.target_id == change.target_id
            for link in self.links.by_source(source_id)
        )
        if not still_linked:
            writes += self.disconnect(source_id, change.target_id)
        return writes

    def add_placeholder(self, source_id: str, title: str) -> int:
        """Record an unresolved reference from ``source_id`` to ``title``."""
        row = self.links.get(source_id, title)
        if row is not None:
            if row.resolved:
                # Leave resolved rows to remove_edge; never overwrite an edge here
                logger.warning(
                    f"Placeholder for {title!r} from {source_id} skipped: a resolved row exists"
                )
            return 0
        self.links.put(Link(source_id=source_id, target_title=title, resolved=False))
        return 1

    def remove_placeholder(self, source_id: str, title: str) -> int:
        """Delete the unresolved row ``(source_id, title)`` if present."""
        row = self.links.get(source_id, title)
        if row is None or row.resolved:
            return 0
        self.links.delete(row.id)
        return 1

    def unlink_target(self, link: Link) -> int:
        """Remove a resolved row and its adjacency, whatever the source's text says.

        Used by the delete cascade. A missing source note is tolerated.
        """
        writes = 0
        if self.links.delete(link.id):
            writes += 1
        if link.resolved and link.target_id is not None:
            writes += self.disconnect(link.source_id, link.target_id)
        return writes

    def _connect(self, source_id: str, target_id: str) -> int:
        source = self._require(source_id)
        if source_id == target_id:
            if target_id in source.outgoing and source_id in source.incoming:
                return 0
            self.notes.put(source.evolve(
                outgoing=source.outgoing | {target_id},
                incoming=source.incoming | {source_id},
            ))
            return 1

        target = self._require(target_id)
        writes = 0
        if target_id not in source.outgoing:
            self.notes.put(source.evolve(outgoing=source.outgoing | {target_id}))
            writes += 1
        if source_id not in target.incoming:
            self.notes.put(target.evolve(incoming=target.incoming | {source_id}))
            writes += 1
        return writes

    def disconnect(self, source_id: str, target_id: str) -> int:
        """Remove both sides of an edge. Either note may already be gone."""
        source = self.notes.get(source_id)
        if source_id == target_id:
            if source is None or (
                target_id not in source.outgoing and source_id not in source.incoming
            ):
                return 0
            self.notes.put(source.evolve(
                outgoing=source.outgoing - {target_id},
                incoming=source.incoming - {source_id},
            ))
            return 1

        writes = 0
        if source is not None and target_id in source.outgoing:
            self.notes.put(source.evolve(outgoing=source.outgoing - {target_id}))
            writes += 1

        target = self.notes.get(target_id)
        if target is not None and source_id in target.incoming:
            self.notes.put(target.evolve(incoming=target.incoming - {source_id}))
            writes += 1
        return writes

    def _require(self, note_id: str) -> Note:
        note = self.notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note
