"""Targeted re-resolution triggered by note lifecycle events."""
import logging

from notegraph.exceptions import NoteNotFoundError
from notegraph.linking.mutator import GraphMutator
from notegraph.linking.resolver import TitleResolver
from notegraph.storage.base import LinkStore, NoteStore

logger = logging.getLogger(__name__)


class CascadeHandler:
    """Reacts to create, rename and delete events.

    Each handler only touches the rows and notes named by the event: the
    note itself, its neighbours and the placeholders waiting for its title.
    Nothing here scans the whole corpus.
    """

    def __init__(
        self,
        notes: NoteStore,
        links: LinkStore,
        resolver: TitleResolver,
        mutator: GraphMutator,
    ):
        self.notes = notes
        self.links = links
        self.resolver = resolver
        self.mutator = mutator

    def note_deleted(self, note_id: str) -> int:
        """Remove ``note_id`` and every trace of it from its neighbours.

        Links pointing at the note are dropped, not turned back into
        placeholders. A note that is already gone is a no-op.

        Returns:
            Number of store writes made.
        """
        note = self.notes.get(note_id)
        if note is None:
            logger.debug(f"Delete cascade for missing note {note_id}: nothing to do")
            return 0

        writes = 0
        for link in self.links.by_source(note_id):
            writes += self.mutator.unlink_target(link)
        for link in self.links.by_target(note_id):
            writes += self.mutator.unlink_target(link)

        # Adjacency entries that had no row behind them
        for target_id in sorted(note.outgoing):
            writes += self.mutator.disconnect(note_id, target_id)
        for source_id in sorted(note.incoming):
            writes += self.mutator.disconnect(source_id, note_id)

        if self.notes.delete(note_id):
            writes += 1
        logger.info(
            f"Deleted note {note_id}: {len(note.outgoing)} outgoing, "
            f"{len(note.incoming)} incoming references cleared"
        )
        return writes

    def note_renamed(self, note_id: str, old_title: str, new_title: str) -> int:
        """Move ``note_id`` to ``new_title`` and promote placeholders waiting for it.

        Resolved links keep their target id; only their displayed title is
        refreshed, and only where the source has no row for the new title yet.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        note = self.notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        if old_title == new_title:
            return 0

        writes = 0
        if note.title != new_title:
            if note.title != old_title:
                logger.warning(
                    f"Rename of {note_id}: stored title {note.title!r} "
                    f"does not match {old_title!r}"
                )
            self.notes.put(note.touch(title=new_title))
            writes += 1

        for link in self.links.by_target(note_id):
            if not link.resolved or link.target_title == new_title:
                continue
            if self.links.get(link.source_id, new_title) is not None:
                continue
            self.links.put(link.evolve(target_title=new_title))
            writes += 1

        writes += self._promote_placeholders(new_title)
        logger.info(f"Renamed note {note_id}: {old_title!r} -> {new_title!r}")
        return writes

    def note_created(self, note_id: str, title: str) -> int:
        """Promote placeholders that were waiting for ``title``.

        The tie-break is re-run, so an older note with the same title can
        still win over the new one. A note that is already gone is a no-op.
        """
        note = self.notes.get(note_id)
        if note is None:
            logger.debug(f"Create cascade for missing note {note_id}: nothing to do")
            return 0
        if note.title != title:
            logger.warning(
                f"Create event for {note_id} names {title!r}, stored title is {note.title!r}"
            )
            title = note.title
        return self._promote_placeholders(title)

    def _promote_placeholders(self, title: str) -> int:
        waiting = self.links.unresolved_by_title(title)
        if not waiting:
            return 0
        target_id = self.resolver.resolve(title)
        if target_id is None:
            return 0

        writes = 0
        for link in waiting:
            try:
                writes += self.mutator.add_edge(link.source_id, title, target_id)
            except NoteNotFoundError as e:
                # Orphaned placeholder whose source is gone
                logger.debug(f"Skipping placeholder {link.id}: {e}")
                self.links.delete(link.id)
                writes += 1
        logger.debug(f"Promoted {len(waiting)} placeholder(s) for {title!r} to {target_id}")
        return writes
