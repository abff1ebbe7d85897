"""Service layer for note operations built on the reference graph."""

import logging
from typing import List, Optional

from sqlalchemy import delete

from notegraph.config import config
from notegraph.engine import ReferenceGraph
from notegraph.exceptions import ErrorCode, NoteNotFoundError, NoteValidationError
from notegraph.linking.audit import AuditReport, audit_graph
from notegraph.models.db_models import DBLink, DBNote
from notegraph.models.schema import EditScript, Link, Note, utc_now
from notegraph.storage.graph_store import GraphStore
from notegraph.utils import generate_title_from_content, is_derived_title

logger = logging.getLogger(__name__)


class NoteService:
    """Service for creating, editing and querying notes.

    Writes are routed through the ReferenceGraph so the link graph follows
    every change to a note's text or title. Reads go straight to the store.
    """

    def __init__(self, store: GraphStore, graph: Optional[ReferenceGraph] = None):
        """Initialize the service.

        Args:
            store: The entity store, owned by the caller.
            graph: Engine to route writes through. Created over ``store``
                with default retry settings if None.
        """
        self.store = store
        self.graph = graph if graph is not None else ReferenceGraph(store)

    def _derive_title(self, body: str) -> str:
        return generate_title_from_content(
            body, config.default_title, max_length=config.max_title_length
        )

    def create_note(self, title: Optional[str] = None, body: str = "") -> Note:
        """Create a new note.

        Args:
            title: Note title. Derived from the first line of ``body`` when
                None, or the default title when the body is empty too.
            body: Note text, possibly containing ``[[Title]]`` references.

        Returns:
            The stored note, with its adjacency already filled in.
        """
        if title is not None and not title.strip():
            raise NoteValidationError(
                "Title cannot be blank",
                field="title",
                value=title,
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )
        if title is None:
            title = self._derive_title(body)

        now = utc_now()
        note = Note(title=title, body=body, created_at=now, updated_at=now)
        created = self.graph.add_note(note)
        logger.info(f"Created note {created.id} ({created.title!r})")
        return created

    def update_note(
        self,
        note_id: str,
        body: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Note:
        """Update a note's text and/or title.

        Without an explicit title, a note whose title is still the default
        or an auto-truncated one gets a title re-derived from the new body.
        The title and body are written together or not at all.

        Raises:
            NoteNotFoundError: If the note does not exist.
            NoteValidationError: If the new title is blank.
        """
        if title is not None and not title.strip():
            raise NoteValidationError(
                "Title cannot be blank",
                field="title",
                value=title,
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )
        note = self.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)

        if title is None and body is not None and is_derived_title(
            note.title, config.default_title
        ):
            derived = self._derive_title(body)
            if derived != note.title:
                title = derived

        if title == note.title:
            title = None
        if title is None and body is None:
            return note
        return self.graph.edit_note(note_id, new_title=title, new_body=body)

    def rename_note(self, note_id: str, new_title: str) -> Note:
        """Give a note a new title and promote references waiting for it.

        Raises:
            NoteNotFoundError: If the note does not exist.
            NoteValidationError: If the new title is blank.
        """
        if not new_title or not new_title.strip():
            raise NoteValidationError(
                "Title cannot be blank",
                field="title",
                value=new_title,
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )
        note = self.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        self.graph.on_note_renamed(note_id, note.title, new_title)
        return self.get_note(note_id)

    def delete_note(self, note_id: str) -> None:
        """Delete a note and every reference to or from it.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        if not self.graph.on_note_deleted(note_id):
            raise NoteNotFoundError(note_id)

    def get_note(self, note_id: str) -> Optional[Note]:
        """Retrieve a note by ID."""
        with self.store.transaction("get_note") as tx:
            return tx.notes.get(note_id)

    def get_all_notes(self) -> List[Note]:
        """All notes, most recently updated first."""
        with self.store.transaction("get_all_notes") as tx:
            return tx.notes.all()

    def get_backlinks(self, note_id: str) -> List[Note]:
        """Notes whose text references ``note_id``."""
        with self.store.transaction("get_backlinks") as tx:
            note = tx.notes.get(note_id)
            if note is None:
                raise NoteNotFoundError(note_id)
            return tx.notes.get_many(sorted(note.incoming))

    def get_outgoing_notes(self, note_id: str) -> List[Note]:
        """Notes that ``note_id`` references."""
        with self.store.transaction("get_outgoing_notes") as tx:
            note = tx.notes.get(note_id)
            if note is None:
                raise NoteNotFoundError(note_id)
            return tx.notes.get_many(sorted(note.outgoing))

    def get_links_from_note(self, note_id: str) -> List[Link]:
        """Link rows, resolved and unresolved, held by ``note_id``."""
        with self.store.transaction("get_links_from_note") as tx:
            return tx.links.by_source(note_id)

    def get_links_to_note(self, note_id: str) -> List[Link]:
        """Resolved link rows pointing at ``note_id``."""
        with self.store.transaction("get_links_to_note") as tx:
            return tx.links.by_target(note_id)

    def get_all_links(self) -> List[Link]:
        with self.store.transaction("get_all_links") as tx:
            return tx.links.all()

    def get_unresolved_links(self) -> List[Link]:
        with self.store.transaction("get_unresolved_links") as tx:
            return tx.links.unresolved()

    def find_linkable_titles(self, query: str = "", limit: int = 10) -> List[str]:
        """Suggest titles for a ``[[`` reference being typed.

        An empty query returns the most recently updated titles. Otherwise
        titles containing the query, case-insensitively, most recent first.
        """
        if limit <= 0:
            return []
        query = (query or "").strip()
        with self.store.transaction("find_linkable_titles") as tx:
            if not query:
                return tx.notes.recent_titles(limit)
            return tx.notes.find_titles_containing(query, limit)

    def clear_all_data(self) -> int:
        """Delete every note and link row.

        Returns:
            Number of notes deleted.
        """
        with self.store.transaction("clear_all_data") as tx:
            count = tx.notes.count()
            tx.session.execute(delete(DBLink))
            tx.session.execute(delete(DBNote))
        logger.warning(f"Cleared all data: {count} notes deleted")
        return count

    def check_graph_consistency(self) -> AuditReport:
        """Audit the whole graph without changing anything."""
        with self.store.transaction("check_graph_consistency") as tx:
            report = audit_graph(tx.notes, tx.links)
        if not report.ok:
            logger.warning(f"Graph consistency check failed: {report.to_dict()}")
        return report

    def repair_note(self, note_id: str) -> EditScript:
        """Re-derive one note's links from its stored text."""
        return self.graph.repair(note_id)
