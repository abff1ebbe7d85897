"""Repository for note storage and retrieval."""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from notegraph.models.db_models import DBNote
from notegraph.models.schema import Note, ensure_timezone_aware
from notegraph.storage.base import NoteStore
from notegraph.utils import escape_like_pattern

logger = logging.getLogger(__name__)


class NoteRepository(NoteStore):
    """Repository for notes, bound to one session.

    Every read and write goes through the session handed in, so all the
    changes made during one store transaction commit or roll back together.
    """

    def __init__(self, session: Session):
        """Initialize the note repository.

        Args:
            session: SQLAlchemy session of the enclosing transaction.
        """
        self.session = session
        # The session only holds weak references to loaded rows. Keeping them
        # here pins the version_id each note was read at, so a write based on
        # a stale read fails its version check instead of overwriting.
        self._rows: Dict[str, DBNote] = {}

    def _db_note_to_model(self, db_note: DBNote) -> Note:
        """Convert a database row into a Note."""
        self._rows[db_note.id] = db_note
        return Note(
            id=db_note.id,
            title=db_note.title,
            body=db_note.body or "",
            outgoing=frozenset(db_note.outgoing or ()),
            incoming=frozenset(db_note.incoming or ()),
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    def get(self, note_id: str) -> Optional[Note]:
        db_note = self.session.get(DBNote, note_id)
        if db_note is None:
            return None
        return self._db_note_to_model(db_note)

    def get_many(self, note_ids: Iterable[str]) -> List[Note]:
        ids = list(dict.fromkeys(note_ids))
        if not ids:
            return []
        db_notes = self.session.scalars(
            select(DBNote).where(DBNote.id.in_(ids))
        ).all()
        by_id = {db_note.id: db_note for db_note in db_notes}
        # Preserve the caller's ordering
        return [self._db_note_to_model(by_id[i]) for i in ids if i in by_id]

    def find_by_title(self, title: str) -> List[Note]:
        db_notes = self.session.scalars(
            select(DBNote).where(DBNote.title == title).order_by(DBNote.id)
        ).all()
        # SQLite's = is case-sensitive for TEXT, but be explicit about it
        return [self._db_note_to_model(n) for n in db_notes if n.title == title]

    def find_titles_containing(self, query: str, limit: int = 10) -> List[str]:
        """Titles containing ``query`` (case-insensitive), most recent first."""
        pattern = f"%{escape_like_pattern(query.lower())}%"
        rows = self.session.scalars(
            select(DBNote.title)
            .where(func.lower(DBNote.title).like(pattern, escape="\\"))
            .order_by(DBNote.updated_at.desc(), DBNote.id)
            .limit(limit)
        ).all()
        return list(rows)

    def recent_titles(self, limit: int = 10) -> List[str]:
        """Titles of the most recently updated notes."""
        rows = self.session.scalars(
            select(DBNote.title)
            .order_by(DBNote.updated_at.desc(), DBNote.id)
            .limit(limit)
        ).all()
        return list(rows)

    def put(self, note: Note) -> Note:
        db_note = self._rows.get(note.id) or self.session.get(DBNote, note.id)
        if db_note is None:
            db_note = DBNote(id=note.id, created_at=note.created_at)
            self.session.add(db_note)
        self._rows[note.id] = db_note
        db_note.title = note.title
        db_note.body = note.body
        db_note.outgoing = sorted(note.outgoing)
        db_note.incoming = sorted(note.incoming)
        db_note.updated_at = note.updated_at
        return note

    def delete(self, note_id: str) -> bool:
        db_note = self.session.get(DBNote, note_id)
        if db_note is None:
            return False
        self.session.delete(db_note)
        self._rows.pop(note_id, None)
        return True

    def all(self) -> List[Note]:
        db_notes = self.session.scalars(
            select(DBNote).order_by(DBNote.updated_at.desc(), DBNote.id)
        ).all()
        return [self._db_note_to_model(n) for n in db_notes]

    def count(self) -> int:
        """Number of notes in the store."""
        return self.session.scalar(select(func.count()).select_from(DBNote)) or 0
