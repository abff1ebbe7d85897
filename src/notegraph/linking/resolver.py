"""Resolution of referenced titles to note ids."""
import logging
from typing import List, Optional

from notegraph.models.schema import Note
from notegraph.observability import metrics
from notegraph.storage.base import NoteStore

logger = logging.getLogger(__name__)

AMBIGUOUS_TITLE_EVENT = "ambiguous_title"


class TitleResolver:
    """Maps a title to at most one note.

    Matching is exact and case-sensitive. When several notes share the
    title, the most recently updated one wins and equal timestamps fall
    back to the smallest id, so the choice is deterministic.
    """

    def __init__(self, notes: NoteStore):
        self.notes = notes

    def candidates(self, title: str, exclude_id: Optional[str] = None) -> List[Note]:
        """Notes titled ``title``, best candidate first."""
        matches = [n for n in self.notes.find_by_title(title) if n.id != exclude_id]
        matches.sort(key=lambda n: n.id)
        matches.sort(key=lambda n: n.updated_at, reverse=True)
        return matches

    def resolve(self, title: str, exclude_id: Optional[str] = None) -> Optional[str]:
        """Return the id of the note ``title`` refers to, or None if unresolved."""
        matches = self.candidates(title, exclude_id=exclude_id)
        if not matches:
            return None
        if len(matches) > 1:
            metrics.record_event(AMBIGUOUS_TITLE_EVENT)
            logger.info(
                f"Ambiguous title {title!r}: {len(matches)} candidates, "
                f"chose {matches[0].id}"
            )
        return matches[0].id
