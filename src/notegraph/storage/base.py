"""Narrow store interfaces the linking engine is written against."""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from notegraph.models.schema import Link, Note


class NoteStore(ABC):
    """Key-indexed access to notes."""

    @abstractmethod
    def get(self, note_id: str) -> Optional[Note]:
        """Return the note with this id, or None."""

    @abstractmethod
    def get_many(self, note_ids: Iterable[str]) -> List[Note]:
        """Return the notes that exist among ``note_ids``."""

    @abstractmethod
    def find_by_title(self, title: str) -> List[Note]:
        """Return every note whose title equals ``title`` exactly."""

    @abstractmethod
    def put(self, note: Note) -> Note:
        """Insert or replace a note."""

    @abstractmethod
    def delete(self, note_id: str) -> bool:
        """Delete a note. Returns False if it did not exist."""

    @abstractmethod
    def all(self) -> List[Note]:
        """Return every note, most recently updated first."""


class LinkStore(ABC):
    """Access to link rows, indexed by source, target and (source, title)."""

    @abstractmethod
    def get(self, source_id: str, target_title: str) -> Optional[Link]:
        """Return the row for ``(source_id, target_title)``, or None."""

    @abstractmethod
    def by_source(self, source_id: str) -> List[Link]:
        """Return every row whose source is ``source_id``."""

    @abstractmethod
    def by_target(self, target_id: str) -> List[Link]:
        """Return every resolved row pointing at ``target_id``."""

    @abstractmethod
    def unresolved_by_title(self, target_title: str) -> List[Link]:
        """Return every placeholder row waiting for ``target_title``."""

    @abstractmethod
    def put(self, link: Link) -> Link:
        """Insert or replace a row, keyed by its id."""

    @abstractmethod
    def delete(self, link_id: str) -> bool:
        """Delete a row. Returns False if it did not exist."""

    @abstractmethod
    def all(self) -> List[Link]:
        """Return every row."""
