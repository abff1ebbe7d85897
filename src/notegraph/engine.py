"""The reference-graph engine: the entry points the editing layer calls."""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from notegraph.config import config
from notegraph.exceptions import (
    NoteNotFoundError,
    NoteValidationError,
    StoreWriteConflictError,
)
from notegraph.linking.cascade import CascadeHandler
from notegraph.linking.diff import LinkDiffEngine
from notegraph.linking.mutator import GraphMutator
from notegraph.linking.parser import parse_references
from notegraph.linking.resolver import TitleResolver
from notegraph.models.schema import EditScript, Note
from notegraph.observability import traced
from notegraph.storage.graph_store import GraphStore, StoreTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReferenceGraph:
    """Keeps outgoing links and backlinks consistent with note text.

    Every entry point runs as one unit: it takes the write lock, opens a
    store transaction, reads current state, computes its edits and commits.
    A unit that loses a write race is recomputed from scratch, since diffs
    are taken against current state and are idempotent.

    Callers decide when to invoke the entry points (on a timer, on blur,
    immediately); each call is synchronous and runs to completion.
    """

    def __init__(
        self,
        store: GraphStore,
        write_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        """Initialize the engine.

        Args:
            store: The entity store, owned by the caller.
            write_retries: Extra attempts after a write conflict.
                Defaults to config.write_retries.
            retry_delay: Base delay in seconds between attempts, multiplied
                by the attempt number. Defaults to config.retry_delay.
        """
        self.store = store
        self.write_retries = config.write_retries if write_retries is None else write_retries
        self.retry_delay = config.retry_delay if retry_delay is None else retry_delay
        # Reentrant so a unit can be composed of other units on the same thread
        self._write_lock = threading.RLock()

    def _run_unit(self, operation: str, unit: Callable[[StoreTransaction], T]) -> T:
        attempt = 0
        while True:
            try:
                with self._write_lock:
                    with self.store.transaction(operation) as tx:
                        return unit(tx)
            except StoreWriteConflictError:
                attempt += 1
                if attempt > self.write_retries:
                    logger.error(f"{operation} failed after {attempt} attempt(s)")
                    raise
                logger.warning(
                    f"Write conflict in {operation}, retry {attempt}/{self.write_retries}"
                )
                time.sleep(self.retry_delay * attempt)

    @staticmethod
    def _cascade(tx: StoreTransaction) -> CascadeHandler:
        resolver = TitleResolver(tx.notes)
        return CascadeHandler(tx.notes, tx.links, resolver, GraphMutator(tx.notes, tx.links))

    @staticmethod
    def _commit_content(tx: StoreTransaction, note_id: str, new_body: str) -> EditScript:
        note = tx.notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)

        previous_titles = parse_references(note.body)
        if note.body != new_body:
            tx.notes.put(note.touch(body=new_body))

        differ = LinkDiffEngine(tx.notes, tx.links, TitleResolver(tx.notes))
        script = differ.diff(note_id, previous_titles, parse_references(new_body))
        GraphMutator(tx.notes, tx.links).apply(note_id, script)
        return script

    @traced("content_committed")
    def on_content_committed(self, note_id: str, new_body: str) -> EditScript:
        """Store ``new_body`` for the note and reconcile its references.

        Returns:
            The edit script that was applied. Committing the same text twice
            returns an empty script the second time and writes nothing.

        Raises:
            NoteNotFoundError: If the note does not exist.
            StoreWriteConflictError: If retries are exhausted.
            StoreUnavailableError: On store failure.
        """
        return self._run_unit(
            "content_committed",
            lambda tx: self._commit_content(tx, note_id, new_body),
        )

    @traced("note_created")
    def on_note_created(self, note_id: str, title: str) -> int:
        """Promote placeholders waiting for ``title`` now that a note carries it.

        Returns:
            Number of store writes made.
        """
        return self._run_unit(
            "note_created",
            lambda tx: self._cascade(tx).note_created(note_id, title),
        )

    @traced("note_renamed")
    def on_note_renamed(self, note_id: str, old_title: str, new_title: str) -> int:
        """Apply a title change and promote placeholders waiting for the new title.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        return self._run_unit(
            "note_renamed",
            lambda tx: self._cascade(tx).note_renamed(note_id, old_title, new_title),
        )

    @traced("note_deleted")
    def on_note_deleted(self, note_id: str) -> bool:
        """Delete the note and clear it from every neighbour.

        Returns:
            True if the note existed, False if there was nothing to delete.
        """
        return self._run_unit(
            "note_deleted",
            lambda tx: self._cascade(tx).note_deleted(note_id) > 0,
        )

    @traced("note_added")
    def add_note(self, note: Note) -> Note:
        """Insert a new note and run its create cascade and content commit as one unit.

        Raises:
            NoteValidationError: If a note with the same id already exists.
        """
        def unit(tx: StoreTransaction) -> Note:
            if tx.notes.get(note.id) is not None:
                raise NoteValidationError(
                    f"Note with ID '{note.id}' already exists", field="id", value=note.id
                )
            tx.notes.put(note.evolve(outgoing=frozenset(), incoming=frozenset()))
            self._cascade(tx).note_created(note.id, note.title)
            self._commit_content(tx, note.id, note.body)
            return tx.notes.get(note.id)

        return self._run_unit("note_added", unit)

    @traced("note_edited")
    def edit_note(
        self,
        note_id: str,
        new_title: Optional[str] = None,
        new_body: Optional[str] = None,
    ) -> Note:
        """Apply a title change and a body change to one note as a single unit.

        Either both land or neither does: the rename cascade and the content
        commit share one store transaction.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        def unit(tx: StoreTransaction) -> Note:
            note = tx.notes.get(note_id)
            if note is None:
                raise NoteNotFoundError(note_id)
            if new_title is not None and new_title != note.title:
                self._cascade(tx).note_renamed(note_id, note.title, new_title)
            if new_body is not None:
                self._commit_content(tx, note_id, new_body)
            return tx.notes.get(note_id)

        return self._run_unit("note_edited", unit)

    @traced("note_repaired")
    def repair(self, note_id: str) -> EditScript:
        """Re-run the content commit on the stored body of ``note_id``."""
        def unit(tx: StoreTransaction) -> EditScript:
            note = tx.notes.get(note_id)
            if note is None:
                raise NoteNotFoundError(note_id)
            return self._commit_content(tx, note_id, note.body)

        return self._run_unit("note_repaired", unit)
