"""Storage layer for the notegraph engine."""

from notegraph.storage.base import LinkStore, NoteStore
from notegraph.storage.graph_store import GraphStore, StoreTransaction
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.note_repository import NoteRepository

__all__ = [
    "NoteStore",
    "LinkStore",
    "GraphStore",
    "StoreTransaction",
    "NoteRepository",
    "LinkRepository",
]
