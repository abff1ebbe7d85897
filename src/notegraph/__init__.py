"""
notegraph - Bidirectional reference-graph maintenance for a personal note store.

Notes reference each other with ``[[Title]]`` markers. This package parses those
markers, resolves them to notes by title and keeps outgoing links and backlinks
consistent across note creation, edits, renames and deletion.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph")
except PackageNotFoundError:
    __version__ = "0.3.0"
