"""Data models for the notegraph engine."""

import datetime
import uuid
from dataclasses import dataclass, field
from datetime import timezone
from typing import FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands datetimes back without timezone info; everything the
    engine writes is UTC, so naive values read from the database are UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate an opaque, unique identifier for a note or link row."""
    return str(uuid.uuid4())


def _validate_id(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


class Note(BaseModel):
    """A note with its adjacency sets.

    ``outgoing`` holds the ids this note references and ``incoming`` the ids
    referencing it. Both are maintained by the graph mutator. Notes are
    frozen; changes produce a new instance via ``evolve()``.
    """

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title of the note (not unique)")
    body: str = Field(default="", description="Committed text of the note")
    outgoing: FrozenSet[str] = Field(
        default_factory=frozenset, description="IDs of notes this note references"
    )
    incoming: FrozenSet[str] = Field(
        default_factory=frozenset, description="IDs of notes referencing this note"
    )
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is not empty."""
        return _validate_id(v, "Note ID")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        """Store timestamps as timezone-aware UTC."""
        return ensure_timezone_aware(v)

    @model_validator(mode="after")
    def validate_chronology(self) -> "Note":
        """A note cannot be updated before it was created."""
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be earlier than created_at")
        return self

    def evolve(self, **changes) -> "Note":
        """Return a validated copy with ``changes`` applied."""
        return self.__class__.model_validate({**self.model_dump(), **changes})

    def touch(self, **changes) -> "Note":
        """Like evolve(), with updated_at bumped to now.

        A note whose created_at lies ahead of the clock is stamped at its
        creation time instead, so the result still validates.
        """
        return self.evolve(updated_at=max(utc_now(), self.created_at), **changes)

    def __repr__(self) -> str:
        return f"<Note(id='{self.id}', title='{self.title}')>"


class Link(BaseModel):
    """A reference from a source note to a title.

    Resolved links carry the id of the note the title resolved to;
    unresolved (placeholder) links only carry the title.
    """

    id: str = Field(default_factory=generate_id, description="Unique ID of the link row")
    source_id: str = Field(..., description="ID of the note containing the reference")
    target_id: Optional[str] = Field(
        default=None, description="ID of the referenced note, when resolved"
    )
    target_title: str = Field(..., description="Referenced title (denormalized)")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the link was created (UTC)"
    )
    resolved: bool = Field(default=False, description="Whether the target exists")

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("id", "source_id")
    @classmethod
    def validate_ids(cls, v: str) -> str:
        return _validate_id(v, "Link ID")

    @field_validator("target_title")
    @classmethod
    def validate_target_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Target title cannot be empty")
        return v

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)

    @model_validator(mode="after")
    def validate_resolution(self) -> "Link":
        """A link is resolved exactly when it has a target id."""
        if self.resolved and not self.target_id:
            raise ValueError("A resolved link needs a target_id")
        if not self.resolved and self.target_id is not None:
            raise ValueError("An unresolved link cannot have a target_id")
        return self

    def evolve(self, **changes) -> "Link":
        """Return a validated copy with ``changes`` applied."""
        return self.__class__.model_validate({**self.model_dump(), **changes})

    @property
    def key(self) -> Tuple[str, str]:
        """The ``(source_id, target_title)`` pair that identifies this row."""
        return (self.source_id, self.target_title)


@dataclass(frozen=True)
class EdgeChange:
    """One edge to add or remove.

    ``title`` is the reference text keying the link row. It is None for a
    stray adjacency entry that has no link row behind it.
    """

    title: Optional[str]
    target_id: str


@dataclass
class EditScript:
    """Edits that bring a source note's links in line with its text.

    Attributes:
        source_id: The note whose references were diffed.
        add_edges: Resolved references missing from the graph.
        remove_edges: Edges whose reference text is gone or now resolves elsewhere.
        add_placeholders: Unresolved titles without a placeholder row.
        remove_placeholders: Placeholder titles no longer in the text.
    """

    source_id: str
    add_edges: List[EdgeChange] = field(default_factory=list)
    remove_edges: List[EdgeChange] = field(default_factory=list)
    add_placeholders: List[str] = field(default_factory=list)
    remove_placeholders: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.add_edges
            or self.remove_edges
            or self.add_placeholders
            or self.remove_placeholders
        )

    @property
    def size(self) -> int:
        return (
            len(self.add_edges)
            + len(self.remove_edges)
            + len(self.add_placeholders)
            + len(self.remove_placeholders)
        )

    def __len__(self) -> int:
        return self.size
