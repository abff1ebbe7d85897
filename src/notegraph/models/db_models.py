"""SQLAlchemy database models for the notegraph engine."""
import datetime
from typing import Optional

from sqlalchemy import (JSON, Boolean, Column, DateTime, ForeignKey, Integer,
                        String, Text, UniqueConstraint, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notegraph.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DBNote(Base):
    """Database model for a note.

    The adjacency sets are stored as sorted JSON id lists. ``version_id``
    is bumped on every UPDATE; a writer holding a stale copy gets a
    StaleDataError at flush time instead of silently overwriting.
    """
    __tablename__ = "notes"
    id = Column(String(255), primary_key=True, index=True)
    title = Column(String(255), nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    outgoing = Column(JSON, nullable=False, default=list)
    incoming = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utc_now, nullable=False)
    updated_at = Column(DateTime, default=_utc_now, nullable=False, index=True)
    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBLink(Base):
    """Database model for a reference from a note to a title."""
    __tablename__ = "links"
    id = Column(String(36), primary_key=True)
    source_id = Column(String(255), ForeignKey("notes.id"), nullable=False, index=True)
    target_id = Column(String(255), ForeignKey("notes.id"), nullable=True, index=True)
    target_title = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, default=_utc_now, nullable=False)
    resolved = Column(Boolean, default=False, nullable=False, index=True)

    # One row per reference: a source mentions a given title at most once
    __table_args__ = (
        UniqueConstraint('source_id', 'target_title',
                         name='unique_source_title'),
    )

    def __repr__(self) -> str:
        """Return string representation of link."""
        return (
            f"<Link(id={self.id}, source='{self.source_id}', "
            f"title='{self.target_title}', target='{self.target_id}', "
            f"resolved={self.resolved})>"
        )


def init_db(in_memory: Optional[bool] = None, db_url: Optional[str] = None) -> Engine:
    """Create an engine and the schema.

    In-memory databases use a StaticPool so every session of the process
    shares the single connection that holds the data. File databases get
    SQLite settings for crash resilience:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode (good balance of safety vs speed)
    - QueuePool with pre-ping to detect stale connections

    Args:
        in_memory: Force an in-memory database. Defaults to config.in_memory_db.
        db_url: Explicit SQLAlchemy URL, overriding the configured database path.

    Returns:
        The configured engine with all tables created.
    """
    if in_memory is None:
        in_memory = config.in_memory_db

    if in_memory:
        engine = create_engine(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            db_url or config.get_db_url(),
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
