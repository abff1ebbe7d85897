"""Entity store with explicit lifecycle and transactional access."""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from notegraph.config import config
from notegraph.exceptions import (
    ConfigurationError,
    StoreUnavailableError,
    StoreWriteConflictError,
)
from notegraph.models.db_models import get_session_factory, init_db
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class StoreTransaction:
    """Note and link repositories sharing one session.

    Everything done through one StoreTransaction lands in a single commit.
    """

    def __init__(self, session: Session):
        self.session = session
        self.notes = NoteRepository(session)
        self.links = LinkRepository(session)


class GraphStore:
    """Owns the database engine for the lifetime of the process.

    Constructed once at startup, handed to the engine and services, and
    closed on shutdown.
    """

    def __init__(
        self,
        database_path: Optional[Path] = None,
        in_memory: Optional[bool] = None,
        engine: Optional[Engine] = None,
    ):
        """Initialize the store.

        Args:
            database_path: SQLite file to use. Defaults to config.database_path.
                Ignored for in-memory stores or when engine is provided.
            in_memory: Use an in-memory database. Defaults to config.in_memory_db.
            engine: Pre-configured SQLAlchemy engine whose schema already exists.
        """
        if engine is not None:
            self.engine = engine
            self.in_memory = ":memory:" in str(engine.url) or str(engine.url) == "sqlite://"
        else:
            self.in_memory = config.in_memory_db if in_memory is None else in_memory
            db_url = None
            if not self.in_memory and database_path is not None:
                db_path = config.get_absolute_path(Path(database_path))
                try:
                    db_path.parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise ConfigurationError(
                        f"Cannot create database directory {db_path.parent}",
                        config_key="database_path",
                    ) from e
                db_url = f"sqlite:///{db_path}"
            try:
                self.engine = init_db(in_memory=self.in_memory, db_url=db_url)
            except OperationalError as e:
                raise StoreUnavailableError(
                    "Failed to open the note database",
                    operation="init_db",
                    original_error=e,
                ) from e

        self.session_factory = get_session_factory(self.engine)
        # With a StaticPool every session runs on the same connection, so a
        # second session's commit would also commit a unit still in flight.
        # Transactions on such a store are serialized, and a transaction
        # opened inside another one on the same thread joins it.
        self._shared_connection = isinstance(self.engine.pool, StaticPool)
        self._session_lock = threading.RLock()
        self._local = threading.local()
        self._closed = False
        logger.info(
            f"GraphStore initialized: db_url="
            f"{':memory:' if self.in_memory else self.engine.url}"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def transaction(self, operation: str = "transaction") -> Iterator[StoreTransaction]:
        """Run a block of reads and writes as one commit.

        On any failure the session is rolled back, so no partial state is
        ever visible. SQLAlchemy errors are translated:
        - StaleDataError / IntegrityError -> StoreWriteConflictError (retryable)
        - OperationalError / other SQLAlchemyError -> StoreUnavailableError

        On a single-connection (in-memory) store, a transaction opened while
        another is active on the same thread shares the outer session and
        commits with it; other threads wait until the outer one finishes.

        Args:
            operation: Name used in error details and logs.
        """
        if self._closed:
            raise StoreUnavailableError("GraphStore is closed", operation=operation)

        if not self._shared_connection:
            with self._session_scope(operation) as tx:
                yield tx
            return

        with self._session_lock:
            outer = getattr(self._local, "active", None)
            if outer is not None:
                logger.debug(f"{operation} joins the active transaction")
                yield outer
                return
            with self._session_scope(operation) as tx:
                self._local.active = tx
                try:
                    yield tx
                finally:
                    self._local.active = None

    @contextmanager
    def _session_scope(self, operation: str) -> Iterator[StoreTransaction]:
        session = self.session_factory()
        try:
            yield StoreTransaction(session)
            session.commit()
        except (StaleDataError, IntegrityError) as e:
            session.rollback()
            logger.warning(f"Write conflict during {operation}: {e}")
            raise StoreWriteConflictError(
                f"Concurrent modification during {operation}",
                operation=operation,
                original_error=e,
            ) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Store failure during {operation}: {e}")
            raise StoreUnavailableError(
                f"Store failure during {operation}",
                operation=operation,
                original_error=e,
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose of the engine's connections. Safe to call twice."""
        if self._closed:
            return
        self.engine.dispose()
        self._closed = True
        logger.info("GraphStore closed")

    def __enter__(self) -> "GraphStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
