"""Repository for link storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notegraph.models.db_models import DBLink
from notegraph.models.schema import Link, ensure_timezone_aware
from notegraph.storage.base import LinkStore

logger = logging.getLogger(__name__)


class LinkRepository(LinkStore):
    """Repository for link rows, bound to one session.

    Rows are unique per ``(source_id, target_title)``; the database
    constraint backs this up, and a violation surfaces as a write
    conflict when the transaction commits.
    """

    def __init__(self, session: Session):
        """Initialize the link repository.

        Args:
            session: SQLAlchemy session of the enclosing transaction.
        """
        self.session = session

    @staticmethod
    def _db_link_to_model(db_link: DBLink) -> Link:
        return Link(
            id=db_link.id,
            source_id=db_link.source_id,
            target_id=db_link.target_id,
            target_title=db_link.target_title,
            created_at=ensure_timezone_aware(db_link.created_at),
            resolved=bool(db_link.resolved),
        )

    def get(self, source_id: str, target_title: str) -> Optional[Link]:
        db_link = self.session.scalar(
            select(DBLink).where(
                (DBLink.source_id == source_id) &
                (DBLink.target_title == target_title)
            )
        )
        if not db_link:
            return None
        return self._db_link_to_model(db_link)

    def get_by_id(self, link_id: str) -> Optional[Link]:
        db_link = self.session.get(DBLink, link_id)
        if db_link is None:
            return None
        return self._db_link_to_model(db_link)

    def by_source(self, source_id: str) -> List[Link]:
        db_links = self.session.scalars(
            select(DBLink)
            .where(DBLink.source_id == source_id)
            .order_by(DBLink.created_at, DBLink.id)
        ).all()
        return [self._db_link_to_model(link) for link in db_links]

    def by_target(self, target_id: str) -> List[Link]:
        db_links = self.session.scalars(
            select(DBLink)
            .where(DBLink.target_id == target_id)
            .order_by(DBLink.created_at, DBLink.id)
        ).all()
        return [self._db_link_to_model(link) for link in db_links]

    def unresolved_by_title(self, target_title: str) -> List[Link]:
        db_links = self.session.scalars(
            select(DBLink)
            .where(
                (DBLink.target_title == target_title) &
                (DBLink.resolved.is_(False))
            )
            .order_by(DBLink.created_at, DBLink.id)
        ).all()
        return [self._db_link_to_model(link) for link in db_links]

    def unresolved(self) -> List[Link]:
        """Every placeholder row in the store."""
        db_links = self.session.scalars(
            select(DBLink)
            .where(DBLink.resolved.is_(False))
            .order_by(DBLink.created_at, DBLink.id)
        ).all()
        return [self._db_link_to_model(link) for link in db_links]

    def put(self, link: Link) -> Link:
        db_link = self.session.get(DBLink, link.id)
        if db_link is None:
            db_link = DBLink(id=link.id, created_at=link.created_at)
            self.session.add(db_link)
        db_link.source_id = link.source_id
        db_link.target_id = link.target_id
        db_link.target_title = link.target_title
        db_link.resolved = link.resolved
        return link

    def delete(self, link_id: str) -> bool:
        db_link = self.session.get(DBLink, link_id)
        if db_link is None:
            return False
        self.session.delete(db_link)
        # Flushed so a re-insert of the same (source, title) key cannot collide
        self.session.flush()
        return True

    def all(self) -> List[Link]:
        db_links = self.session.scalars(
            select(DBLink).order_by(DBLink.created_at, DBLink.id)
        ).all()
        return [self._db_link_to_model(link) for link in db_links]
