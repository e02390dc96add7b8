"""
Storage backends and session management.

The pipeline only relies on the ``Storage`` contract: sessions with explicit
transaction boundaries plus the three feed item operations. ``SQLStorage``
implements it on top of SQLAlchemy for every registered dialect.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from feed_mailer.config import DatabaseConfig
from feed_mailer.errors import InternalError, InvalidArgumentError
from feed_mailer.logger import get_logger
from feed_mailer.models import Base, FeedItem
from feed_mailer.storage.dialects import BaseDialect, get_dialect
from feed_mailer.storage.repositories import FeedItemRepository
from feed_mailer.storage.session import SQLSession, StorageSession

logger = get_logger(__name__)


class Storage(ABC):
    """Transactional persistence for feed items and watermarks."""

    @abstractmethod
    def new_session(self) -> StorageSession:
        """Create a transactional session (explicit begin/commit/rollback)."""
        ...

    @abstractmethod
    def new_auto_session(self) -> StorageSession:
        """Create an auto-commit session for single idempotent statements."""
        ...

    @abstractmethod
    def save_feeds(self, ses: StorageSession, *feeds: FeedItem) -> None:
        """Insert collected feed items."""
        ...

    @abstractmethod
    def ack_feeds(self, ses: StorageSession, at: datetime, *feed_ids: str) -> None:
        """Mark feed items as delivered at the given time."""
        ...

    @abstractmethod
    def get_latest_feed_watermark(self, ses: StorageSession, email: str, site: str) -> Optional[datetime]:
        """Get the latest collection time among acknowledged items of (email, site).

        Returns None when nothing was acknowledged for the pair yet.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release every resource held by the backend."""
        ...

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class SQLStorage(Storage):
    """Storage implemented with SQLAlchemy."""

    def __init__(
        self,
        url: URL,
        dialect: BaseDialect,
        db_config: Optional[DatabaseConfig] = None,
    ):
        """Open the database and create the schema if needed.

        Args:
            url: Parsed DSN
            dialect: Dialect selected from the DSN scheme
            db_config: Optional engine configuration (defaults from environment)

        Raises:
            InternalError: If the database cannot be opened or migrated
        """
        db_config = db_config or DatabaseConfig()

        self.dialect = dialect
        self.url = dialect.build_url(url)

        try:
            self._engine: Optional[Engine] = create_engine(
                self.url, **dialect.get_engine_kwargs(self.url, db_config)
            )
            dialect.setup_engine_events(self._engine)
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            raise InternalError(
                f"open {dialect.name} db {self.url.render_as_string(hide_password=True)} failed",
                cause=e,
            ) from e

        self._session_factory = sessionmaker(
            autoflush=False,
            expire_on_commit=False,
            bind=self._engine,
        )
        logger.debug(f"Opened {dialect.name} storage at {self.url.render_as_string(hide_password=True)}")

    @property
    def engine(self) -> Engine:
        """Get the database engine."""
        if self._engine is None:
            raise InternalError("storage is closed")
        return self._engine

    def new_session(self) -> SQLSession:
        return SQLSession(self._session_factory)

    def new_auto_session(self) -> SQLSession:
        return SQLSession(self._session_factory, autocommit=True)

    def save_feeds(self, ses: SQLSession, *feeds: FeedItem) -> None:
        if not feeds:
            return

        try:
            FeedItemRepository(ses.orm).create_many(feeds)
            ses.end_statement()
        except SQLAlchemyError as e:
            ses.abort_statement()
            raise InternalError("save feeds failed", cause=e) from e

    def ack_feeds(self, ses: SQLSession, at: datetime, *feed_ids: str) -> None:
        if not feed_ids:
            return

        try:
            FeedItemRepository(ses.orm).ack(list(feed_ids), at)
            ses.end_statement()
        except SQLAlchemyError as e:
            ses.abort_statement()
            raise InternalError("ack feeds failed", cause=e) from e

    def get_latest_feed_watermark(self, ses: SQLSession, email: str, site: str) -> Optional[datetime]:
        try:
            watermark = FeedItemRepository(ses.orm).latest_watermark(email, site)
            ses.end_statement()
        except SQLAlchemyError as e:
            ses.abort_statement()
            raise InternalError("get latest feed watermark failed", cause=e) from e
        return watermark

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


def new_storage(dsn: str, db_config: Optional[DatabaseConfig] = None) -> Storage:
    """Open the storage backend selected by the DSN scheme.

    Args:
        dsn: Connection string, e.g. ``sqlite:///data/feed.db``
        db_config: Optional engine configuration

    Returns:
        Storage instance

    Raises:
        InvalidArgumentError: If the DSN is missing or malformed
        UnimplementedError: If the DSN scheme is not supported
        InternalError: If the database cannot be opened
    """
    if not dsn or not dsn.strip():
        raise InvalidArgumentError("missing dsn")

    try:
        url = make_url(dsn.strip())
    except (ArgumentError, ValueError) as e:
        raise InvalidArgumentError(f"invalid dsn: {dsn}", cause=e) from e

    dialect = get_dialect(url.get_backend_name())
    return SQLStorage(url, dialect, db_config=db_config)
