"""Abstract base dialect for database backends."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from sqlalchemy import Engine
from sqlalchemy.engine import URL

if TYPE_CHECKING:
    from feed_mailer.config import DatabaseConfig


class BaseDialect(ABC):
    """Abstract base class for database dialects.

    A dialect turns the scheme-selected DSN into a SQLAlchemy URL and engine
    configuration for one backend. Everything above the engine (sessions,
    repository, watermark query) is backend independent.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the dialect name (e.g., "sqlite", "postgresql")."""
        ...

    @abstractmethod
    def build_url(self, url: URL) -> URL:
        """Normalise a parsed DSN into a SQLAlchemy URL.

        Args:
            url: DSN parsed with ``sqlalchemy.engine.make_url``

        Returns:
            URL passed to ``create_engine``

        Examples:
            >>> # sqlite3:///data/feed.db -> sqlite:///data/feed.db
            >>> # postgres://u:p@db/feed  -> postgresql://u:p@db/feed
        """
        ...

    @abstractmethod
    def get_engine_kwargs(self, url: URL, config: "DatabaseConfig") -> dict:
        """Get engine-specific keyword arguments for ``create_engine``.

        Args:
            url: Normalised URL returned by ``build_url``
            config: Database engine configuration
        """
        ...

    def setup_engine_events(self, engine: Engine) -> None:
        """Set up dialect-specific engine event listeners.

        Base implementation does nothing.
        """
        pass
