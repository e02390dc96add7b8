"""SQLite dialect implementation."""

from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import Engine, event
from sqlalchemy.engine import URL
from sqlalchemy.pool import QueuePool, StaticPool

from feed_mailer.storage.dialects.base import BaseDialect

if TYPE_CHECKING:
    from feed_mailer.config import DatabaseConfig


class SQLiteDialect(BaseDialect):
    """SQLite database dialect.

    SQLite is the default backend. File databases use WAL mode and a
    QueuePool so concurrently running jobs each get their own connection.
    In-memory databases use a StaticPool so every session sees the same
    database.
    """

    @property
    def name(self) -> str:
        """Get dialect name."""
        return "sqlite"

    @staticmethod
    def is_memory(url: URL) -> bool:
        """Check whether the URL points at an in-memory database."""
        return url.database in (None, "", ":memory:")

    def build_url(self, url: URL) -> URL:
        """Build SQLite database URL.

        Accepts both ``sqlite://`` and ``sqlite3://`` schemes and makes sure the
        directory of a file database exists.
        """
        url = url.set(drivername="sqlite")

        if not self.is_memory(url):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        return url

    def get_engine_kwargs(self, url: URL, config: "DatabaseConfig") -> dict:
        """Get SQLite-specific engine kwargs."""
        connect_args = {
            "check_same_thread": False,  # Job runs execute on pool threads
            "timeout": config.busy_timeout_seconds,
        }

        if self.is_memory(url):
            return {
                "echo": config.echo,
                "connect_args": connect_args,
                "poolclass": StaticPool,
            }

        return {
            "echo": config.echo,
            "connect_args": connect_args,
            "poolclass": QueuePool,
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
        }

    def setup_engine_events(self, engine: Engine) -> None:
        """Set up SQLite PRAGMA statements.

        Enables WAL mode for better concurrent read access from job runs.
        """
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()
