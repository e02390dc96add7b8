"""PostgreSQL dialect implementation."""

from typing import TYPE_CHECKING

from sqlalchemy.engine import URL
from sqlalchemy.pool import QueuePool

from feed_mailer.storage.dialects.base import BaseDialect

if TYPE_CHECKING:
    from feed_mailer.config import DatabaseConfig


class PostgreSQLDialect(BaseDialect):
    """PostgreSQL database dialect.

    Requires the ``postgresql`` extra (psycopg2) to be installed.
    """

    @property
    def name(self) -> str:
        """Get dialect name."""
        return "postgresql"

    def build_url(self, url: URL) -> URL:
        """Build PostgreSQL URL, keeping an explicit driver if one was given."""
        _, _, driver = url.drivername.partition("+")
        drivername = f"postgresql+{driver}" if driver else "postgresql"
        return url.set(drivername=drivername)

    def get_engine_kwargs(self, url: URL, config: "DatabaseConfig") -> dict:
        """Get PostgreSQL-specific engine kwargs."""
        return {
            "echo": config.echo,
            "poolclass": QueuePool,
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_pre_ping": True,
        }
