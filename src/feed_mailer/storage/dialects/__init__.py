"""Database dialect system for feed mailer.

The scheme of the storage DSN selects the dialect. Only the backends in the
registry are supported; anything else is rejected as unimplemented.
"""

from feed_mailer.errors import UnimplementedError
from feed_mailer.storage.dialects.base import BaseDialect
from feed_mailer.storage.dialects.postgresql import PostgreSQLDialect
from feed_mailer.storage.dialects.sqlite import SQLiteDialect

# Dialect registry, keyed by DSN scheme
_DIALECT_REGISTRY: dict[str, type[BaseDialect]] = {
    "sqlite": SQLiteDialect,
    "sqlite3": SQLiteDialect,  # Alias
    "postgresql": PostgreSQLDialect,
    "postgres": PostgreSQLDialect,  # Alias
}


def get_dialect(scheme: str) -> BaseDialect:
    """Get a dialect instance by DSN scheme.

    Args:
        scheme: Backend part of the DSN scheme ("sqlite", "postgresql", ...)

    Returns:
        Dialect instance

    Raises:
        UnimplementedError: If the scheme is not supported
    """
    name_lower = scheme.lower()
    if name_lower not in _DIALECT_REGISTRY:
        raise UnimplementedError(f"unsupported db: {scheme}")

    dialect_class = _DIALECT_REGISTRY[name_lower]
    return dialect_class()


def get_supported_dialects() -> list[str]:
    """Get list of supported DSN schemes."""
    return sorted(_DIALECT_REGISTRY.keys())


__all__ = [
    "BaseDialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "get_supported_dialects",
]
