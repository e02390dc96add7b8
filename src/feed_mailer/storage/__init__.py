"""Storage layer modules for feed mailer."""

from feed_mailer.storage.database import SQLStorage, Storage, new_storage
from feed_mailer.storage.session import SQLSession, StorageSession

__all__ = [
    "Storage",
    "SQLStorage",
    "StorageSession",
    "SQLSession",
    "new_storage",
]
