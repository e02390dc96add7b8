"""Repository pattern implementations for data access."""

from feed_mailer.storage.repositories.feed_item_repo import FeedItemRepository

__all__ = [
    "FeedItemRepository",
]
