"""Data models for feed mailer."""

from feed_mailer.models.base import Base
from feed_mailer.models.feed import (
    TIME_FORMAT,
    FeedItem,
    FeedItemModel,
    format_time,
    parse_time,
)

__all__ = [
    "Base",
    "FeedItem",
    "FeedItemModel",
    "TIME_FORMAT",
    "format_time",
    "parse_time",
]
