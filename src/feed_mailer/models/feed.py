"""
Feed item data model.

A feed item is one entry collected from a site for one subscriber. Rows are
written once at collection time and only touched again to record the
acknowledgment of their delivery.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from feed_mailer.models.base import Base

# Timestamps are stored as UTC text so that max() and comparisons behave the
# same on every backend.
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_time(value: datetime) -> str:
    """Encode a datetime in the storage format.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIME_FORMAT)


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """Decode a stored timestamp into an aware UTC datetime."""
    if not value:
        return None
    return datetime.strptime(value, TIME_FORMAT).replace(tzinfo=timezone.utc)


class FeedItemModel(Base):
    """SQLAlchemy ORM model for a collected feed item."""

    __tablename__ = "feed"

    __table_args__ = (
        Index("ix_feed_email_site", "email", "site"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    site: Mapped[str] = mapped_column(String(2048), nullable=False)
    site_name: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    link: Mapped[str] = mapped_column(String(2048), nullable=False, default="")

    # As supplied by the feed, not necessarily in a uniform format
    updated_at: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    published_at: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    author: Mapped[str] = mapped_column(String(1000), nullable=False, default="")

    fetch_at: Mapped[str] = mapped_column(String(19), nullable=False)
    ack: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ack_at: Mapped[Optional[str]] = mapped_column(String(19), nullable=True)

    def __repr__(self) -> str:
        return f"<FeedItemModel(id='{self.id}', email='{self.email}', site='{self.site}', ack={self.ack})>"


class FeedItem(BaseModel):
    """A feed item collected during one pipeline run."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Globally unique identifier")
    email: str = Field(..., description="Owning subscriber address")
    site_url: str = Field(..., description="URL of the site the item came from")
    site_name: str = Field(default="", description="Display name of the site")
    title: str = Field(default="")
    description: str = Field(default="")
    content: str = Field(default="")
    link: str = Field(default="")
    updated_at: str = Field(default="", description="Updated time as supplied by the feed")
    published_at: str = Field(default="", description="Published time as supplied by the feed")
    author: str = Field(default="", description="Comma separated author names")
    fetch_at: datetime = Field(..., description="Collection time")

    def to_model(self) -> FeedItemModel:
        """Build the ORM row for this item."""
        return FeedItemModel(
            id=self.id,
            email=self.email,
            site=self.site_url,
            site_name=self.site_name,
            title=self.title,
            description=self.description,
            content=self.content,
            link=self.link,
            updated_at=self.updated_at or None,
            published_at=self.published_at,
            author=self.author,
            fetch_at=format_time(self.fetch_at),
            ack=False,
        )
