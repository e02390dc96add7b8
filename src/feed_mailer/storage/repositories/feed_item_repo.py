"""
Feed item repository for database operations.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from feed_mailer.models import FeedItem, FeedItemModel, format_time, parse_time


class FeedItemRepository:
    """Repository for feed item rows."""

    def __init__(self, session: Session) -> None:
        """Initialize repository with a database session.

        Args:
            session: SQLAlchemy Session instance
        """
        self.session = session

    def create_many(self, items: Iterable[FeedItem]) -> int:
        """Insert feed items.

        Args:
            items: Items to insert

        Returns:
            Number of rows added
        """
        rows = [item.to_model() for item in items]
        self.session.add_all(rows)
        return len(rows)

    def ack(self, item_ids: list[str], at: datetime) -> int:
        """Mark items as delivered.

        Args:
            item_ids: Identifiers of the delivered items
            at: Acknowledgment time

        Returns:
            Number of rows updated
        """
        if not item_ids:
            return 0

        result = self.session.execute(
            update(FeedItemModel)
            .where(FeedItemModel.id.in_(item_ids))
            .values(ack=True, ack_at=format_time(at))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def latest_watermark(self, email: str, site: str) -> Optional[datetime]:
        """Get the latest collection time among acknowledged items.

        Args:
            email: Subscriber address
            site: Site URL

        Returns:
            Aware UTC datetime, or None when nothing was acknowledged yet
        """
        value = self.session.execute(
            select(func.max(FeedItemModel.fetch_at)).where(
                FeedItemModel.email == email,
                FeedItemModel.site == site,
                FeedItemModel.ack.is_(True),
            )
        ).scalar()
        return parse_time(value)

    def list_items(self, email: str, site: Optional[str] = None, acked: Optional[bool] = None) -> list[FeedItemModel]:
        """List item rows of a subscriber, oldest collection first.

        Args:
            email: Subscriber address
            site: Optional site URL filter
            acked: Optional acknowledgment state filter
        """
        query = select(FeedItemModel).where(FeedItemModel.email == email)
        if site is not None:
            query = query.where(FeedItemModel.site == site)
        if acked is not None:
            query = query.where(FeedItemModel.ack.is_(acked))
        return list(self.session.scalars(query.order_by(FeedItemModel.fetch_at, FeedItemModel.id)))
