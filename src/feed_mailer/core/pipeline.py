"""
Feed pipeline: the scheduled job of one subscriber.

A run fetches every site of the subscriber, keeps the items newer than the
site's watermark, saves them in one transaction, hands them to the mailbox and
acknowledges what the mailbox reports as sent. Acknowledgment, not saving,
advances the watermark, so items that were saved but never delivered are
collected and delivered again by a later run.
"""

import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from feed_mailer.config import SiteConfig, SubscriberConfig
from feed_mailer.core.feeds import Feeds
from feed_mailer.core.fetcher import FeedFetcher, ParsedItem, validate_url
from feed_mailer.core.mailbox import Mailbox
from feed_mailer.errors import CanceledError, InternalError, InvalidArgumentError
from feed_mailer.logger import get_logger
from feed_mailer.models import FeedItem
from feed_mailer.storage import Storage

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_new(item: ParsedItem, watermark: Optional[datetime]) -> bool:
    """Check whether an item is newer than the watermark.

    Without a watermark everything is new. Items without a usable timestamp
    cannot be ordered against a watermark and only pass the first time.
    """
    if watermark is None:
        return True
    timestamp = item.timestamp
    if timestamp is None:
        return False
    return timestamp > watermark


class FeedPipeline:
    """Fetch → dedupe → persist → deliver → acknowledge for one subscriber."""

    def __init__(
        self,
        subscriber: SubscriberConfig,
        storage: Storage,
        mailbox: Mailbox,
        fetcher: Optional[FeedFetcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the pipeline.

        Args:
            subscriber: Subscriber the pipeline is bound to
            storage: Feed item storage
            mailbox: Delivery backend
            fetcher: Optional feed fetcher (default from config)
            clock: Source of collection and acknowledgment times

        Raises:
            InvalidArgumentError: If the subscriber is incomplete or a site URL is malformed
        """
        if not subscriber.name:
            raise InvalidArgumentError("subscriber name is required")
        if not subscriber.email:
            raise InvalidArgumentError("subscriber email is required")
        for site in subscriber.sites:
            for url in (site.url, *site.urls):
                valid, error = validate_url(url)
                if not valid:
                    raise InvalidArgumentError(
                        f"found invalid site url {url!r} in {subscriber.name}: {error}"
                    )

        self.subscriber = subscriber
        self.storage = storage
        self.mailbox = mailbox
        self.fetcher = fetcher or FeedFetcher()
        self.clock = clock

    @property
    def name(self) -> str:
        return self.subscriber.name

    def run(self, cancel: Optional[threading.Event] = None) -> int:
        """Execute one pipeline run.

        Any failure aborts the rest of the run; nothing acknowledged is lost
        and anything unacknowledged is collected again next time.

        Args:
            cancel: Optional cancellation event

        Returns:
            Number of collected items
        """
        feeds = Feeds()
        for site in self.subscriber.sites:
            self._check_canceled(cancel)
            feeds.append(*self.collect_from_site(site, cancel))

        if not feeds:
            logger.debug(f"No new feeds for {self.subscriber.email}")
            return 0

        # Save first, then send and ack
        self._check_canceled(cancel)
        self.save_feeds(feeds)

        self._check_canceled(cancel)
        self.mailbox.send_feeds(feeds, self.ack_feeds)

        logger.info(f"Delivered run of {self.name}: {len(feeds)} new feeds")
        return len(feeds)

    def collect_from_site(self, site: SiteConfig, cancel: Optional[threading.Event] = None) -> list[FeedItem]:
        """Fetch a site, trying its alternate URLs in order when the primary fails."""
        last_error: Optional[InternalError] = None

        for url in (site.url, *site.urls):
            try:
                document = self.fetcher.fetch(url, cancel)
            except InternalError as e:
                logger.warning(f"Fetching {site.name or site.url} from {url} failed: {e}")
                last_error = e
                continue
            return self.collect_feeds(site, document, source_url=url)

        raise last_error

    def collect_feeds(self, site: SiteConfig, document: bytes, source_url: str = "") -> list[FeedItem]:
        """Turn a fetched document into the new items of the site.

        Args:
            site: Site the document belongs to
            document: Raw feed document
            source_url: URL the document was fetched from

        Returns:
            New items, in canonical feed order
        """
        items = self.fetcher.parse(document, source_url or site.url)
        if not items:
            return []

        with self.storage.new_auto_session() as ses:
            watermark = self.storage.get_latest_feed_watermark(ses, self.subscriber.email, site.url)

        fetch_at = self.clock()
        feeds = [
            FeedItem(
                id=str(uuid.uuid4()),
                email=self.subscriber.email,
                site_url=site.url,
                site_name=site.name,
                title=item.title,
                description=item.description,
                content=item.content,
                link=item.link,
                updated_at=item.updated,
                published_at=item.published,
                author=", ".join(item.authors),
                fetch_at=fetch_at,
            )
            for item in items
            if is_new(item, watermark)
        ]

        logger.debug(
            f"Collected {len(feeds)}/{len(items)} feeds from {site.name or site.url} "
            f"for {self.subscriber.email} (watermark {watermark})"
        )
        return feeds

    def save_feeds(self, feeds: Feeds) -> None:
        """Persist all items of the run in one transaction."""
        with self.storage.new_session() as ses:
            ses.begin()
            self.storage.save_feeds(ses, *feeds)
            ses.commit()

    def ack_feeds(self, *feeds: FeedItem) -> None:
        """Mark delivered items as acknowledged, advancing the watermark."""
        with self.storage.new_session() as ses:
            ses.begin()
            self.storage.ack_feeds(ses, self.clock(), *(feed.id for feed in feeds))
            ses.commit()

        logger.debug(f"Acknowledged {len(feeds)} feeds for {self.subscriber.email}")

    def _check_canceled(self, cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise CanceledError(f"run of {self.name} canceled")
