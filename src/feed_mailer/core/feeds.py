"""
In-memory batch of the items collected by one pipeline run.

Items are grouped by subscriber email and by (email, site URL) so the mailbox
can address one message per subscriber, itemised by site. Emails and the
sites of each email keep first-seen order.
"""

from collections.abc import Iterator
from dataclasses import dataclass

from feed_mailer.models import FeedItem


@dataclass(frozen=True)
class SiteRef:
    """Site identity as seen from collected items."""

    url: str
    name: str


class Feeds:
    """Append-only collection of feed items."""

    def __init__(self) -> None:
        self.items: list[FeedItem] = []
        self.emails: list[str] = []
        self._sites: dict[str, list[SiteRef]] = {}
        self._by_site: dict[tuple[str, str], list[FeedItem]] = {}

    def append(self, *feeds: FeedItem) -> None:
        """Add items, updating the grouping indexes."""
        for feed in feeds:
            self.items.append(feed)

            if feed.email not in self._sites:
                self._sites[feed.email] = []
                self.emails.append(feed.email)

            key = (feed.email, feed.site_url)
            if key not in self._by_site:
                self._by_site[key] = []
                self._sites[feed.email].append(SiteRef(url=feed.site_url, name=feed.site_name))
            self._by_site[key].append(feed)

    def sites(self, email: str) -> list[SiteRef]:
        """Sites with items for an email, in first-seen order."""
        return list(self._sites.get(email, []))

    def site_feeds(self, email: str, site_url: str) -> list[FeedItem]:
        """Items collected for an (email, site) pair."""
        return list(self._by_site.get((email, site_url), []))

    def email_feeds(self, email: str) -> list[FeedItem]:
        """Items collected for an email, grouped by site."""
        out: list[FeedItem] = []
        for site in self._sites.get(email, []):
            out.extend(self._by_site[(email, site.url)])
        return out

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[FeedItem]:
        return iter(self.items)
