"""
RSS/Atom feed fetcher and parser.

Fetches feed documents over HTTP with httpx and turns them into ``ParsedItem``
instances with feedparser.
"""

import calendar
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

import feedparser
import httpx

from feed_mailer.config import get_config
from feed_mailer.errors import CanceledError, InternalError
from feed_mailer.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_SCHEMES = ("http", "https", "file")

# How often an in-flight request checks for cancellation
CANCEL_POLL_SECONDS = 0.05


@dataclass
class ParsedItem:
    """One entry of a parsed feed document."""

    title: str = ""
    description: str = ""
    content: str = ""
    link: str = ""
    published: str = ""
    updated: str = ""
    published_parsed: Optional[datetime] = None
    updated_parsed: Optional[datetime] = None
    authors: list[str] = field(default_factory=list)

    @property
    def timestamp(self) -> Optional[datetime]:
        """Effective time of the item: updated time if present, else published time."""
        if self.updated_parsed is not None:
            return self.updated_parsed
        return self.published_parsed


def _to_datetime(value) -> Optional[datetime]:
    """Convert a feedparser UTC struct_time into an aware datetime."""
    if not value:
        return None
    return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)


def _entry_to_item(entry) -> ParsedItem:
    content = "".join(part.get("value", "") for part in entry.get("content", []))
    authors = [a.get("name") for a in entry.get("authors", []) if a.get("name")]
    if not authors and entry.get("author"):
        authors = [entry.get("author")]

    return ParsedItem(
        title=entry.get("title", ""),
        description=entry.get("summary", ""),
        content=content,
        link=entry.get("link", ""),
        published=entry.get("published", ""),
        updated=entry.get("updated", ""),
        published_parsed=_to_datetime(entry.get("published_parsed")),
        updated_parsed=_to_datetime(entry.get("updated_parsed")),
        authors=authors,
    )


def validate_url(url: str) -> tuple[bool, Optional[str]]:
    """Validate a feed URL.

    Args:
        url: URL to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        result = urlparse(url)
    except ValueError as e:
        return False, f"Validation error: {str(e)}"

    if result.scheme not in SUPPORTED_SCHEMES:
        return False, f"Unsupported scheme: {result.scheme or '(none)'}"

    if result.scheme == "file":
        if not result.path:
            return False, "Invalid URL format"
    elif not result.netloc:
        return False, "Invalid URL format"

    return True, None


class FeedFetcher:
    """Fetch feed documents and parse them into items."""

    def __init__(
        self,
        timeout_seconds: Optional[int] = None,
        max_retries: Optional[int] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize feed fetcher.

        Args:
            timeout_seconds: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            user_agent: User-Agent header for HTTP requests
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        config = get_config()

        self.timeout_seconds = timeout_seconds or config.fetcher.timeout_seconds
        self.max_retries = config.fetcher.max_retries if max_retries is None else max_retries
        self.user_agent = user_agent or config.fetcher.user_agent
        self.retry_delay_seconds = config.fetcher.retry_delay_seconds

        # HTTP client configuration
        self.follow_redirects = config.fetcher.follow_redirects
        self.max_redirects = config.fetcher.max_redirects
        self.transport = transport

    def fetch(self, url: str, cancel: Optional[threading.Event] = None) -> bytes:
        """Fetch a feed document.

        Args:
            url: Feed URL
            cancel: Optional cancellation event, also observed while a request is in flight

        Returns:
            Raw document bytes

        Raises:
            InternalError: On transport errors or a non-2xx status
            CanceledError: If cancellation was requested
        """
        if urlparse(url).scheme == "file":
            return self._read_file(url)

        start_time = time.time()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if cancel is not None and cancel.is_set():
                raise CanceledError(f"fetch {url} canceled")

            try:
                response = self._fetch_http(url, cancel)
                logger.debug(
                    f"Fetched {len(response.content)} bytes from {url} "
                    f"in {time.time() - start_time:.2f}s"
                )
                return response.content

            except httpx.HTTPStatusError as e:
                last_error = e
                # Don't retry client errors (4xx)
                if 400 <= e.response.status_code < 500:
                    break
                logger.warning(f"HTTP {e.response.status_code} fetching {url} (attempt {attempt + 1})")

            except httpx.RequestError as e:
                last_error = e
                logger.warning(f"Network error fetching {url} (attempt {attempt + 1}): {e}")

            # Retry delay, cut short by cancellation
            if attempt < self.max_retries:
                delay = self.retry_delay_seconds * (attempt + 1)
                if cancel is not None:
                    cancel.wait(delay)
                else:
                    time.sleep(delay)

        if isinstance(last_error, httpx.HTTPStatusError):
            raise InternalError(
                f"invalid feed response from {url}: {last_error.response.status_code}",
                cause=last_error,
            ) from last_error
        raise InternalError(f"request feeds to {url} failed", cause=last_error) from last_error

    def _fetch_http(self, url: str, cancel: Optional[threading.Event] = None) -> httpx.Response:
        """Fetch URL with HTTP client.

        With a cancel event the request runs on a helper thread; setting the
        event closes the client and abandons the request.

        Raises:
            httpx.HTTPStatusError: On a non-2xx status
            httpx.RequestError: On network error
            CanceledError: If cancellation was requested while in flight
        """
        client = httpx.Client(
            timeout=self.timeout_seconds,
            follow_redirects=self.follow_redirects,
            max_redirects=self.max_redirects,
            transport=self.transport,
        )

        if cancel is None:
            with client:
                return self._get(client, url)

        outcome: dict = {}
        done = threading.Event()

        def _request():
            try:
                outcome["response"] = self._get(client, url)
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        threading.Thread(target=_request, name="feed-fetch", daemon=True).start()

        try:
            while not done.wait(CANCEL_POLL_SECONDS):
                if cancel.is_set():
                    raise CanceledError(f"fetch {url} canceled")
        finally:
            client.close()

        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def _get(self, client: httpx.Client, url: str) -> httpx.Response:
        response = client.get(url, headers={"User-Agent": self.user_agent})
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"invalid feed response: {response.status_code}",
                request=response.request,
                response=response,
            )
        return response

    def _read_file(self, url: str) -> bytes:
        path = urlparse(url).path
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise InternalError(f"read feeds from {url} failed", cause=e) from e

    def parse(self, document: bytes, url: str = "") -> list[ParsedItem]:
        """Parse a feed document.

        Items come back in canonical order: ascending effective timestamp,
        undated items first.

        Args:
            document: Raw feed document
            url: Source URL, used in messages only

        Returns:
            List of ParsedItem

        Raises:
            InternalError: If the document is not a feed
        """
        parsed = feedparser.parse(document)
        entries = parsed.get("entries", [])

        if parsed.get("bozo") and not entries and not parsed.get("version"):
            raise InternalError(f"parse feeds at {url} failed", cause=parsed.get("bozo_exception"))

        items = [_entry_to_item(entry) for entry in entries]
        items.sort(key=lambda item: (item.timestamp is not None, item.timestamp or datetime.min.replace(tzinfo=timezone.utc)))
        return items
