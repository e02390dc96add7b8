"""
Mail delivery of collected feeds.

A mailbox delivers the items of a run and reports every successful send back
through a callback, which the pipeline uses to acknowledge the items.
"""

import smtplib
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import Callable, Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from feed_mailer.config import MailSenderConfig
from feed_mailer.core.feeds import Feeds
from feed_mailer.errors import InternalError, InvalidArgumentError
from feed_mailer.logger import get_logger
from feed_mailer.models import FeedItem

logger = get_logger(__name__)

SendCallback = Callable[..., None]

_env = Environment(
    loader=PackageLoader("feed_mailer", "templates"),
    autoescape=select_autoescape(["html"]),
)


class Mailbox(ABC):
    """Delivers collected feeds to subscribers."""

    @abstractmethod
    def send_feeds(self, feeds: Feeds, callback: Optional[SendCallback] = None) -> None:
        """Deliver the feeds.

        ``callback(*items)`` is invoked once per successful send with exactly
        the items included in that send.
        """
        ...


def render_feeds(feeds: Feeds, email: str) -> str:
    """Render the HTML body of the message for one subscriber."""
    groups = [(site, feeds.site_feeds(email, site.url)) for site in feeds.sites(email)]
    return _env.get_template("feeds.html").render(groups=groups)


def split_host_port(server: str) -> tuple[str, int]:
    """Split ``host:port`` (IPv6 hosts in brackets).

    Raises:
        InvalidArgumentError: If the address is malformed
    """
    host, sep, port = server.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise InvalidArgumentError(f"invalid host port: {server!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


class SmtpMailbox(Mailbox):
    """Mailbox sending one HTML message per subscriber over SMTP."""

    def __init__(self, config: MailSenderConfig):
        """Initialize the mailbox.

        Args:
            config: Sender account configuration

        Raises:
            InvalidArgumentError: On a malformed server or missing credentials
        """
        self.host, self.port = split_host_port(config.smtp_server)
        if not config.sender_addr or not config.password:
            raise InvalidArgumentError("invalid sender mail config")

        self.sender_addr = config.sender_addr
        self.password = config.password
        self.subject = config.subject
        self.timeout_seconds = config.timeout_seconds

    def send_feeds(self, feeds: Feeds, callback: Optional[SendCallback] = None) -> None:
        for email in feeds.emails:
            sent = feeds.email_feeds(email)
            if not sent:
                continue

            message = self._build_message(email, render_feeds(feeds, email))
            logger.info(f"Send RSS feeds notification to {email} ({len(sent)} feeds)")
            self._deliver(email, message)

            if callback is not None:
                self._notify(callback, email, sent)

    def _notify(self, callback: SendCallback, email: str, sent: list[FeedItem]) -> None:
        try:
            callback(*sent)
        except Exception as e:
            # Unacked items are picked up again by the next run
            logger.error(f"Acknowledging {len(sent)} feeds sent to {email} failed: {e}")

    def _build_message(self, email: str, body: str) -> MIMEText:
        message = MIMEText(body, "html", "utf-8")
        message["From"] = self.sender_addr
        message["To"] = email
        message["Subject"] = self.subject
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid()
        return message

    def _connect(self) -> smtplib.SMTP:
        if self.port == smtplib.SMTP_SSL_PORT:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_seconds)

        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds)
        try:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
        except (smtplib.SMTPException, OSError):
            smtp.close()
            raise
        return smtp

    def _deliver(self, email: str, message: MIMEText) -> None:
        """Send one message.

        Raises:
            InternalError: If the message could not be handed to the server
        """
        try:
            smtp = self._connect()
        except (smtplib.SMTPException, OSError) as e:
            raise InternalError(f"connect to smtp server {self.host}:{self.port} failed", cause=e) from e

        try:
            smtp.login(self.sender_addr, self.password)
            smtp.sendmail(self.sender_addr, [email], message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            smtp.close()
            raise InternalError(f"send feeds to {email} failed", cause=e) from e

        try:
            smtp.quit()
        except smtplib.SMTPServerDisconnected as e:
            # Some servers drop the connection before answering QUIT; the
            # message was already accepted.
            logger.debug(f"Ignoring short response on QUIT from {self.host}: {e}")
        finally:
            smtp.close()
