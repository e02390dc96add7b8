"""Unit tests for mail delivery."""

import smtplib
from datetime import datetime, timezone
from email import message_from_string
from unittest.mock import MagicMock, patch

import pytest

from feed_mailer.config import MailSenderConfig
from feed_mailer.core.feeds import Feeds
from feed_mailer.core.mailbox import SmtpMailbox, render_feeds, split_host_port
from feed_mailer.errors import InternalError, InvalidArgumentError
from feed_mailer.models import FeedItem

FETCH_AT = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_item(item_id: str, email: str, site: str = "https://example.com/feed.xml", **kwargs) -> FeedItem:
    kwargs.setdefault("title", f"Post {item_id}")
    return FeedItem(
        id=item_id,
        email=email,
        site_url=site,
        site_name=kwargs.pop("site_name", "Example"),
        link=f"https://example.com/{item_id}",
        published_at="Mon, 06 Jan 2025 10:00:00 GMT",
        fetch_at=FETCH_AT,
        **kwargs,
    )


def make_config(server: str = "smtp.example.com:587", **kwargs) -> MailSenderConfig:
    return MailSenderConfig(
        smtp_server=server,
        sender_addr=kwargs.get("sender_addr", "bot@example.com"),
        password=kwargs.get("password", "secret"),
    )


@pytest.fixture
def feeds() -> Feeds:
    feeds = Feeds()
    feeds.append(
        make_item("1", "alice@example.com"),
        make_item("2", "bob@example.com"),
        make_item("3", "alice@example.com", site="https://other.example.com/rss", site_name="Other"),
    )
    return feeds


@pytest.fixture
def smtp():
    with patch("feed_mailer.core.mailbox.smtplib.SMTP") as smtp_class:
        yield smtp_class


class TestSplitHostPort:
    """Tests for split_host_port."""

    def test_host_port(self):
        assert split_host_port("smtp.example.com:465") == ("smtp.example.com", 465)

    def test_ipv6(self):
        assert split_host_port("[::1]:25") == ("::1", 25)

    @pytest.mark.parametrize("server", ["", "smtp.example.com", ":25", "smtp.example.com:abc"])
    def test_invalid(self, server):
        with pytest.raises(InvalidArgumentError):
            split_host_port(server)


class TestRenderFeeds:
    """Tests for the message body."""

    def test_groups_by_site(self, feeds):
        body = render_feeds(feeds, "alice@example.com")

        assert body.index("Example") < body.index("Post 1") < body.index("Other") < body.index("Post 3")
        assert '<a href="https://example.com/1">Post 1</a>' in body
        assert "Post 2" not in body
        assert "Mon, 06 Jan 2025 10:00:00 GMT" in body

    def test_escapes_titles(self):
        feeds = Feeds()
        feeds.append(make_item("1", "alice@example.com", title="<script>x</script>"))

        body = render_feeds(feeds, "alice@example.com")

        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_site_url_used_without_name(self):
        feeds = Feeds()
        feeds.append(make_item("1", "alice@example.com", site_name=""))

        body = render_feeds(feeds, "alice@example.com")

        assert ">https://example.com/feed.xml</a>" in body


class TestSmtpMailbox:
    """Tests for SmtpMailbox."""

    def test_invalid_server(self):
        with pytest.raises(InvalidArgumentError):
            SmtpMailbox(make_config(server="smtp.example.com"))

    def test_missing_credentials(self):
        with pytest.raises(InvalidArgumentError):
            SmtpMailbox(make_config(password=""))
        with pytest.raises(InvalidArgumentError):
            SmtpMailbox(make_config(sender_addr=""))

    def test_sends_one_message_per_email(self, smtp, feeds):
        acked = []
        SmtpMailbox(make_config()).send_feeds(feeds, lambda *items: acked.append([i.id for i in items]))

        conn = smtp.return_value
        assert conn.sendmail.call_count == 2
        assert [c.args[1] for c in conn.sendmail.call_args_list] == [
            ["alice@example.com"],
            ["bob@example.com"],
        ]
        assert acked == [["1", "3"], ["2"]]
        conn.login.assert_called_with("bot@example.com", "secret")
        conn.starttls.assert_called()

    def test_message_headers(self, smtp, feeds):
        SmtpMailbox(make_config()).send_feeds(feeds)

        sender, recipients, raw = smtp.return_value.sendmail.call_args_list[0].args
        message = message_from_string(raw)
        assert sender == "bot@example.com"
        assert message["To"] == "alice@example.com"
        assert message["Subject"] == "RSS feeds notification"
        assert message.get_content_type() == "text/html"

    def test_ssl_port(self, feeds):
        with patch("feed_mailer.core.mailbox.smtplib.SMTP_SSL") as smtp_ssl:
            SmtpMailbox(make_config(server="smtp.example.com:465")).send_feeds(feeds)

        smtp_ssl.assert_called_with("smtp.example.com", 465, timeout=30)
        assert smtp_ssl.return_value.sendmail.call_count == 2

    def test_disconnect_on_quit_is_tolerated(self, smtp, feeds):
        smtp.return_value.quit.side_effect = smtplib.SMTPServerDisconnected("short response")
        acked = []

        SmtpMailbox(make_config()).send_feeds(feeds, lambda *items: acked.extend(items))

        assert len(acked) == 3

    def test_send_failure_stops_delivery(self, smtp, feeds):
        smtp.return_value.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})
        callback = MagicMock()

        with pytest.raises(InternalError):
            SmtpMailbox(make_config()).send_feeds(feeds, callback)

        callback.assert_not_called()
        smtp.return_value.close.assert_called()

    def test_connect_failure(self, smtp, feeds):
        smtp.side_effect = OSError("connection refused")

        with pytest.raises(InternalError, match="connect to smtp server"):
            SmtpMailbox(make_config()).send_feeds(feeds)

    def test_handshake_failure_closes_connection(self, smtp, feeds):
        smtp.return_value.starttls.side_effect = smtplib.SMTPException("tls failed")

        with pytest.raises(InternalError, match="connect to smtp server"):
            SmtpMailbox(make_config()).send_feeds(feeds)

        smtp.return_value.close.assert_called_once()
        smtp.return_value.sendmail.assert_not_called()

    def test_callback_error_does_not_stop_delivery(self, smtp, feeds):
        callback = MagicMock(side_effect=InternalError("ack feeds failed"))

        SmtpMailbox(make_config()).send_feeds(feeds, callback)

        assert callback.call_count == 2
        assert smtp.return_value.sendmail.call_count == 2

    def test_nothing_to_send(self, smtp):
        SmtpMailbox(make_config()).send_feeds(Feeds())

        smtp.assert_not_called()
