"""Unit tests for the command line entry point."""

import signal
import threading
import time
from unittest.mock import patch

import pytest

from feed_mailer.cli import build_parser, install_signal_handlers, main, serve
from feed_mailer.core.scheduler import Scheduler, SchedulerState
from feed_mailer.storage import SQLStorage

RSS_FEED = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Local</title>
<item><title>Hello</title><link>https://example.com/hello</link>
<pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate></item>
</channel></rss>
"""


def write_config(tmp_path, schedule="*/5 * * * *", dsn=None):
    feed = tmp_path / "feed.xml"
    feed.write_text(RSS_FEED, encoding="utf-8")
    dsn = dsn if dsn is not None else f"sqlite:///{tmp_path / 'feed.db'}"

    path = tmp_path / "config.yaml"
    path.write_text(
        f"""
dsn: "{dsn}"
subscribers:
  - name: alice
    email: alice@example.com
    schedule: "{schedule}"
    sites:
      - name: Local
        url: file://{feed}
mailSender:
  smtpServer: smtp.example.com:587
  senderAddr: bot@example.com
  password: secret
""",
        encoding="utf-8",
    )
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_config_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_flags(self):
        args = build_parser().parse_args(["--config", "c.yaml", "-v", "--once"])

        assert args.config == "c.yaml"
        assert args.verbose is True
        assert args.once is True


class TestMain:
    """Tests for main."""

    def test_missing_config_file(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_missing_dsn(self, tmp_path):
        assert main(["--config", str(write_config(tmp_path, dsn=""))]) == 1

    def test_unsupported_dsn(self, tmp_path):
        assert main(["--config", str(write_config(tmp_path, dsn="mysql://u@db/feed"))]) == 1

    def test_invalid_schedule(self, tmp_path):
        with patch("feed_mailer.cli.serve") as serve, patch("feed_mailer.cli.install_signal_handlers"):
            assert main(["--config", str(write_config(tmp_path, schedule="* * *"))]) == 1
        serve.assert_not_called()

    def test_serve(self, tmp_path):
        with patch("feed_mailer.cli.serve") as serve, patch("feed_mailer.cli.install_signal_handlers"):
            assert main(["--config", str(write_config(tmp_path))]) == 0

        scheduler, cancel = serve.call_args.args
        assert [j.job.name for j in scheduler.jobs] == ["alice"]

    def test_once(self, tmp_path):
        with patch("feed_mailer.cli.SmtpMailbox") as mailbox_class:
            assert main(["--config", str(write_config(tmp_path)), "--once"]) == 0

        mailbox = mailbox_class.return_value
        feeds = mailbox.send_feeds.call_args.args[0]
        assert [f.title for f in feeds] == ["Hello"]
        assert (tmp_path / "feed.db").exists()

    def test_once_reports_failed_runs(self, tmp_path):
        path = write_config(tmp_path)
        (tmp_path / "feed.xml").unlink()

        with patch("feed_mailer.cli.SmtpMailbox"):
            assert main(["--config", str(path), "--once"]) == 1

    def test_once_reports_unexpected_errors(self, tmp_path):
        path = write_config(tmp_path)

        with patch("feed_mailer.cli.SmtpMailbox") as mailbox_class:
            mailbox_class.return_value.send_feeds.side_effect = RuntimeError("template broke")
            assert main(["--config", str(path), "--once"]) == 1

    def test_signal_shuts_down_and_closes_storage(self, tmp_path):
        """A signal stops the scheduler before the storage is closed."""
        events = []
        real_stop = Scheduler.stop
        real_close = SQLStorage.close

        def fake_install(cancel):
            events.append("signals")
            cancel.set()

        def stop(self):
            events.append("stop")
            real_stop(self)

        def close(self):
            events.append("close")
            real_close(self)

        with patch("feed_mailer.cli.install_signal_handlers", side_effect=fake_install), \
                patch.object(Scheduler, "stop", stop), \
                patch.object(SQLStorage, "close", close):
            assert main(["--config", str(write_config(tmp_path))]) == 0

        assert events == ["signals", "stop", "close"]


class TestServe:
    """Tests for serve and signal handling."""

    def test_serve_returns_after_cancel(self):
        scheduler = Scheduler(timezone="UTC", max_workers=1)
        cancel = threading.Event()

        thread = threading.Thread(target=serve, args=(scheduler, cancel), daemon=True)
        thread.start()
        time.sleep(0.1)
        assert scheduler.is_running() is True

        cancel.set()
        thread.join(5)

        assert not thread.is_alive()
        assert scheduler.state is SchedulerState.IDLE

    def test_signal_handler_sets_cancel(self):
        cancel = threading.Event()
        previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}

        try:
            install_signal_handlers(cancel)
            handler = signal.getsignal(signal.SIGTERM)
            handler(signal.SIGTERM, None)
        finally:
            for sig, old in previous.items():
                signal.signal(sig, old)

        assert cancel.is_set()
