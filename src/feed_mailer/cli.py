"""
Command line entry point.

Wires storage, mailbox and one pipeline per subscriber into the scheduler and
runs until SIGINT or SIGTERM.
"""

import argparse
import signal
import sys
import threading
from typing import Optional

from feed_mailer import __version__
from feed_mailer.config import Config, load_config_from_yaml, set_config
from feed_mailer.core.fetcher import FeedFetcher
from feed_mailer.core.mailbox import Mailbox, SmtpMailbox
from feed_mailer.core.pipeline import FeedPipeline
from feed_mailer.core.scheduler import Scheduler
from feed_mailer.errors import FeedMailerError, error_code
from feed_mailer.logger import get_logger, setup_logger
from feed_mailer.storage import Storage, new_storage

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feed-mailer",
        description="Mail new RSS/Atom feed items to subscribers on a cron schedule",
    )
    parser.add_argument("-c", "--config", required=True, help="configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose log")
    parser.add_argument(
        "--once", action="store_true", help="run every subscriber pipeline once and exit"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_pipelines(
    config: Config,
    storage: Storage,
    mailbox: Mailbox,
    fetcher: Optional[FeedFetcher] = None,
) -> list[FeedPipeline]:
    """Create one pipeline per configured subscriber."""
    fetcher = fetcher or FeedFetcher()
    return [FeedPipeline(sub, storage, mailbox, fetcher) for sub in config.subscribers]


def build_scheduler(pipelines: list[FeedPipeline]) -> Scheduler:
    """Register every pipeline with its subscriber's cron expression."""
    scheduler = Scheduler()
    for pipeline in pipelines:
        scheduler.schedule(pipeline.subscriber.schedule, pipeline)
    return scheduler


def run_once(pipelines: list[FeedPipeline]) -> int:
    """Run every pipeline once in sequence.

    Returns:
        Number of failed runs
    """
    failed = 0
    for pipeline in pipelines:
        try:
            count = pipeline.run()
        except Exception as e:
            failed += 1
            logger.error(f"Run of {pipeline.name} failed [{error_code(e)}]: {e}")
            continue
        logger.info(f"Run of {pipeline.name} collected {count} feeds")
    return failed


def install_signal_handlers(cancel: threading.Event) -> None:
    """Set ``cancel`` on SIGINT or SIGTERM. Must be called from the main thread."""

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
        cancel.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)


def serve(scheduler: Scheduler, cancel: threading.Event) -> None:
    """Run the scheduler until ``cancel`` is set, then wait for running jobs."""
    scheduler.start(cancel)
    cancel.wait()
    scheduler.stop()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config_from_yaml(args.config)
    except FeedMailerError as e:
        print(f"feed-mailer: {e}", file=sys.stderr)
        return 1

    set_config(config)
    setup_logger(verbose=args.verbose)

    try:
        storage = new_storage(config.dsn, config.database)
    except FeedMailerError as e:
        logger.error(f"Open storage failed [{error_code(e)}]: {e}")
        return 1

    with storage:
        try:
            mailbox = SmtpMailbox(config.mail_sender)
            pipelines = build_pipelines(config, storage, mailbox)
            scheduler = None if args.once else build_scheduler(pipelines)
        except FeedMailerError as e:
            logger.error(f"Setup failed [{error_code(e)}]: {e}")
            return 1

        if args.once:
            return 1 if run_once(pipelines) else 0

        logger.info(f"Serving {len(pipelines)} subscribers")
        cancel = threading.Event()
        install_signal_handlers(cancel)
        serve(scheduler, cancel)

    logger.info("Bye")
    return 0


if __name__ == "__main__":
    sys.exit(main())
