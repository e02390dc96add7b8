"""Core modules for feed mailer: fetching, batching, delivery, pipeline and scheduling."""

from feed_mailer.core.feeds import Feeds, SiteRef
from feed_mailer.core.fetcher import FeedFetcher, ParsedItem, validate_url
from feed_mailer.core.mailbox import Mailbox, SmtpMailbox, render_feeds
from feed_mailer.core.pipeline import FeedPipeline, is_new
from feed_mailer.core.scheduler import CronJob, CronSchedule, Scheduler, SchedulerState, SchedulerStats

__all__ = [
    "Feeds",
    "SiteRef",
    "FeedFetcher",
    "ParsedItem",
    "validate_url",
    "Mailbox",
    "SmtpMailbox",
    "render_feeds",
    "FeedPipeline",
    "is_new",
    "CronJob",
    "CronSchedule",
    "Scheduler",
    "SchedulerState",
    "SchedulerStats",
]
