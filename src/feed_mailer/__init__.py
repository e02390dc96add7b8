"""
Feed Mailer - scheduled RSS/Atom digests delivered by e-mail.

This package fetches the feeds each subscriber follows on a cron schedule,
keeps only items newer than the last acknowledged delivery, persists them and
mails them out with at-least-once semantics.
"""

__version__ = "0.1.0"
