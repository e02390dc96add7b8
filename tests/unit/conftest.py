"""Shared fixtures for unit tests."""

import pytest

from feed_mailer.config import Config, SiteConfig, SubscriberConfig, set_config
from feed_mailer.storage import new_storage


@pytest.fixture(autouse=True)
def reset_config():
    """Give every test a fresh default configuration."""
    set_config(Config())
    yield
    set_config(None)


@pytest.fixture
def storage():
    """In-memory SQLite storage."""
    with new_storage("sqlite://") as st:
        yield st


@pytest.fixture
def site() -> SiteConfig:
    return SiteConfig(name="Example", url="https://example.com/feed.xml")


@pytest.fixture
def subscriber(site: SiteConfig) -> SubscriberConfig:
    return SubscriberConfig(
        name="alice",
        email="alice@example.com",
        schedule="*/5 * * * *",
        sites=[site],
    )
