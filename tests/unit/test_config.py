"""Unit tests for configuration loading."""

import pytest

from feed_mailer.config import (
    Config,
    LoggingConfig,
    SiteConfig,
    get_config,
    load_config_from_yaml,
    set_config,
)
from feed_mailer.errors import ErrorCode, InvalidArgumentError, error_code

CONFIG_YAML = """
dsn: sqlite:///data/feed.db
subscribers:
  - name: alice
    email: alice@example.com
    schedule: "*/30 * * * *"
    sites:
      - name: Go Blog
        url: https://go.dev/blog/feed.atom
        urls:
          - https://mirror.example.com/go.atom
      - url: https://example.com/rss.xml
mailSender:
  smtpServer: smtp.example.com:465
  senderAddr: bot@example.com
  password: secret
scheduler:
  maxWorkers: 2
"""


class TestLoadConfigFromYaml:
    """Tests for load_config_from_yaml."""

    def test_load_camel_case_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")

        config = load_config_from_yaml(str(path))

        assert config.dsn == "sqlite:///data/feed.db"
        assert len(config.subscribers) == 1
        sub = config.subscribers[0]
        assert sub.name == "alice"
        assert sub.schedule == "*/30 * * * *"
        assert sub.sites[0] == SiteConfig(
            name="Go Blog",
            url="https://go.dev/blog/feed.atom",
            urls=("https://mirror.example.com/go.atom",),
        )
        assert sub.sites[1].name == ""
        assert config.mail_sender.smtp_server == "smtp.example.com:465"
        assert config.mail_sender.sender_addr == "bot@example.com"
        assert config.mail_sender.subject == "RSS feeds notification"
        assert config.scheduler.max_workers == 2
        assert config.scheduler.timezone == "UTC"

    def test_subscriber_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("subscribers:\n  - name: bob\n    email: bob@example.com\n", encoding="utf-8")

        config = load_config_from_yaml(str(path))

        assert config.subscribers[0].schedule == "0 * * * *"
        assert config.subscribers[0].sites == []

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        config = load_config_from_yaml(str(path))

        assert config.subscribers == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidArgumentError):
            load_config_from_yaml(str(tmp_path / "nope.yaml"))

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("subscribers: [unclosed\n", encoding="utf-8")

        with pytest.raises(InvalidArgumentError):
            load_config_from_yaml(str(path))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(InvalidArgumentError):
            load_config_from_yaml(str(path))

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("scheduler:\n  maxWorkers: 0\n", encoding="utf-8")

        with pytest.raises(InvalidArgumentError) as exc_info:
            load_config_from_yaml(str(path))
        assert error_code(exc_info.value) == ErrorCode.INVALID_ARGUMENT


class TestGlobalConfig:
    """Tests for the global configuration instance."""

    def test_set_and_get(self):
        config = Config(dsn="sqlite://")
        set_config(config)
        assert get_config() is config

    def test_reset_creates_default(self):
        set_config(None)
        assert isinstance(get_config(), Config)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SCHEDULER_TIMEZONE", "Europe/Berlin")
        set_config(None)
        assert get_config().scheduler.timezone == "Europe/Berlin"


class TestLoggingConfig:
    """Tests for LoggingConfig validation."""

    def test_level_is_upper_cased(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")
