"""
Configuration management for feed mailer.

Uses Pydantic for validation and pydantic-settings for environment variable support.
Subscribers, their sites and the mail sender normally come from a YAML file
loaded with ``load_config_from_yaml``.
"""

import re
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feed_mailer.errors import InvalidArgumentError

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class SiteConfig(BaseModel):
    """A feed source followed by a subscriber.

    Frozen so that sites can be used as mapping keys.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="", description="Display name of the site")
    url: str = Field(..., description="Feed URL")
    urls: tuple[str, ...] = Field(
        default=(), description="Alternate feed URLs tried when the primary URL fails"
    )


class SubscriberConfig(BaseModel):
    """A mail recipient and the sites they follow."""

    name: str = Field(default="", description="Subscriber name")
    email: str = Field(default="", description="Delivery address")
    schedule: str = Field(default="0 * * * *", description="Cron expression (5 fields)")
    sites: list[SiteConfig] = Field(default_factory=list)


class DatabaseConfig(BaseSettings):
    """Engine settings applied on top of the storage DSN."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    echo: bool = Field(default=False, description="Echo SQL statements")
    pool_size: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    max_overflow: int = Field(default=10, ge=0, description="Max overflow connections")
    busy_timeout_seconds: int = Field(default=30, ge=0, description="SQLite lock wait")


class SchedulerConfig(BaseSettings):
    """Task scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    timezone: str = Field(default="UTC", description="Timezone cron expressions are evaluated in")
    max_workers: int = Field(default=4, ge=1, le=64, description="Maximum concurrent job runs")


class FetcherConfig(BaseSettings):
    """RSS/Atom fetcher configuration."""

    model_config = SettingsConfigDict(env_prefix="FETCHER_")

    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Request timeout")
    user_agent: str = Field(
        default="feed-mailer/0.1.0 (+https://github.com/maxnilz/feed)",
        description="User-Agent header",
    )

    # Retries inside a single fetch; a site that still fails aborts the run
    max_retries: int = Field(default=0, ge=0, le=10)
    retry_delay_seconds: int = Field(default=5, ge=0)

    follow_redirects: bool = Field(default=True)
    max_redirects: int = Field(default=5, ge=0, le=20)


class MailSenderConfig(BaseSettings):
    """SMTP sender account."""

    model_config = SettingsConfigDict(env_prefix="MAIL_")

    smtp_server: str = Field(default="", description="SMTP server as host:port")
    sender_addr: str = Field(default="", description="Sender address, also the login")
    password: str = Field(default="", description="SMTP password")
    subject: str = Field(default="RSS feeds notification", description="Message subject")
    timeout_seconds: int = Field(default=30, ge=1, le=300, description="SMTP socket timeout")


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Log format"
    )

    # File logging
    file_enabled: bool = Field(default=False, description="Enable file logging")
    file_path: str = Field(default="logs/feed_mailer.log", description="Log file path")
    rotation: str = Field(default="100 MB", description="Log rotation size")
    retention: str = Field(default="30 days", description="Log retention period")

    # Console logging
    console_enabled: bool = Field(default=True, description="Enable console logging")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalise the level to a loguru level name."""
        v = v.strip().upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")
        return v


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FEED_MAILER_",
        case_sensitive=False,
        extra="ignore",
    )

    dsn: str = Field(default="", description="Storage connection string, e.g. sqlite:///data/feed.db")
    subscribers: list[SubscriberConfig] = Field(default_factory=list)

    # Sub-configurations
    mail_sender: MailSenderConfig = Field(default_factory=MailSenderConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Global configuration instance
_config: Optional[Config] = None

_NESTED_CONFIGS = {
    "mail_sender": MailSenderConfig,
    "database": DatabaseConfig,
    "scheduler": SchedulerConfig,
    "fetcher": FetcherConfig,
    "logging": LoggingConfig,
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Optional[Config]) -> None:
    """Replace the global configuration instance (None resets it)."""
    global _config
    _config = config


def _snake_keys(value: Any) -> Any:
    """Recursively convert camelCase mapping keys (``mailSender``) to snake_case."""
    if isinstance(value, dict):
        return {
            _CAMEL_BOUNDARY.sub(r"_\1", str(k)).lower(): _snake_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def load_config_from_yaml(yaml_path: str) -> Config:
    """Load configuration from a YAML file.

    Values loaded from YAML take precedence over environment variables for the
    keys they set; nested sections missing from the file are still read from
    the environment.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        Config instance loaded from the file.

    Raises:
        InvalidArgumentError: If the file is missing or its content is invalid.
    """
    import yaml

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise InvalidArgumentError(f"Configuration file not found: {yaml_path}")

    try:
        with yaml_file.open("r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidArgumentError(f"invalid config file {yaml_path}", cause=e) from e

    if not isinstance(config_dict, dict):
        raise InvalidArgumentError(f"invalid config file {yaml_path}: expected a mapping")

    config_dict = _snake_keys(config_dict)

    try:
        main_config = {k: v for k, v in config_dict.items() if k not in _NESTED_CONFIGS}
        for key, config_class in _NESTED_CONFIGS.items():
            # Create from dict, env vars can still fill what the file leaves out
            main_config[key] = config_class(**(config_dict.get(key) or {}))
        return Config(**main_config)
    except ValidationError as e:
        raise InvalidArgumentError(f"invalid config file {yaml_path}", cause=e) from e
