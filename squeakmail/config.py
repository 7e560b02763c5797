"""Configuration management: YAML file into dataclasses."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from email.utils import parseaddr
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from squeakmail.errors import ConfigurationError

logger = logging.getLogger(__name__)

APP_NAME = "squeakmail"
SMTP_PASSWORD_ENV = "SQUEAKMAIL_SMTP_PASSWORD"
MAIL_TRANSPORTS = ("sendmail", "smtp")


def _xdg_dir(env_var: str, fallback: str) -> Path:
    base = os.environ.get(env_var)
    return Path(base) if base else Path.home() / fallback


def default_config_path() -> Path:
    return _xdg_dir("XDG_CONFIG_HOME", ".config") / APP_NAME / f"{APP_NAME}.yaml"


def default_database_path() -> Path:
    return _xdg_dir("XDG_CACHE_HOME", ".cache") / APP_NAME / f"{APP_NAME}.db"


@dataclass
class MailConfig:
    """How the digest leaves the machine."""
    transport: str = "sendmail"
    sendmail_command: str = "sendmail"
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_username: Optional[str] = None
    smtp_starttls: bool = False
    smtp_timeout_seconds: float = 30.0


@dataclass
class Settings:
    """Application settings."""

    feeds: List[str] = field(default_factory=lambda: ["https://blog.rust-lang.org/feed.xml"])
    from_email: str = "squeakmail@example.com"
    to_email: str = "squeakmail@example.com"
    concurrency: int = 1
    fetch_timeout_seconds: float = 30.0
    user_agent: str = APP_NAME
    mail: MailConfig = field(default_factory=MailConfig)

    # From environment only
    smtp_password: Optional[str] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form written to the example config file."""
        data = asdict(self)
        data.pop("smtp_password")
        return data

    def validate(self) -> None:
        if not isinstance(self.feeds, list) or not all(isinstance(f, str) and f for f in self.feeds):
            raise ConfigurationError("feeds must be a list of URLs")
        for key in ("from_email", "to_email"):
            value = getattr(self, key)
            if not isinstance(value, str) or "@" not in parseaddr(value)[1]:
                raise ConfigurationError(f"{key} is not a valid email address: {value!r}")
        if not isinstance(self.concurrency, int) or isinstance(self.concurrency, bool) or self.concurrency < 1:
            raise ConfigurationError("concurrency must be an integer >= 1")
        if not isinstance(self.fetch_timeout_seconds, (int, float)) or self.fetch_timeout_seconds <= 0:
            raise ConfigurationError("fetch_timeout_seconds must be a positive number")
        if self.mail.transport not in MAIL_TRANSPORTS:
            raise ConfigurationError(
                f"mail.transport must be one of {', '.join(MAIL_TRANSPORTS)}, "
                f"got {self.mail.transport!r}"
            )

    @property
    def unique_feeds(self) -> List[str]:
        """Configured feed URLs in order, duplicates dropped."""
        return list(dict.fromkeys(self.feeds))


def _check_keys(section: str, data: Dict[str, Any], allowed: set) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        where = f" in {section}" if section else ""
        raise ConfigurationError(f"unknown config key(s){where}: {', '.join(unknown)}")


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load the raw YAML mapping."""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"failed to read config {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse config {config_path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config {config_path} must be a mapping")
    return data


def settings_from_dict(config: Dict[str, Any]) -> Settings:
    """Build and validate Settings from a config mapping plus environment."""
    top_level = {f.name for f in fields(Settings)} - {"smtp_password"}
    _check_keys("", config, top_level)

    values = {k: v for k, v in config.items() if k != "mail"}
    mail_config = config.get("mail") or {}
    if not isinstance(mail_config, dict):
        raise ConfigurationError("mail must be a mapping")
    _check_keys("mail", mail_config, {f.name for f in fields(MailConfig)})

    settings = Settings(
        mail=MailConfig(**mail_config),
        smtp_password=os.getenv(SMTP_PASSWORD_ENV),
        **values,
    )
    settings.validate()
    return settings


def write_example_config(config_path: Path) -> bool:
    """Write the default config if none exists. Returns True if written."""
    if config_path.exists():
        return False
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(Settings().to_dict(), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"failed to create config file {config_path}: {e}") from e
    logger.info("Wrote example config to %s", config_path)
    return True


def get_settings(config_path: Optional[Path] = None) -> Settings:
    """Get application settings, bootstrapping an example config first."""
    if config_path is None:
        config_path = default_config_path()
    write_example_config(config_path)
    return settings_from_dict(load_config(config_path))
