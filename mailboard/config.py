"""Configuration management for Mailboard."""

import os
from datetime import timedelta
from typing import Optional

import toml
from pydantic import BaseModel, Field, field_validator

from .errors import ConfigError


def default_cache_path() -> str:
    """Get default cache database path (XDG cache dir)."""
    base = os.getenv("XDG_CACHE_HOME") or "~/.cache"
    return os.path.expanduser(os.path.join(base, "mailboard", "cache.duckdb"))


class ApiConfig(BaseModel):
    """Configuration for the remote mail API."""

    base_url: str = Field(default="http://localhost:3000")
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Transport timeout; expiry surfaces as a network failure",
    )
    emails_per_page: int = Field(default=10, ge=1, le=500)
    kanban_per_page: int = Field(default=10, ge=1, le=500)
    access_token: Optional[str] = Field(
        default=None,
        description="Bearer token; usually injected by the auth layer instead",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")


class CacheConfig(BaseModel):
    """Configuration for the persistent DuckDB cache."""

    enabled: bool = Field(
        default=True,
        description="Disable to run network-only",
    )
    db_path: str = Field(
        default_factory=default_cache_path,
        description="Path to DuckDB cache database file",
    )
    emails_ttl_minutes: float = Field(default=30, gt=0, le=1440)
    email_lists_ttl_minutes: float = Field(default=5, gt=0, le=1440)
    mailboxes_ttl_minutes: float = Field(default=10, gt=0, le=1440)
    kanban_boards_ttl_minutes: float = Field(default=5, gt=0, le=1440)
    kanban_columns_ttl_minutes: float = Field(default=5, gt=0, le=1440)

    @field_validator("db_path")
    @classmethod
    def expand_db_path(cls, v):
        """Expand user paths and environment variables."""
        if v == ":memory:":
            return v
        return os.path.expanduser(os.path.expandvars(v))

    def ttl(self, namespace: str) -> timedelta:
        """Get TTL for a cache namespace.

        Args:
            namespace: Namespace value (e.g. "emails", "email_lists")

        Returns:
            TTL as a timedelta
        """
        minutes = getattr(self, f"{namespace}_ttl_minutes", None)
        if minutes is None:
            raise KeyError(f"No TTL configured for namespace {namespace!r}")
        return timedelta(minutes=minutes)


class SyncConfig(BaseModel):
    """Configuration for background sync behaviour."""

    snooze_poll_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Board refresh interval while snoozed emails are pending",
    )
    max_empty_pages: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Stop auto-pagination after this many consecutive empty pages",
    )
    max_auto_summarize: int = Field(default=12, ge=0, le=100)


class Config(BaseModel):
    """Main configuration class."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


CONFIG_ENV_VAR = "MAILBOARD_CONFIG"

CONFIG_SEARCH_PATHS = (
    "~/.config/mailboard/config.toml",
    "./mailboard.toml",
)


class ConfigManager:
    """Lazily loads a Config from a TOML file.

    The file is located from, in order: the explicit path, the
    MAILBOARD_CONFIG environment variable, then CONFIG_SEARCH_PATHS.
    A missing file yields the defaults.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._locate()
        self._config: Optional[Config] = None

    @staticmethod
    def _locate() -> str:
        override = os.getenv(CONFIG_ENV_VAR)
        if override:
            return os.path.expanduser(override)
        candidates = [os.path.expanduser(p) for p in CONFIG_SEARCH_PATHS]
        return next((p for p in candidates if os.path.isfile(p)), candidates[0])

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = self._read()
        return self._config

    def _read(self) -> Config:
        if not os.path.isfile(self.config_path):
            return Config()
        try:
            data = toml.load(self.config_path)
            return Config.model_validate(data)
        except (toml.TomlDecodeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration file {self.config_path}: {e}") from e

    def reload(self) -> Config:
        """Drop the loaded config and read the file again."""
        self._config = None
        return self.config


config_manager = ConfigManager()
