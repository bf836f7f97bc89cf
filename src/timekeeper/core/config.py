"""Configuration management with Pydantic and YAML support."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, EnvSettingsSource, SettingsConfigDict

SYNC_INTERVAL_CHOICES = (5, 15, 30)


class ConfigError(Exception):
    """Raised when a configuration file cannot be used."""


class TrackerConfig(BaseModel):
    """Activity tracking configuration."""

    poll_interval_ms: int = Field(default=1000, ge=100, le=60_000)
    idle_threshold_seconds: int = Field(default=300, ge=1, description="Seconds before marking idle")
    min_activity_duration_seconds: int = Field(
        default=60, ge=0, description="Shorter activities are discarded"
    )
    switch_debounce_seconds: float = Field(
        default=7.0, ge=0, description="Switches faster than this update the open activity"
    )
    exclude_apps: list[str] = Field(default_factory=list)
    exclude_titles: list[str] = Field(default_factory=list)
    auto_categorize: bool = True
    buffer_flush_seconds: int = Field(default=30, ge=1, description="Flush buffer to DB interval")


class SyncSettings(BaseModel):
    """Per-user sync triggers. Mirrors the user_sync_settings row in the cloud."""

    sync_interval_minutes: int = Field(default=15)
    sync_on_close: bool = True
    sync_on_idle: bool = True
    sync_on_startup: bool = True
    auto_sync_enabled: bool = True

    @field_validator("sync_interval_minutes")
    @classmethod
    def _check_interval(cls, value: int) -> int:
        if value not in SYNC_INTERVAL_CHOICES:
            raise ValueError(f"sync interval must be one of {SYNC_INTERVAL_CHOICES}, got {value}")
        return value


class SyncConfig(BaseModel):
    """Remote sync configuration."""

    url: str = Field(default="", description="Backend base URL, e.g. https://xyz.example.co")
    token: str = Field(default="", description="Device sync token issued by the backend")
    gateway_key: str = Field(default="", description="Gateway API key sent as apikey")
    settings: SyncSettings = Field(default_factory=SyncSettings)
    request_timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    startup_delay_seconds: float = Field(default=5.0, ge=0)
    close_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    @property
    def is_configured(self) -> bool:
        """True when both an endpoint and a device token are set."""
        return bool(self.url.strip()) and bool(self.token.strip())


class StorageConfig(BaseModel):
    """Local activity log configuration."""

    retention_days: int = Field(default=30, ge=1, le=3650)


class RuleConfig(BaseModel):
    """A user-supplied categorization rule."""

    category_id: str
    type: Literal["app", "title"]
    pattern: str = Field(min_length=1)
    match_type: Literal["equals", "contains"] = "contains"


class CategorizationConfig(BaseModel):
    """Categorization rules placed ahead of the built-in defaults."""

    rules: list[RuleConfig] = Field(default_factory=list)


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TIMEKEEPER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / "Library/Application Support/Timekeeper"
    )
    log_dir: Path = Field(default_factory=lambda: Path.home() / "Library/Logs/Timekeeper")
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".config/timekeeper")

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # Sub-configurations
    tracking: TrackerConfig = Field(default_factory=TrackerConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    categorization: CategorizationConfig = Field(default_factory=CategorizationConfig)

    @property
    def db_path(self) -> Path:
        """Path to SQLite database."""
        return self.data_dir / "timekeeper.db"

    @property
    def config_file(self) -> Path:
        """Path to YAML config file."""
        return self.config_dir / "config.yaml"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)

        # Set restrictive permissions on data directory
        os.chmod(self.data_dir, 0o700)

    def merge(self, partial: dict[str, Any]) -> Config:
        """Return a new validated config with ``partial`` deep-merged in.

        This is the only place partial settings are combined. Unknown keys
        are ignored and every bound is re-checked, so an invalid sync
        interval raises ``pydantic.ValidationError``.
        """
        merged = _deep_merge(self.model_dump(), partial)
        return self.__class__(**merged)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from environment variables, YAML file, and defaults.

        Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values
        """
        config_path = config_path or Path.home() / ".config/timekeeper/config.yaml"

        yaml_config: dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path) as f:
                    yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid config file {config_path}: {e}") from e
            if not isinstance(yaml_config, dict):
                raise ConfigError(f"Config file {config_path} must contain a mapping")

        # Init kwargs outrank the environment, so layer env over the file here
        env_config = EnvSettingsSource(cls)()
        return cls(**_deep_merge(yaml_config, env_config))

    def save(self, config_path: Path | None = None) -> None:
        """Save current configuration to YAML file."""
        config_path = config_path or self.config_file
        config_path.parent.mkdir(parents=True, exist_ok=True)

        # Credentials stay in the environment, never on disk
        data = self.model_dump(
            exclude={"sync": {"token", "gateway_key"}},
            exclude_none=True,
        )

        for key in ["data_dir", "log_dir", "config_dir"]:
            if key in data:
                data[key] = str(data[key])

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        os.chmod(config_path, 0o600)


def _deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.load()
