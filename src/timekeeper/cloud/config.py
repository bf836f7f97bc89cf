"""Cloud service settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudSettings(BaseSettings):
    """Settings for the token and sync service, read from TIMEKEEPER_CLOUD_* env vars."""

    model_config = SettingsConfigDict(
        env_prefix="TIMEKEEPER_CLOUD_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database_url: str = Field(default="sqlite:///./timekeeper-cloud.db")
    jwt_secret: str = Field(default="", description="HS256 secret for user session tokens")
    jwt_audience: str | None = Field(default=None, description="Expected aud claim, if any")
    gateway_key: str = Field(default="", description="Value required in the apikey header")
    token_ttl_hours: float = Field(default=72.0)

    # Token bucket per device token on desktop-sync
    sync_rate_per_second: float = Field(default=1.0, gt=0)
    sync_burst: int = Field(default=10, ge=1)

    host: str = "127.0.0.1"
    port: int = 8787
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    def configuration_error(self) -> str | None:
        """Describe why the service cannot issue tokens, or None when it can."""
        if not self.database_url.strip():
            return "Missing database URL"
        if not self.jwt_secret:
            return "Missing JWT secret"
        if not self.token_ttl_hours > 0:
            return "Invalid sync token TTL"
        return None
