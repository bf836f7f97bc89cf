"""SQLAlchemy models for device tokens and synced activity data."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from timekeeper.cloud.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SyncToken(Base):
    """A revocable device credential. Only the SHA-256 of the token is kept."""
    __tablename__ = "sync_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, unique=True)
    device_id = Column(String(64), nullable=True)
    device_name = Column(String(255), nullable=False, default="Desktop App")
    platform = Column(String(64), nullable=False, default="unknown")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_sync_tokens_user_revoked", "user_id", "is_revoked"),
    )

    def to_dict(self) -> dict:
        """Device listing view. Never includes the hash."""
        return {
            "id": self.id,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "platform": self.platform,
            "created_at": _iso(self.created_at),
            "last_used_at": _iso(self.last_used_at),
            "expires_at": _iso(self.expires_at),
            "is_revoked": self.is_revoked,
        }


class SyncedActivity(Base):
    """Activity pushed by a desktop device."""
    __tablename__ = "synced_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    device_id = Column(String(64), nullable=True)
    token_id = Column(String(36), nullable=False)
    application_name = Column(String(255), nullable=False)
    window_title = Column(Text, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=False, default=0)
    project_id = Column(String(64), nullable=True)
    task_id = Column(String(64), nullable=True)
    is_coded = Column(Boolean, nullable=False, default=False)
    is_idle = Column(Boolean, nullable=False, default=False)
    category_id = Column(String(64), nullable=True)
    category_auto_assigned = Column(Boolean, nullable=False, default=True)
    received_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_synced_user_start", "user_id", "start_time"),
    )


class UserSyncSettings(Base):
    """One row of sync preferences per user."""
    __tablename__ = "user_sync_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True)
    sync_interval_minutes = Column(Integer, nullable=False, default=15)
    sync_on_close = Column(Boolean, nullable=False, default=True)
    sync_on_idle = Column(Boolean, nullable=False, default=True)
    sync_on_startup = Column(Boolean, nullable=False, default=True)
    auto_sync_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "sync_interval_minutes": self.sync_interval_minutes,
            "sync_on_close": self.sync_on_close,
            "sync_on_idle": self.sync_on_idle,
            "sync_on_startup": self.sync_on_startup,
            "auto_sync_enabled": self.auto_sync_enabled,
            "updated_at": _iso(self.updated_at),
        }


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None
