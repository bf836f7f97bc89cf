"""Device sync token issuance, validation and revocation."""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timekeeper.cloud.models import SyncToken, as_utc, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


class TokenRejected(Exception):
    """A presented sync token cannot be used."""


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """Random token, URL-safe base64 without padding."""
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(
    db: Session,
    user_id: str,
    ttl_hours: float,
    device_id: str | None = None,
    device_name: str = "Desktop App",
    platform: str = "unknown",
    now: datetime | None = None,
) -> tuple[str, SyncToken]:
    """Store a new token row and return the plaintext with it.

    The plaintext exists only in the return value. Database errors roll
    back and propagate.
    """
    now = now or utcnow()
    token = generate_token()
    row = SyncToken(
        user_id=user_id,
        token_hash=hash_token(token),
        device_id=device_id,
        device_name=device_name,
        platform=platform,
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
        is_revoked=False,
    )
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(row)
    logger.info(f"Issued sync token {row.id} for user {user_id} ({device_name}, {platform})")
    return token, row


def validate_token(db: Session, token: str, now: datetime | None = None) -> SyncToken:
    """Return the token row, or raise ``TokenRejected``.

    Revocation is checked before expiry.
    """
    now = now or utcnow()
    row = db.query(SyncToken).filter(SyncToken.token_hash == hash_token(token)).first()
    if row is None:
        raise TokenRejected("Invalid sync token")
    if row.is_revoked:
        raise TokenRejected("Sync token revoked")
    if as_utc(row.expires_at) <= now:
        raise TokenRejected("Sync token expired")
    return row


def list_devices(db: Session, user_id: str) -> list[SyncToken]:
    """Non-revoked token rows of a user, newest first."""
    return (
        db.query(SyncToken)
        .filter(SyncToken.user_id == user_id, SyncToken.is_revoked.is_(False))
        .order_by(SyncToken.created_at.desc())
        .all()
    )


def revoke_token(db: Session, user_id: str, token_id: str) -> bool:
    """Revoke one of the user's tokens. False when no such row belongs to the user."""
    row = (
        db.query(SyncToken)
        .filter(SyncToken.id == token_id, SyncToken.user_id == user_id)
        .first()
    )
    if row is None:
        return False
    row.is_revoked = True
    db.commit()
    logger.info(f"Revoked sync token {token_id}")
    return True
