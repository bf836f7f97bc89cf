"""User session verification for the cloud endpoints."""

from __future__ import annotations

import logging

import jwt

logger = logging.getLogger(__name__)


class InvalidSessionError(ValueError):
    """The bearer credential is not a valid user session."""


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer ...`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def verify_session_token(token: str, secret: str, audience: str | None = None) -> str:
    """Verify an HS256 session JWT and return the user id from ``sub``."""
    options = {"require": ["sub", "exp"]}
    if audience is None:
        options["verify_aud"] = False  # type: ignore[assignment]
    try:
        claims = jwt.decode(
            token,
            key=secret,
            algorithms=["HS256"],
            audience=audience,
            options=options,
        )
    except jwt.PyJWTError as e:
        logger.debug(f"Session token rejected: {e}")
        raise InvalidSessionError(str(e)) from e

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise InvalidSessionError("Token has no subject")
    return user_id
