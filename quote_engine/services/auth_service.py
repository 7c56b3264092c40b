"""
Identity resolution for the quote engine.

Authentication itself lives in an external identity service. The engine only
needs to turn a bearer token into ``(user_id, role)``; tokens are HS256 JWTs
carrying ``sub`` and ``role`` claims. ``create_access_token`` exists so that
the identity service, scripts and tests can mint compatible tokens.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from quote_engine.core.config import settings
from quote_engine.models.user import UserRole


@dataclass(frozen=True)
class Identity:
    """The authenticated caller."""
    user_id: uuid.UUID
    role: UserRole


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------

def create_access_token(
    user_id: uuid.UUID,
    role: UserRole,
    expires_in: timedelta | None = None,
) -> str:
    """Mint a signed access token for *user_id* acting as *role*."""
    now = datetime.now(timezone.utc)
    expires_at = now + (
        expires_in or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": "access",
        "exp": expires_at,
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is otherwise invalid.
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


def resolve_identity(token: str) -> Identity:
    """Resolve a bearer token to an ``Identity``.

    Raises:
        ValueError: If the token is expired, malformed, or lacks the
            ``sub`` / ``role`` claims.
    """
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise ValueError("Access token has expired.")
    except jwt.InvalidTokenError:
        raise ValueError("Invalid access token.")

    if payload.get("type") != "access":
        raise ValueError("Invalid token type. Expected an access token.")

    subject = payload.get("sub")
    if subject is None:
        raise ValueError("Invalid token: missing subject.")
    try:
        user_id = uuid.UUID(subject)
    except ValueError:
        raise ValueError("Invalid token: malformed subject.")

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise ValueError("Invalid token: unknown role.")

    return Identity(user_id=user_id, role=role)
