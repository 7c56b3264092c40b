"""
Unit tests for bearer token -> identity resolution.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from quote_engine.core.config import settings
from quote_engine.models.user import UserRole
from quote_engine.services.auth_service import (
    Identity,
    create_access_token,
    decode_token,
    resolve_identity,
)


def _encode(payload: dict) -> str:
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


class TestResolveIdentity:

    def test_round_trip(self):
        user_id = uuid.uuid4()
        token = create_access_token(user_id, UserRole.SELLER)
        assert resolve_identity(token) == Identity(user_id=user_id, role=UserRole.SELLER)

    def test_claims(self):
        user_id = uuid.uuid4()
        payload = decode_token(create_access_token(user_id, UserRole.BUYER))
        assert payload["sub"] == str(user_id)
        assert payload["role"] == "buyer"
        assert payload["type"] == "access"
        assert "jti" in payload

    def test_expired_token(self):
        token = create_access_token(
            uuid.uuid4(), UserRole.BUYER, expires_in=timedelta(seconds=-5)
        )
        with pytest.raises(ValueError, match="expired"):
            resolve_identity(token)

    def test_wrong_signature(self):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "role": "buyer", "type": "access"},
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(ValueError, match="Invalid access token"):
            resolve_identity(token)

    def test_refresh_token_rejected(self):
        token = _encode(
            {
                "sub": str(uuid.uuid4()),
                "role": "buyer",
                "type": "refresh",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            }
        )
        with pytest.raises(ValueError, match="token type"):
            resolve_identity(token)

    def test_missing_subject(self):
        token = _encode({"role": "buyer", "type": "access"})
        with pytest.raises(ValueError, match="missing subject"):
            resolve_identity(token)

    def test_malformed_subject(self):
        token = _encode({"sub": "not-a-uuid", "role": "buyer", "type": "access"})
        with pytest.raises(ValueError, match="malformed subject"):
            resolve_identity(token)

    def test_unknown_role(self):
        token = _encode({"sub": str(uuid.uuid4()), "role": "owner", "type": "access"})
        with pytest.raises(ValueError, match="unknown role"):
            resolve_identity(token)

    def test_garbage(self):
        with pytest.raises(ValueError):
            resolve_identity("not.a.jwt")
