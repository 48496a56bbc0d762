"""
Tests for JWT access token handling.
"""

import uuid
from datetime import timedelta

import pytest
from jose import jwt

from storefront.core.config import get_settings
from storefront.core.security import (
    TokenError,
    create_access_token,
    decode_token,
    get_token_user_id,
)


class TestAccessTokens:
    """Tests for access token creation and validation."""

    def test_roundtrip(self):
        user_id = uuid.uuid4()

        payload = decode_token(create_access_token(user_id, role="seller"))

        assert payload["sub"] == str(user_id)
        assert payload["role"] == "seller"
        assert payload["type"] == "access"
        assert get_token_user_id(payload) == user_id

    def test_extra_claims(self):
        payload = decode_token(create_access_token(uuid.uuid4(), role="admin", scope="orders"))

        assert payload["scope"] == "orders"

    def test_expired_token(self):
        token = create_access_token(
            uuid.uuid4(), role="customer", expires_delta=timedelta(seconds=-1)
        )

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_wrong_token_type(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "refresh"},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(TokenError, match="Invalid token type"):
            decode_token(token)

    def test_wrong_signature(self):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "access"},
            "another-secret-key-that-is-long-enough",
            algorithm="HS256",
        )

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_INVALID"

    def test_empty_token(self):
        with pytest.raises(TokenError) as exc_info:
            decode_token("")

        assert exc_info.value.code == "EMPTY_TOKEN"

    def test_non_uuid_subject(self):
        with pytest.raises(TokenError, match="Invalid token subject"):
            get_token_user_id({"sub": "not-a-uuid"})
