"""
Tests for bearer tokens - mailroom/core/auth.py
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt as pyjwt
import pytest

from mailroom.core.auth import TokenPayload, create_access_token, verify_token
from mailroom.core.config import settings


def _encode(claims: dict, secret: str | None = None) -> str:
    return pyjwt.encode(claims, secret or settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


class TestAccessTokens:

    @pytest.mark.unit
    def test_create_and_verify(self):
        payload = verify_token(create_access_token(17))

        assert isinstance(payload, TokenPayload)
        assert payload.user_id == 17
        assert payload.exp > int(datetime.now(timezone.utc).timestamp())

    @pytest.mark.unit
    def test_custom_lifetime(self):
        payload = verify_token(create_access_token(17, expires_minutes=1))
        expected = datetime.now(timezone.utc) + timedelta(minutes=1)

        assert abs(payload.exp - expected.timestamp()) < 5

    @pytest.mark.unit
    def test_expired_token_rejected(self):
        past = int((datetime.now(timezone.utc) - timedelta(minutes=5)).timestamp())

        assert verify_token(_encode({"user_id": 17, "exp": past})) is None

    @pytest.mark.unit
    def test_wrong_signature_rejected(self):
        future = int((datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp())
        token = _encode({"user_id": 17, "exp": future}, secret="another-secret-" + "x" * 32)

        assert verify_token(token) is None

    @pytest.mark.unit
    def test_garbage_rejected(self):
        assert verify_token("invalid.token.here") is None

    @pytest.mark.unit
    def test_claims_without_user_rejected(self):
        future = int((datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp())

        assert verify_token(_encode({"sub": "17", "exp": future})) is None

    @pytest.mark.unit
    def test_missing_secret(self):
        token = create_access_token(17)

        with patch.object(settings, "JWT_SECRET_KEY", ""):
            assert verify_token(token) is None
            with pytest.raises(ValueError, match="JWT_SECRET_KEY"):
                create_access_token(17)
