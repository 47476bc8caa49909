"""
Bearer tokens for the publish API.

A token names a user and an expiry, nothing else; api.dependencies.auth
looks the user up on every request, so deactivating a user takes effect
before their tokens expire.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel, ValidationError

from mailroom.core.config import settings
from mailroom.core.logging import get_logger

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    user_id: int
    exp: int  # Unix timestamp


def create_access_token(user_id: int, expires_minutes: int | None = None) -> str:
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not set, tokens cannot be issued")

    lifetime = timedelta(minutes=expires_minutes or settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = TokenPayload(
        user_id=user_id,
        exp=int((datetime.now(timezone.utc) + lifetime).timestamp()),
    )
    logger.info("Access token issued", extra_data={"user_id": user_id})
    return pyjwt.encode(claims.model_dump(), settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenPayload]:
    """
    Decode and check a bearer token.

    Returns None for anything unusable: bad signature, expired, or claims
    that do not name a user.
    """
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is not set, every token is rejected")
        return None

    try:
        claims = pyjwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except pyjwt.ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except pyjwt.InvalidTokenError as e:
        logger.warning("Access token rejected", extra_data={"error": type(e).__name__})
        return None

    try:
        return TokenPayload.model_validate(claims)
    except ValidationError as e:
        logger.warning("Access token claims malformed", extra_data={"error_count": e.error_count()})
        return None
