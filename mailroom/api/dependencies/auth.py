"""
FastAPI dependency for authenticating publish requests

Usage:
    @router.post("/newsletters")
    async def publish(
        user_id: int = Depends(get_current_user_id),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.core.auth import verify_token
from mailroom.core.exceptions import UnauthorizedException
from mailroom.core.logging import get_logger
from mailroom.db.database import get_db
from mailroom.db.models.user import User

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> int:
    """
    Verify the bearer token and that its user still exists and is active.

    Raises UnauthorizedException (401) otherwise.
    """
    if credentials is None:
        raise UnauthorizedException("Missing bearer token")

    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise UnauthorizedException("Invalid or expired token")

    result = await db.execute(select(User.is_active).where(User.id == token_data.user_id))
    is_active = result.scalar_one_or_none()
    # Close the read transaction so the handler starts from a clean session
    await db.rollback()
    if not is_active:
        logger.warning(
            "Publish denied - user inactive or missing",
            extra_data={"user_id": token_data.user_id, "user_found": is_active is not None},
        )
        raise UnauthorizedException("User is not active")

    return token_data.user_id
