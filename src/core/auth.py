"""Authentication: bearer tokens, plus a dev-mode bypass for local development."""
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.session import get_async_session
from models.user import User
from services import token_service
from services.utils import is_unique_violation

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)

DEV_GITHUB_ID = 0
DEV_DISPLAY_NAME = "dev"


async def get_or_create_user(
    db: AsyncSession,
    github_id: int,
    display_name: str,
) -> User:
    """
    Get existing user or create a new one for a federated (GitHub) identity.

    Two first logins racing on the same identity both end up with the same row.

    Note: Uses flush(), not commit. Session generator handles commit at request end.
    """
    result = await db.execute(select(User).where(User.github_id == github_id))
    user = result.scalar_one_or_none()
    if user is not None:
        if display_name and user.display_name != display_name:
            user.display_name = display_name
            await db.flush()
        return user

    user = User(github_id=github_id, display_name=display_name)
    try:
        async with db.begin_nested():
            db.add(user)
            await db.flush()
    except IntegrityError as e:
        if not is_unique_violation(e, "user.githubId"):
            raise
        result = await db.execute(select(User).where(User.github_id == github_id))
        user = result.scalar_one()
    else:
        logger.info("Created user %s for github id %s", user.id, github_id)
    return user


async def get_or_create_dev_user(db: AsyncSession) -> User:
    """Get or create a development user for DEV_MODE."""
    return await get_or_create_user(db, DEV_GITHUB_ID, DEV_DISPLAY_NAME)


async def validate_token(db: AsyncSession, token: str) -> User:
    """
    Validate a bearer token and return the associated user.

    Raises:
        HTTPException: If the token is unknown or revoked.
    """
    user = await token_service.get_user_for_token(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> User | None:
    """
    Dependency returning the current user, or None for anonymous requests.

    An invalid token is still rejected with 401. In DEV_MODE, bypasses auth and
    returns the development user.
    """
    if settings.dev_mode:
        return await get_or_create_dev_user(db)
    if credentials is None:
        return None
    return await validate_token(db, credentials.credentials)


async def get_current_user(
    user: User | None = Depends(get_optional_user),
) -> User:
    """Dependency that requires an authenticated user."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
