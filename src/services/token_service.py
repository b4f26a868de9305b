"""Service layer for bearer token operations."""
import hashlib
import logging
import secrets

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.token import Token
from models.user import User
from services.utils import is_unique_violation

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "bm_"
MAX_CREATE_ATTEMPTS = 3


def generate_token() -> tuple[str, str]:
    """
    Generate a secure bearer token.

    Returns:
        Tuple of (plaintext_token, token_hash).
        The plaintext should only be shown once at creation.
    """
    plaintext = f"{TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
    return plaintext, hash_token(plaintext)


def hash_token(token: str) -> str:
    """Hash a token for comparison against stored hashes."""
    return hashlib.sha256(token.encode()).hexdigest()


async def create_token(
    db: AsyncSession,
    user_id: int,
    description: str,
) -> tuple[Token, str]:
    """
    Create a new bearer token for a user.

    A generated token colliding with an existing one is retried with a fresh token.

    Returns:
        Tuple of (Token model, plaintext_token).
        The plaintext token is only available at creation time.

    Raises:
        IntegrityError: If every attempt collided.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    for attempt in range(MAX_CREATE_ATTEMPTS):
        plaintext, token_hash = generate_token()
        token = Token(token=token_hash, description=description, user_id=user_id)
        try:
            async with db.begin_nested():  # Creates savepoint
                db.add(token)
                await db.flush()
        except IntegrityError as e:
            if not is_unique_violation(e, "token.token") or attempt == MAX_CREATE_ATTEMPTS - 1:
                raise
            logger.warning("Generated token collided, retrying")
            continue
        return token, plaintext

    raise RuntimeError("Unexpected state in create_token")


async def get_user_for_token(
    db: AsyncSession,
    plaintext_token: str,
) -> User | None:
    """
    Resolve a plaintext bearer token to its user.

    The token is hashed before the lookup, so response time does not depend on
    how much of a guessed token matches a stored one.
    """
    result = await db.execute(
        select(User)
        .join(Token, Token.user_id == User.id)
        .where(Token.token == hash_token(plaintext_token)),
    )
    return result.scalar_one_or_none()


async def delete_tokens(db: AsyncSession, user_id: int) -> int:
    """
    Revoke every token of a user.

    Returns:
        Number of tokens deleted.

    Note:
        Does not commit. Caller (session generator) handles commit at request end.
    """
    result = await db.execute(delete(Token).where(Token.user_id == user_id))
    return result.rowcount
