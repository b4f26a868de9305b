"""Service layer for the content-addressed media store."""
import hashlib
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.media import Blob, Media
from services.utils import is_unique_violation, now_ms

logger = logging.getLogger(__name__)


def sha256_hex(content: bytes) -> str:
    """Hex sha256 digest used as the blob key."""
    return hashlib.sha256(content).hexdigest()


async def add_blob(
    db: AsyncSession,
    content: bytes,
    mime: str,
    now: float | None = None,
) -> str:
    """
    Store bytes under their sha256. Storing the same bytes twice is a no-op.

    Returns:
        The sha256 key.

    Note: Does not commit. Caller handles commit.
    """
    sha256 = sha256_hex(content)
    blob = Blob(
        content=content,
        mime=mime,
        created_time=now_ms() if now is None else now,
        num_bytes=len(content),
        sha256=sha256,
    )
    try:
        async with db.begin_nested():
            db.add(blob)
            await db.flush()
    except IntegrityError as e:
        if not is_unique_violation(e, "blob.sha256"):
            raise
        logger.debug("Blob %s already stored", sha256)
    return sha256


async def add_media(
    db: AsyncSession,
    bookmark_id: int,
    path: str,
    sha256: str,
    now: float | None = None,
) -> bool:
    """
    Record that `path` (a remote URL) of a bookmark resolves to blob `sha256`.

    Returns:
        True if a row was inserted, False if the same (sha256, path, bookmark)
        was already recorded.

    Note: Does not commit. Caller handles commit.
    """
    media = Media(
        path=path,
        bookmark_id=bookmark_id,
        sha256=sha256,
        created_time=now_ms() if now is None else now,
    )
    try:
        async with db.begin_nested():
            db.add(media)
            await db.flush()
    except IntegrityError as e:
        if not is_unique_violation(e, "media.sha256"):
            raise
        logger.debug("Media %s of bookmark %s already recorded", path, bookmark_id)
        return False
    return True


async def media_exists(db: AsyncSession, bookmark_id: int, path: str) -> bool:
    """Check whether a bookmark's remote URL has already been mirrored."""
    result = await db.execute(
        select(Media.id).where(
            Media.bookmark_id == bookmark_id,
            Media.path == path,
        ).limit(1),
    )
    return result.first() is not None


async def get_media_blob(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    path: str,
) -> Blob | None:
    """Get the newest mirrored bytes for a bookmark's remote URL, scoped to user."""
    result = await db.execute(
        select(Blob)
        .join(Media, Media.sha256 == Blob.sha256)
        .join(Bookmark, Media.bookmark_id == Bookmark.id)
        .where(
            Media.bookmark_id == bookmark_id,
            Media.path == path,
            Bookmark.user_id == user_id,
        )
        .order_by(Media.created_time.desc())
        .limit(1),
    )
    return result.scalar_one_or_none()
