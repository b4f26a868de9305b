"""Service layer for page snapshots (backups)."""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from models.backup import Backup
from models.bookmark import Bookmark
from services.media_mirror import extract_and_rewrite
from services.utils import now_ms

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


async def get_latest_backup(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> Backup | None:
    """Get a bookmark's most recent snapshot, scoped to user."""
    result = await db.execute(
        select(Backup)
        .join(Bookmark, Backup.bookmark_id == Bookmark.id)
        .where(
            Backup.bookmark_id == bookmark_id,
            Bookmark.user_id == user_id,
        )
        .order_by(Backup.created_time.desc(), Backup.id.desc())
        .limit(1),
    )
    return result.scalar_one_or_none()


async def wants_backup(
    db: AsyncSession,
    bookmark_id: int,
    now: float | None = None,
    interval_days: int | None = None,
) -> bool:
    """
    Whether a new snapshot of the bookmark should be requested.

    True when there is no snapshot yet or the newest one is older than the
    configured interval (BACKUP_INTERVAL_DAYS, 30 by default).
    """
    if interval_days is None:
        interval_days = get_settings().backup_interval_days
    now = now_ms() if now is None else now

    result = await db.execute(
        select(Backup.created_time)
        .where(Backup.bookmark_id == bookmark_id)
        .order_by(Backup.created_time.desc())
        .limit(1),
    )
    latest = result.scalar_one_or_none()
    return latest is None or now - latest > interval_days * DAY_MS


async def add_backup(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    html: str,
    now: float | None = None,
) -> tuple[Backup, list[str]] | None:
    """
    Store a page snapshot for a bookmark. Returns None if not found or wrong user.

    The raw HTML is kept as `original`. `content` has its media and stylesheet
    references rewritten to the local mirror.

    Returns:
        The new backup and the remote URLs that should be mirrored.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.id == bookmark_id,
            Bookmark.user_id == user_id,
        ),
    )
    bookmark = result.scalar_one_or_none()
    if bookmark is None:
        return None

    snapshot = extract_and_rewrite(html, bookmark.url, bookmark.id)
    backup = Backup(
        bookmark_id=bookmark.id,
        content=snapshot.html,
        original=html,
        created_time=now_ms() if now is None else now,
    )
    db.add(backup)
    await db.flush()
    await db.refresh(backup)

    logger.info(
        "Stored snapshot %s for bookmark %s (%d bytes, %d media references)",
        backup.id,
        bookmark.id,
        len(html),
        len(snapshot.urls),
    )
    return backup, snapshot.urls
