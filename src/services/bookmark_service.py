"""Service layer for bookmark CRUD operations."""
import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.feed_cache import invalidate_user_feeds
from models.backup import Backup
from models.bookmark import Bookmark
from models.comment import Comment
from models.media import Media
from schemas.bookmark import BookmarkUpdate
from services import backup_service, comment_service, render_service
from services.exceptions import DuplicateBookmarkError, InvalidStateError
from services.render_service import CoreBookmark
from services.utils import is_unique_violation, now_ms, quote_lines

logger = logging.getLogger(__name__)


@dataclass
class ClipResult:
    """Outcome of a bookmarklet clip."""

    bookmark: Bookmark
    comment: Comment | None
    created: bool
    html_wanted: bool


async def create_bookmark(
    db: AsyncSession,
    user_id: int,
    url: str,
    title: str,
    comment: str = "",
    now: float | None = None,
) -> Bookmark:
    """
    Create a bookmark together with its first comment (possibly empty).

    Raises:
        DuplicateBookmarkError: If the user already has a bookmark with this url and title.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    now = now_ms() if now is None else now
    bookmark = Bookmark(
        user_id=user_id,
        url=url,
        title=title,
        created_time=now,
        modified_time=now,
        num_comments=1,
        render="",
        rendered_time=now,
    )
    try:
        async with db.begin_nested():
            db.add(bookmark)
            await db.flush()
    except IntegrityError as e:
        if is_unique_violation(e, "bookmark.url"):
            raise DuplicateBookmarkError(url, title) from e
        raise

    db.add(
        Comment(
            bookmark_id=bookmark.id,
            sibling_idx=1,
            content=comment,
            created_time=now,
            modified_time=now,
            inner_render="",
            full_render="",
            rendered_time=now,
        ),
    )
    await db.flush()

    await render_service.on_bookmark_created(db, CoreBookmark.from_row(bookmark), now)
    invalidate_user_feeds(user_id)

    await db.refresh(bookmark)
    logger.info("Created bookmark %s for user %s", bookmark.id, user_id)
    return bookmark


async def get_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> Bookmark | None:
    """Get a bookmark by ID, scoped to user. Returns None if not found or wrong user."""
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.id == bookmark_id,
            Bookmark.user_id == user_id,
        ),
    )
    return result.scalar_one_or_none()


async def find_bookmark(
    db: AsyncSession,
    user_id: int,
    url: str,
    title: str,
) -> Bookmark | None:
    """Find the user's bookmark for an exact (url, title) pair."""
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.user_id == user_id,
            Bookmark.url == url,
            Bookmark.title == title,
        ),
    )
    return result.scalar_one_or_none()


async def add_bookmark_or_comment(
    db: AsyncSession,
    user_id: int,
    url: str,
    title: str,
    comment: str = "",
    quote: bool = False,
    now: float | None = None,
) -> ClipResult:
    """
    Handle a bookmarklet clip.

    A new (url, title) pair creates a bookmark whose first comment is the clip's
    text. Re-clipping an existing pair adds the text as a new comment. `html_wanted`
    tells the client whether a fresh page snapshot should be posted.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    now = now_ms() if now is None else now
    content = quote_lines(comment) if quote and comment else comment

    bookmark = await find_bookmark(db, user_id, url, title)
    if bookmark is None:
        bookmark = await create_bookmark(db, user_id, url, title, content, now)
        added = None
        created = True
    else:
        added = await comment_service.add_comment(db, user_id, bookmark.id, content, now)
        await db.refresh(bookmark)
        created = False

    html_wanted = await backup_service.wants_backup(db, bookmark.id, now)
    return ClipResult(bookmark=bookmark, comment=added, created=created, html_wanted=html_wanted)


async def update_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    data: BookmarkUpdate,
    now: float | None = None,
) -> Bookmark | None:
    """
    Update a bookmark's url and/or title. Returns None if not found or wrong user.

    Every comment's full render embeds the bookmark header, so all of them are
    re-rendered along with the bookmark.

    Raises:
        DuplicateBookmarkError: If the new (url, title) pair is already taken.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    now = now_ms() if now is None else now
    url = data.url if data.url is not None else bookmark.url
    title = data.title if data.title is not None else bookmark.title

    try:
        async with db.begin_nested():
            bookmark.url = url
            bookmark.title = title
            bookmark.modified_time = now
            await db.flush()
    except IntegrityError as e:
        if is_unique_violation(e, "bookmark.url"):
            raise DuplicateBookmarkError(url, title) from e
        raise

    await render_service.on_bookmark_edited(db, CoreBookmark.from_row(bookmark), now)
    invalidate_user_feeds(user_id)

    await db.refresh(bookmark)
    return bookmark


async def _delete_dependents(db: AsyncSession, bookmark_id: int) -> None:
    """Delete a bookmark's backups and media rows. Blobs are kept."""
    await db.execute(delete(Backup).where(Backup.bookmark_id == bookmark_id))
    await db.execute(delete(Media).where(Media.bookmark_id == bookmark_id))


async def delete_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> bool:
    """
    Delete a bookmark with its comments, backups and media. Returns True if deleted.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return False

    await db.execute(delete(Comment).where(Comment.bookmark_id == bookmark.id))
    await _delete_dependents(db, bookmark.id)
    await db.delete(bookmark)
    await db.flush()

    invalidate_user_feeds(user_id)
    logger.info("Deleted bookmark %s for user %s", bookmark_id, user_id)
    return True


async def merge_bookmarks(
    db: AsyncSession,
    user_id: int,
    from_id: int,
    into_id: int,
    now: float | None = None,
) -> Bookmark | None:
    """
    Move every comment of bookmark `from_id` into bookmark `into_id` and delete the former.

    The merged thread's sibling indices are re-derived oldest-first by
    (createdTime, id), so they are again exactly 1..numComments. The target's
    modifiedTime moves forward to the latest comment of the merged thread; the
    source bookmark's own modifiedTime (e.g. from a retitle) is not carried over.
    The source bookmark's backups and media are deleted with it.

    Returns:
        The surviving bookmark, or None if either bookmark is not found or not owned.

    Raises:
        InvalidStateError: If both ids are the same bookmark.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    if from_id == into_id:
        raise InvalidStateError("Cannot merge a bookmark into itself")

    source = await get_bookmark(db, user_id, from_id)
    target = await get_bookmark(db, user_id, into_id)
    if source is None or target is None:
        return None

    result = await db.execute(
        select(Comment)
        .where(Comment.bookmark_id.in_([source.id, target.id]))
        .order_by(Comment.created_time, Comment.id),
    )
    comments = list(result.scalars().all())

    # (bookmarkId, siblingIdx) is unique: park every index on a distinct
    # negative value before assigning the final ones
    for comment in comments:
        comment.bookmark_id = target.id
        comment.sibling_idx = -comment.id
    await db.flush()
    for idx, comment in enumerate(comments, start=1):
        comment.sibling_idx = idx
    target.num_comments = len(comments)
    latest_comment = max((c.modified_time for c in comments), default=target.modified_time)
    target.modified_time = max(target.modified_time, latest_comment)
    await db.flush()

    await _delete_dependents(db, source.id)
    await db.delete(source)
    await db.flush()

    await render_service.on_bookmarks_merged(db, from_id, CoreBookmark.from_row(target), now)
    invalidate_user_feeds(user_id)

    await db.refresh(target)
    logger.info("Merged bookmark %s into %s (%d comments)", from_id, into_id, len(comments))
    return target
