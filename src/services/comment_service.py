"""Service layer for comment operations."""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.feed_cache import invalidate_user_feeds
from models.bookmark import Bookmark
from models.comment import Comment
from services import render_service
from services.render_service import CoreBookmark, CoreComment
from services.utils import now_ms

logger = logging.getLogger(__name__)


async def _get_owned_bookmark(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> Bookmark | None:
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.id == bookmark_id,
            Bookmark.user_id == user_id,
        ),
    )
    return result.scalar_one_or_none()


async def add_comment(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
    content: str,
    now: float | None = None,
) -> Comment | None:
    """
    Add a comment to a bookmark. Returns None if not found or wrong user.

    The sibling index is assigned as numComments + 1 in the same transaction as
    the insert and the numComments increment. Sessions begin with BEGIN IMMEDIATE,
    so the read of numComments already holds the database write lock and two
    concurrent submissions cannot be given the same index.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = await _get_owned_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    now = now_ms() if now is None else now
    context = CoreBookmark.from_row(bookmark)
    bookmark_render = bookmark.render

    comment = Comment(
        bookmark_id=bookmark.id,
        sibling_idx=context.num_comments + 1,
        content=content,
        created_time=now,
        modified_time=now,
        inner_render="",
        full_render="",
        rendered_time=now,
    )
    db.add(comment)
    await db.flush()

    await render_service.on_comment_created(
        db, CoreComment.from_row(comment), context, bookmark_render, now,
    )
    invalidate_user_feeds(user_id)

    await db.refresh(comment)
    logger.info(
        "Added comment %s to bookmark %s (sibling %s)",
        comment.id,
        bookmark.id,
        comment.sibling_idx,
    )
    return comment


async def get_comment(
    db: AsyncSession,
    user_id: int,
    comment_id: int,
) -> Comment | None:
    """Get a comment by ID, scoped to user. Returns None if not found or wrong user."""
    result = await db.execute(
        select(Comment)
        .join(Bookmark, Comment.bookmark_id == Bookmark.id)
        .where(
            Comment.id == comment_id,
            Bookmark.user_id == user_id,
        ),
    )
    return result.scalar_one_or_none()


async def get_comments(
    db: AsyncSession,
    user_id: int,
    bookmark_id: int,
) -> list[Comment]:
    """Get a bookmark's comments, newest first."""
    result = await db.execute(
        select(Comment)
        .join(Bookmark, Comment.bookmark_id == Bookmark.id)
        .where(
            Comment.bookmark_id == bookmark_id,
            Bookmark.user_id == user_id,
        )
        .order_by(Comment.sibling_idx.desc()),
    )
    return list(result.scalars().all())


async def edit_comment(
    db: AsyncSession,
    user_id: int,
    comment_id: int,
    content: str,
    now: float | None = None,
) -> Comment | None:
    """
    Replace a comment's content. Returns None if not found or wrong user.

    siblingIdx and createdTime are unchanged. The comment's and its bookmark's
    modifiedTime are bumped, and both cached renders are refreshed.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    comment = await get_comment(db, user_id, comment_id)
    if comment is None:
        return None
    bookmark = await db.get(Bookmark, comment.bookmark_id)
    if bookmark is None:
        return None

    now = now_ms() if now is None else now
    comment.content = content
    comment.modified_time = now
    bookmark.modified_time = now
    await db.flush()

    await render_service.on_comment_edited(
        db, CoreComment.from_row(comment), CoreBookmark.from_row(bookmark), now,
    )
    invalidate_user_feeds(user_id)

    await db.refresh(comment)
    return comment
