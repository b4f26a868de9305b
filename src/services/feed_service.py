"""Assembly of a user's feeds from cached renders."""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from models.comment import Comment


async def build_feed(db: AsyncSession, user_id: int) -> str:
    """Concatenate the user's bookmark renders, most recently modified first."""
    result = await db.execute(
        select(Bookmark.render)
        .where(Bookmark.user_id == user_id)
        .order_by(Bookmark.modified_time.desc(), Bookmark.id.desc()),
    )
    return "\n".join(result.scalars().all())


async def build_comment_feed(db: AsyncSession, user_id: int) -> str:
    """Concatenate the full renders of all the user's comments, newest first."""
    result = await db.execute(
        select(Comment.full_render)
        .join(Bookmark, Comment.bookmark_id == Bookmark.id)
        .where(Bookmark.user_id == user_id)
        .order_by(Comment.created_time.desc(), Comment.id.desc()),
    )
    return "\n".join(result.scalars().all())
