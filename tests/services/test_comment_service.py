"""Tests for comment service layer functionality."""
import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from db.migrations.engine import verify_derived_columns
from models.bookmark import Bookmark
from models.comment import Comment
from models.user import User
from services import bookmark_service, comment_service
from services.render_service import (
    CoreBookmark,
    CoreComment,
    render_comment,
    rerender_just_bookmark,
)


async def test__add_comment__next_sibling_index(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(
        db_session, test_user.id, 'https://a.com/', 'A', 'first', now=1000.0,
    )

    comment = await comment_service.add_comment(
        db_session, test_user.id, bookmark.id, 'second', now=2000.0,
    )

    assert comment is not None
    assert comment.sibling_idx == 2
    assert comment.created_time == 2000.0
    assert comment.modified_time == 2000.0
    expected = render_comment(
        CoreComment.from_row(comment),
        CoreBookmark(id=bookmark.id, url='https://a.com/', title='A', num_comments=2),
    )
    assert comment.inner_render == expected.inner
    assert comment.full_render == expected.full
    assert comment.rendered_time == 2000.0


async def test__add_comment__wrong_user_returns_none(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(db_session, test_user.id, 'https://a.com/', 'A')

    assert await comment_service.add_comment(db_session, other_user.id, bookmark.id, 'hi') is None
    await db_session.refresh(bookmark)
    assert bookmark.num_comments == 1


async def test__add_comment__concurrent_submissions_get_distinct_indices(
    async_engine: AsyncEngine,
) -> None:
    """Independent sessions adding comments at once still produce a gap-free thread."""
    sessions = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with sessions() as db:
        user = User(github_id=3003, display_name='Concurrent')
        db.add(user)
        await db.flush()
        bookmark = await bookmark_service.create_bookmark(
            db, user.id, 'https://a.com/', 'A', 'first',
        )
        await db.commit()
        user_id, bookmark_id = user.id, bookmark.id

    async def submit(i: int) -> None:
        async with sessions() as db:
            comment = await comment_service.add_comment(db, user_id, bookmark_id, f'comment {i}')
            assert comment is not None
            await db.commit()

    await asyncio.gather(*(submit(i) for i in range(8)))

    async with sessions() as db:
        bookmark = (
            await db.execute(select(Bookmark).where(Bookmark.id == bookmark_id))
        ).scalar_one()
        indices = (
            await db.execute(
                select(Comment.sibling_idx)
                .where(Comment.bookmark_id == bookmark_id)
                .order_by(Comment.sibling_idx),
            )
        ).scalars().all()
        stored_render = bookmark.render
        full_render = await rerender_just_bookmark(db, CoreBookmark.from_row(bookmark))

        assert bookmark.num_comments == 9
        assert indices == list(range(1, 10))
        assert stored_render == full_render
        assert await verify_derived_columns(await db.connection()) == []


async def test__get_comments__newest_first(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(
        db_session, test_user.id, 'https://a.com/', 'A', 'one',
    )
    await comment_service.add_comment(db_session, test_user.id, bookmark.id, 'two')
    await comment_service.add_comment(db_session, test_user.id, bookmark.id, 'three')

    comments = await comment_service.get_comments(db_session, test_user.id, bookmark.id)

    assert [c.content for c in comments] == ['three', 'two', 'one']


async def test__get_comment__scoped_to_user(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(
        db_session, test_user.id, 'https://a.com/', 'A', 'mine',
    )
    [comment] = await comment_service.get_comments(db_session, test_user.id, bookmark.id)

    assert await comment_service.get_comment(db_session, test_user.id, comment.id) is not None
    assert await comment_service.get_comment(db_session, other_user.id, comment.id) is None


async def test__edit_comment__keeps_index_and_creation_time(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(
        db_session, test_user.id, 'https://a.com/', 'A', 'draft', now=1000.0,
    )
    [comment] = await comment_service.get_comments(db_session, test_user.id, bookmark.id)

    edited = await comment_service.edit_comment(
        db_session, test_user.id, comment.id, 'final', now=9000.0,
    )
    await db_session.refresh(bookmark)

    assert edited is not None
    assert edited.content == 'final'
    assert edited.sibling_idx == 1
    assert edited.created_time == 1000.0
    assert edited.modified_time == 9000.0
    assert 'final' in edited.inner_render
    assert 'final' in edited.full_render
    assert edited.inner_render in bookmark.render
    assert 'draft' not in bookmark.render
    assert bookmark.modified_time == 9000.0


async def test__edit_comment__not_found(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    assert await comment_service.edit_comment(db_session, test_user.id, 404, 'x') is None
