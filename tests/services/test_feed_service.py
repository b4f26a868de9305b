"""Tests for feed assembly from cached renders."""
from sqlalchemy.ext.asyncio import AsyncSession

from models.user import User
from services import bookmark_service, comment_service, feed_service


async def test__build_feed__most_recently_modified_first(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    older = await bookmark_service.create_bookmark(
        db_session, test_user.id, 'https://a.com/', 'Older', 'x', now=1000.0,
    )
    newer = await bookmark_service.create_bookmark(
        db_session, test_user.id, 'https://b.com/', 'Newer', 'y', now=2000.0,
    )

    assert await feed_service.build_feed(db_session, test_user.id) == f'{newer.render}\n{older.render}'

    await comment_service.add_comment(db_session, test_user.id, older.id, 'bump', now=3000.0)
    await db_session.refresh(older)

    assert await feed_service.build_feed(db_session, test_user.id) == f'{older.render}\n{newer.render}'


async def test__build_feed__scoped_to_user(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    await bookmark_service.create_bookmark(db_session, other_user.id, 'https://a.com/', 'Theirs')

    assert await feed_service.build_feed(db_session, test_user.id) == ''


async def test__build_comment_feed__newest_first_full_renders(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(
        db_session, test_user.id, 'https://a.com/', 'A', 'first', now=1000.0,
    )
    second = await comment_service.add_comment(
        db_session, test_user.id, bookmark.id, 'second', now=2000.0,
    )
    [_, first] = await comment_service.get_comments(db_session, test_user.id, bookmark.id)
    await db_session.refresh(first)

    feed = await feed_service.build_comment_feed(db_session, test_user.id)

    assert second is not None
    assert feed == f'{second.full_render}\n{first.full_render}'
