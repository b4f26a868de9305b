"""Tests for the content-addressed media store."""
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.media import Blob, Media
from models.user import User
from services import bookmark_service, media_service


async def test__add_blob__stores_bytes_under_sha256(db_session: AsyncSession) -> None:
    sha256 = await media_service.add_blob(db_session, b'hello', 'text/plain', now=10.0)

    blob = (await db_session.execute(select(Blob))).scalar_one()
    assert sha256 == media_service.sha256_hex(b'hello')
    assert blob.sha256 == sha256
    assert blob.num_bytes == 5
    assert blob.mime == 'text/plain'
    assert blob.created_time == 10.0


async def test__add_blob__same_bytes_twice_is_a_no_op(db_session: AsyncSession) -> None:
    first = await media_service.add_blob(db_session, b'hello', 'text/plain')
    second = await media_service.add_blob(db_session, b'hello', 'application/octet-stream')

    assert first == second
    result = await db_session.execute(select(func.count()).select_from(Blob))
    assert result.scalar_one() == 1


async def test__add_media__duplicate_is_a_no_op(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(db_session, test_user.id, 'https://a.com/', 'A')
    sha256 = await media_service.add_blob(db_session, b'png', 'image/png')

    assert await media_service.add_media(db_session, bookmark.id, 'https://a.com/x.png', sha256)
    assert not await media_service.add_media(db_session, bookmark.id, 'https://a.com/x.png', sha256)

    result = await db_session.execute(select(func.count()).select_from(Media))
    assert result.scalar_one() == 1
    assert await media_service.media_exists(db_session, bookmark.id, 'https://a.com/x.png')
    assert not await media_service.media_exists(db_session, bookmark.id, 'https://a.com/y.png')


async def test__get_media_blob__newest_version_for_owner_only(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    bookmark = await bookmark_service.create_bookmark(db_session, test_user.id, 'https://a.com/', 'A')
    old = await media_service.add_blob(db_session, b'old', 'image/png')
    new = await media_service.add_blob(db_session, b'new', 'image/png')
    await media_service.add_media(db_session, bookmark.id, 'https://a.com/x.png', old, now=1.0)
    await media_service.add_media(db_session, bookmark.id, 'https://a.com/x.png', new, now=2.0)

    blob = await media_service.get_media_blob(
        db_session, test_user.id, bookmark.id, 'https://a.com/x.png',
    )
    assert blob is not None
    assert blob.content == b'new'

    assert await media_service.get_media_blob(
        db_session, other_user.id, bookmark.id, 'https://a.com/x.png',
    ) is None
    assert await media_service.get_media_blob(
        db_session, test_user.id, bookmark.id, 'https://a.com/missing.png',
    ) is None
