"""Tests for token service layer functionality."""
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.token import Token
from models.user import User
from services.token_service import (
    TOKEN_PREFIX,
    create_token,
    delete_tokens,
    generate_token,
    get_user_for_token,
    hash_token,
)


# =============================================================================
# generate_token / hash_token Tests
# =============================================================================


def test__generate_token__returns_plaintext_and_hash() -> None:
    plaintext, token_hash = generate_token()

    assert plaintext.startswith(TOKEN_PREFIX)
    assert len(plaintext) > 20
    assert token_hash == hash_token(plaintext)
    assert len(token_hash) == 64  # SHA256 hex digest


def test__generate_token__produces_unique_tokens() -> None:
    tokens = [generate_token()[0] for _ in range(10)]
    assert len(set(tokens)) == 10


def test__hash_token__is_deterministic() -> None:
    assert hash_token('bm_abc') == hash_token('bm_abc')
    assert hash_token('bm_abc') != hash_token('bm_abd')


# =============================================================================
# create_token Tests
# =============================================================================


async def test__create_token__stores_only_the_hash(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    token, plaintext = await create_token(db_session, test_user.id, 'bookmarklet')

    assert token.token == hash_token(plaintext)
    assert token.description == 'bookmarklet'
    stored = (await db_session.execute(select(Token.token))).scalars().all()
    assert plaintext not in stored


async def test__create_token__retries_on_collision(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    first, _ = await create_token(db_session, test_user.id, 'first')

    fresh = ('bm_fresh', hash_token('bm_fresh'))
    with patch(
        'services.token_service.generate_token',
        side_effect=[('bm_taken', first.token), fresh],
    ):
        token, plaintext = await create_token(db_session, test_user.id, 'second')

    assert plaintext == 'bm_fresh'
    assert token.token == hash_token('bm_fresh')
    result = await db_session.execute(select(func.count()).select_from(Token))
    assert result.scalar_one() == 2


async def test__create_token__gives_up_after_repeated_collisions(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    first, _ = await create_token(db_session, test_user.id, 'first')

    with (
        patch(
            'services.token_service.generate_token',
            return_value=('bm_taken', first.token),
        ),
        pytest.raises(IntegrityError),
    ):
        await create_token(db_session, test_user.id, 'doomed')


# =============================================================================
# get_user_for_token / delete_tokens Tests
# =============================================================================


async def test__get_user_for_token__resolves_plaintext(
    db_session: AsyncSession,
    test_user: User,
) -> None:
    _, plaintext = await create_token(db_session, test_user.id, 'cli')

    user = await get_user_for_token(db_session, plaintext)

    assert user is not None
    assert user.id == test_user.id
    assert await get_user_for_token(db_session, plaintext + 'x') is None
    assert await get_user_for_token(db_session, hash_token(plaintext)) is None


async def test__delete_tokens__revokes_only_own_tokens(
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    _, mine = await create_token(db_session, test_user.id, 'one')
    await create_token(db_session, test_user.id, 'two')
    _, theirs = await create_token(db_session, other_user.id, 'other')

    assert await delete_tokens(db_session, test_user.id) == 2
    assert await get_user_for_token(db_session, mine) is None
    assert await get_user_for_token(db_session, theirs) is not None
