"""Tests for the feed pages and authentication."""
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from core.feed_cache import FeedCache
from models.user import User
from services.token_service import create_token


def _use_token_auth() -> None:
    """Switch the test app out of dev mode."""
    from api.main import app

    app.dependency_overrides[get_settings] = lambda: Settings(dev_mode=False)


async def test_feed_lists_most_recent_first(client: AsyncClient) -> None:
    """The feed shows bookmarks by modification time, newest first."""
    for title in ("First", "Second"):
        await client.post(
            "/bookmark",
            json={"_type": "addBookmarkOrComment", "url": "", "title": title, "comment": title.lower()},
        )

    response = await client.get("/")
    assert response.status_code == 200
    assert response.text.index("Second") < response.text.index("First")


async def test_feed_is_cached_and_invalidated(client: AsyncClient, feed_cache: FeedCache) -> None:
    """The feed is served from the cache until a mutation invalidates it."""
    await client.post(
        "/bookmark",
        json={"_type": "addBookmarkOrComment", "url": "", "title": "Cached", "comment": ""},
    )
    first = await client.get("/")
    assert "Cached" in first.text
    assert len(feed_cache._feeds) == 1

    await client.post(
        "/bookmark",
        json={"_type": "addBookmarkOrComment", "url": "", "title": "Fresh", "comment": ""},
    )
    assert feed_cache._feeds == {}

    second = await client.get("/")
    assert "Fresh" in second.text


async def test_comment_feed(client: AsyncClient) -> None:
    """The comment feed shows every comment in its bookmark's header, newest first."""
    clip = await client.post(
        "/bookmark",
        json={"_type": "addBookmarkOrComment", "url": "https://a.com/", "title": "A", "comment": "older"},
    )
    bookmark_id = clip.json()["id"]
    await client.post(f"/bookmark/{bookmark_id}/comment", json={"content": "newer"})

    response = await client.get("/comments")
    assert response.status_code == 200
    assert response.text.index("newer") < response.text.index("older")
    assert f'id="bookmark-{bookmark_id}-comment-2"' in response.text


async def test_feed_anonymous_gets_welcome_page(client: AsyncClient) -> None:
    """Without dev mode or a token the root is a welcome page."""
    _use_token_auth()

    response = await client.get("/")
    assert response.status_code == 200
    assert "bookmarklet" in response.text


async def test_comment_feed_requires_auth(client: AsyncClient) -> None:
    """The comment feed has no anonymous version."""
    _use_token_auth()

    response = await client.get("/comments")
    assert response.status_code == 401


async def test_bookmark_endpoints_require_auth(client: AsyncClient) -> None:
    """Bookmark endpoints reject anonymous requests."""
    _use_token_auth()

    response = await client.post(
        "/bookmark",
        json={"_type": "addBookmarkOrComment", "url": "", "title": "x"},
    )
    assert response.status_code == 401


async def test_bearer_token_authenticates(
    client: AsyncClient,
    db_session: AsyncSession,
    test_user: User,
    other_user: User,
) -> None:
    """A valid bearer token acts as its user; feeds are per user."""
    _use_token_auth()
    _, mine = await create_token(db_session, test_user.id, 'mine')
    _, theirs = await create_token(db_session, other_user.id, 'theirs')

    await client.post(
        "/bookmark",
        json={"_type": "addBookmarkOrComment", "url": "", "title": "Private note"},
        headers={"Authorization": f"Bearer {mine}"},
    )

    own = await client.get("/", headers={"Authorization": f"Bearer {mine}"})
    other = await client.get("/", headers={"Authorization": f"Bearer {theirs}"})
    assert "Private note" in own.text
    assert "Private note" not in other.text


async def test_invalid_bearer_token(client: AsyncClient) -> None:
    """An unknown token is rejected even on pages that allow anonymous access."""
    _use_token_auth()

    response = await client.get("/", headers={"Authorization": "Bearer bm_nope"})
    assert response.status_code == 401
