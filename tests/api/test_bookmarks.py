"""Tests for bookmark, comment and bookmarklet endpoints."""
from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.backup import Backup
from models.bookmark import Bookmark
from models.comment import Comment


@pytest.fixture(autouse=True)
def mock_mirror_media() -> Generator[AsyncMock]:
    """Auto-mock media mirroring so snapshot tests never touch the network."""
    with patch(
        'services.media_mirror.mirror_media',
        new_callable=AsyncMock,
        return_value=0,
    ) as mock:
        yield mock


async def _clip(client: AsyncClient, url: str, title: str, comment: str = "", **extra: object) -> dict:
    response = await client.post(
        "/bookmark",
        json={"_type": "addBookmarkOrComment", "url": url, "title": title, "comment": comment, **extra},
    )
    assert response.status_code in (200, 201), response.text
    return response.json()


# =============================================================================
# Bookmarklet protocol
# =============================================================================


async def test_clip_creates_bookmark(client: AsyncClient, db_session: AsyncSession) -> None:
    """A first clip creates the bookmark and asks for a snapshot."""
    response = await client.post(
        "/bookmark",
        json={
            "_type": "addBookmarkOrComment",
            "url": "https://example.com/post",
            "title": "A post",
            "comment": "worth reading",
        },
    )
    assert response.status_code == 201

    data = response.json()
    assert data["htmlWanted"] is True
    result = await db_session.execute(select(Bookmark).where(Bookmark.id == data["id"]))
    bookmark = result.scalar_one()
    assert bookmark.url == "https://example.com/post"
    assert bookmark.num_comments == 1


async def test_clip_existing_bookmark_adds_comment(client: AsyncClient, db_session: AsyncSession) -> None:
    """Clipping the same url and title again adds a comment (200)."""
    first = await _clip(client, "https://example.com/post", "A post", "one")

    response = await client.post(
        "/bookmark",
        json={
            "_type": "addBookmarkOrComment",
            "url": "https://example.com/post",
            "title": "A post",
            "comment": "line one\nline two",
            "quote": True,
        },
    )
    assert response.status_code == 200
    assert response.json()["id"] == first["id"]

    result = await db_session.execute(
        select(Comment.content)
        .where(Comment.bookmark_id == first["id"])
        .order_by(Comment.sibling_idx),
    )
    assert result.scalars().all() == ["one", "> line one\n> line two"]


async def test_clip_title_only(client: AsyncClient) -> None:
    """A clip without url is a title-only bookmark."""
    data = await _clip(client, "", "Just a thought")
    assert data["id"] > 0


async def test_clip_requires_url_or_title(client: AsyncClient) -> None:
    """A clip with neither url nor title is rejected."""
    response = await client.post(
        "/bookmark",
        json={"_type": "addBookmarkOrComment", "url": "", "title": "", "comment": "orphan"},
    )
    assert response.status_code == 400


@pytest.mark.parametrize(
    "payload",
    [
        {"url": "https://example.com"},
        {"_type": "deleteEverything"},
        ["not", "an", "object"],
    ],
)
async def test_post_bookmark_unknown_type(client: AsyncClient, payload: object) -> None:
    """A body without a known _type is a 400."""
    response = await client.post("/bookmark", json=payload)
    assert response.status_code == 400
    assert "_type" in response.json()["detail"]


async def test_add_html_stores_snapshot(
    client: AsyncClient,
    db_session: AsyncSession,
    mock_mirror_media: AsyncMock,
) -> None:
    """A snapshot is stored with rewritten media, and mirroring is scheduled."""
    clip = await _clip(client, "https://example.com/post", "A post")

    response = await client.post(
        "/bookmark",
        json={
            "_type": "addHtml",
            "id": clip["id"],
            "html": '<html><body><img src="/cat.png"></body></html>',
        },
    )
    assert response.status_code == 201

    data = response.json()
    assert data["bookmark_id"] == clip["id"]
    assert data["num_media"] == 1
    backup = (await db_session.execute(select(Backup).where(Backup.id == data["id"]))).scalar_one()
    assert '<img src="/cat.png">' in backup.original
    assert "/media/" in backup.content

    mock_mirror_media.assert_awaited_once()
    _, bookmark_id, urls = mock_mirror_media.call_args.args
    assert bookmark_id == clip["id"]
    assert urls == ["https://example.com/cat.png"]


async def test_add_html_without_media_schedules_nothing(
    client: AsyncClient,
    mock_mirror_media: AsyncMock,
) -> None:
    """A snapshot without resources does not start a mirroring task."""
    clip = await _clip(client, "https://example.com/plain", "Plain")

    response = await client.post(
        "/bookmark",
        json={"_type": "addHtml", "id": clip["id"], "html": "<p>text only</p>"},
    )
    assert response.status_code == 201
    assert response.json()["num_media"] == 0
    mock_mirror_media.assert_not_awaited()


async def test_clip_after_snapshot_does_not_want_html(client: AsyncClient) -> None:
    """A fresh snapshot means the next clip does not ask for another one."""
    clip = await _clip(client, "https://example.com/post", "A post")
    await client.post(
        "/bookmark",
        json={"_type": "addHtml", "id": clip["id"], "html": "<p>snapshot</p>"},
    )

    again = await _clip(client, "https://example.com/post", "A post", "again")
    assert again["htmlWanted"] is False


async def test_add_html_unknown_bookmark(client: AsyncClient) -> None:
    """A snapshot of a missing bookmark is a 404."""
    response = await client.post(
        "/bookmark",
        json={"_type": "addHtml", "id": 99999, "html": "<p>x</p>"},
    )
    assert response.status_code == 404


async def test_add_html_invalid_body(client: AsyncClient) -> None:
    """An addHtml body without html fails validation."""
    response = await client.post("/bookmark", json={"_type": "addHtml", "id": 1})
    assert response.status_code == 422


# =============================================================================
# Bookmark resource
# =============================================================================


async def test_get_bookmark_page(client: AsyncClient) -> None:
    """A bookmark page embeds its cached render."""
    clip = await _clip(client, "https://example.com/post", "A <post>", "hello")

    response = await client.get(f"/bookmark/{clip['id']}")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert f'id="bookmark-{clip["id"]}"' in response.text
    assert "A &lt;post&gt;" in response.text
    assert "hello" in response.text


async def test_get_bookmark_not_found(client: AsyncClient) -> None:
    """A missing bookmark is a 404."""
    response = await client.get("/bookmark/99999")
    assert response.status_code == 404


async def test_update_bookmark(client: AsyncClient) -> None:
    """Editing the title is reflected in the bookmark page."""
    clip = await _clip(client, "https://example.com/post", "Old title")

    response = await client.patch(f"/bookmark/{clip['id']}", json={"title": "New title"})
    assert response.status_code == 200
    assert response.json()["title"] == "New title"
    assert response.json()["url"] == "https://example.com/post"

    page = await client.get(f"/bookmark/{clip['id']}")
    assert "New title" in page.text
    assert "Old title" not in page.text


async def test_update_bookmark_duplicate(client: AsyncClient) -> None:
    """Editing into an existing (url, title) pair is a conflict."""
    await _clip(client, "https://example.com/a", "A")
    clip = await _clip(client, "https://example.com/b", "B")

    response = await client.patch(
        f"/bookmark/{clip['id']}",
        json={"url": "https://example.com/a", "title": "A"},
    )
    assert response.status_code == 409


async def test_delete_bookmark(client: AsyncClient) -> None:
    """A deleted bookmark is gone."""
    clip = await _clip(client, "https://example.com/post", "A post", "bye")

    response = await client.delete(f"/bookmark/{clip['id']}")
    assert response.status_code == 204

    assert (await client.get(f"/bookmark/{clip['id']}")).status_code == 404
    assert (await client.delete(f"/bookmark/{clip['id']}")).status_code == 404


async def test_add_comment(client: AsyncClient) -> None:
    """Comments get increasing sibling indices."""
    clip = await _clip(client, "https://example.com/post", "A post", "first")

    response = await client.post(f"/bookmark/{clip['id']}/comment", json={"content": "second"})
    assert response.status_code == 201
    data = response.json()
    assert data["sibling_idx"] == 2
    assert data["content"] == "second"
    assert data["bookmark_id"] == clip["id"]


async def test_add_comment_unknown_bookmark(client: AsyncClient) -> None:
    """Commenting on a missing bookmark is a 404."""
    response = await client.post("/bookmark/99999/comment", json={"content": "x"})
    assert response.status_code == 404


async def test_edit_comment(client: AsyncClient) -> None:
    """Editing a comment shows up in the bookmark page."""
    clip = await _clip(client, "https://example.com/post", "A post", "first")
    added = await client.post(f"/bookmark/{clip['id']}/comment", json={"content": "typo"})

    response = await client.put(f"/comment/{added.json()['id']}", json={"content": "fixed"})
    assert response.status_code == 200
    assert response.json()["content"] == "fixed"
    assert response.json()["sibling_idx"] == 2

    page = await client.get(f"/bookmark/{clip['id']}")
    assert "fixed" in page.text
    assert "typo" not in page.text


async def test_edit_comment_not_found(client: AsyncClient) -> None:
    """Editing a missing comment is a 404."""
    response = await client.put("/comment/99999", json={"content": "x"})
    assert response.status_code == 404


async def test_merge_bookmarks(client: AsyncClient) -> None:
    """Merging moves the comments and deletes the source bookmark."""
    source = await _clip(client, "https://example.com/old", "Old", "from old")
    target = await _clip(client, "https://example.com/new", "New", "from new")

    response = await client.post(f"/bookmark/{source['id']}/merge", json={"intoId": target["id"]})
    assert response.status_code == 200
    assert response.json()["id"] == target["id"]
    assert response.json()["num_comments"] == 2

    assert (await client.get(f"/bookmark/{source['id']}")).status_code == 404
    page = await client.get(f"/bookmark/{target['id']}")
    assert "from old" in page.text
    assert "from new" in page.text


async def test_merge_into_itself(client: AsyncClient) -> None:
    """A bookmark cannot be merged into itself."""
    clip = await _clip(client, "https://example.com/post", "A post")

    response = await client.post(f"/bookmark/{clip['id']}/merge", json={"intoId": clip["id"]})
    assert response.status_code == 400


async def test_merge_unknown_target(client: AsyncClient) -> None:
    """Merging into a missing bookmark is a 404."""
    clip = await _clip(client, "https://example.com/post", "A post")

    response = await client.post(f"/bookmark/{clip['id']}/merge", json={"intoId": 99999})
    assert response.status_code == 404
