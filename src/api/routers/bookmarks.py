"""Bookmark endpoints, including the bookmarklet protocol."""
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.dependencies import get_async_session, get_current_user, get_session_factory
from api.pages import render_page
from models.user import User
from schemas.bookmark import (
    BOOKMARK_POST_TYPES,
    AddBookmarkOrComment,
    BackupResponse,
    BookmarkPostResponse,
    BookmarkResponse,
    BookmarkUpdate,
    CommentCreate,
    CommentResponse,
    MergeRequest,
    bookmark_post_adapter,
)
from services import backup_service, bookmark_service, comment_service, media_mirror
from services.exceptions import DuplicateBookmarkError, InvalidStateError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmark", tags=["bookmarks"])


async def mirror_media_task(
    session_factory: async_sessionmaker[AsyncSession],
    bookmark_id: int,
    urls: list[str],
) -> None:
    """Background task: mirror a snapshot's media, logging (not raising) failures."""
    try:
        await media_mirror.mirror_media(session_factory, bookmark_id, urls)
    except Exception:
        logger.exception("Mirroring media for bookmark %s failed", bookmark_id)


@router.post("", response_model=None)
async def post_bookmark(
    response: Response,
    background_tasks: BackgroundTasks,
    payload: Any = Body(...),  # noqa: ANN401
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BookmarkPostResponse | BackupResponse:
    """
    Bookmarklet endpoint.

    - **addBookmarkOrComment**: `{_type, url, title, comment, quote}`. Creates the
      bookmark (201) or adds a comment to the existing one (200). Replies
      `{id, htmlWanted}`.
    - **addHtml**: `{_type, id, html}`. Stores a snapshot of bookmark `id` and
      mirrors its media in the background (201).
    """
    kind = payload.get("_type") if isinstance(payload, dict) else None
    if kind not in BOOKMARK_POST_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Expected a JSON object with _type in {list(BOOKMARK_POST_TYPES)}",
        )
    try:
        data = bookmark_post_adapter.validate_python(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e

    if isinstance(data, AddBookmarkOrComment):
        if not data.url and not data.title:
            raise HTTPException(status_code=400, detail="A url or a title is required")
        clip = await bookmark_service.add_bookmark_or_comment(
            db, current_user.id, data.url, data.title, data.comment, data.quote,
        )
        response.status_code = 201 if clip.created else 200
        return BookmarkPostResponse(id=clip.bookmark.id, html_wanted=clip.html_wanted)

    stored = await backup_service.add_backup(db, current_user.id, data.id, data.html)
    if stored is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    backup, urls = stored
    # The snapshot must be durable before the mirroring transactions start
    await db.commit()
    if urls:
        background_tasks.add_task(mirror_media_task, session_factory, backup.bookmark_id, urls)
    response.status_code = 201
    return BackupResponse(
        id=backup.id,
        bookmark_id=backup.bookmark_id,
        created_time=backup.created_time,
        num_media=len(urls),
    )


@router.get("/{bookmark_id}", response_class=HTMLResponse)
async def get_bookmark(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> HTMLResponse:
    """Get a single bookmark's cached render as a page."""
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return HTMLResponse(render_page(bookmark.title or bookmark.url, bookmark.render))


@router.patch("/{bookmark_id}", response_model=BookmarkResponse)
async def update_bookmark(
    bookmark_id: int,
    data: BookmarkUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Edit a bookmark's url and/or title."""
    try:
        bookmark = await bookmark_service.update_bookmark(
            db, current_user.id, bookmark_id, data,
        )
    except DuplicateBookmarkError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> None:
    """Delete a bookmark with its comments, snapshots and media."""
    deleted = await bookmark_service.delete_bookmark(db, current_user.id, bookmark_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Bookmark not found")


@router.post("/{bookmark_id}/comment", response_model=CommentResponse, status_code=201)
async def add_comment(
    bookmark_id: int,
    data: CommentCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> CommentResponse:
    """Add a comment to a bookmark."""
    comment = await comment_service.add_comment(db, current_user.id, bookmark_id, data.content)
    if comment is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return CommentResponse.model_validate(comment)


@router.post("/{bookmark_id}/merge", response_model=BookmarkResponse)
async def merge_bookmark(
    bookmark_id: int,
    data: MergeRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Move this bookmark's comments into bookmark `intoId` and delete this one."""
    try:
        bookmark = await bookmark_service.merge_bookmarks(
            db, current_user.id, bookmark_id, data.into_id,
        )
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)
