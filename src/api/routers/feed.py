"""Feed pages served from the per-user feed cache."""
from functools import partial

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_user, get_feed_cache, get_optional_user
from api.pages import WELCOME_BODY, render_page
from core.feed_cache import FeedCache
from models.user import User
from services import feed_service

router = APIRouter(tags=["feed"])


@router.get("/", response_class=HTMLResponse)
async def get_feed(
    current_user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_async_session),
    feed_cache: FeedCache | None = Depends(get_feed_cache),
) -> HTMLResponse:
    """All bookmarks, most recently modified first. Anonymous visitors get a welcome page."""
    if current_user is None:
        return HTMLResponse(render_page("Bookmarks", WELCOME_BODY))

    compute = partial(feed_service.build_feed, db)
    if feed_cache is None:
        body = await compute(current_user.id)
    else:
        body = await feed_cache.get_feed(current_user.id, compute)
    return HTMLResponse(render_page("Bookmarks", body))


@router.get("/comments", response_class=HTMLResponse)
async def get_comment_feed(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    feed_cache: FeedCache | None = Depends(get_feed_cache),
) -> HTMLResponse:
    """All comments, newest first, each wrapped in its bookmark's header."""
    compute = partial(feed_service.build_comment_feed, db)
    if feed_cache is None:
        body = await compute(current_user.id)
    else:
        body = await feed_cache.get_comment_feed(current_user.id, compute)
    return HTMLResponse(render_page("Comments", body))
