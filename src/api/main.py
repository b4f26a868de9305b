"""FastAPI application entry point."""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers import backups, bookmarks, comments, feed, health, tokens
from core.config import get_settings
from core.feed_cache import FeedCache, set_feed_cache
from db.session import engine, ensure_database_dir, init_database
from services.exceptions import RenderIntegrityError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - startup and shutdown."""
    app_settings = get_settings()

    # Startup: refuse to serve a database file at another schema version
    ensure_database_dir(app_settings.database_url)
    await init_database(engine)

    # Startup: Initialize feed cache
    set_feed_cache(FeedCache())

    yield

    # Shutdown: Drop cached feeds and close database connections
    set_feed_cache(None)
    await engine.dispose()


app_settings = get_settings()

app = FastAPI(
    title="Bookmarks API",
    description="Personal bookmarks with comment threads, page snapshots and cached feeds.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RenderIntegrityError)
async def render_integrity_exception_handler(
    _request: Request, exc: RenderIntegrityError,
) -> JSONResponse:
    """Cached render corruption is a server bug: log it, show a generic error."""
    logger.error("Render integrity error: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(feed.router)
app.include_router(bookmarks.router)
app.include_router(comments.router)
app.include_router(backups.router)
app.include_router(tokens.router)
