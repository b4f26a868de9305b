"""Snapshot and mirrored media endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_user
from models.user import User
from services import backup_service, media_service

router = APIRouter(tags=["backups"])


@router.get("/backup/{bookmark_id}", response_class=HTMLResponse)
async def get_backup(
    bookmark_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> HTMLResponse:
    """The most recent snapshot of a bookmark, pointing at the local media mirror."""
    backup = await backup_service.get_latest_backup(db, current_user.id, bookmark_id)
    if backup is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return HTMLResponse(backup.content)


@router.get("/media/{bookmark_id}/{path:path}")
async def get_media(
    bookmark_id: int,
    path: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> Response:
    """
    Mirrored bytes of a snapshot resource.

    `path` is the resource's original URL, percent-encoded as a single path segment.
    """
    blob = await media_service.get_media_blob(db, current_user.id, bookmark_id, path)
    if blob is None:
        raise HTTPException(status_code=404, detail="Media not found")
    return Response(content=blob.content, media_type=blob.mime)
