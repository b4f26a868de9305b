"""Comment endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_user
from models.user import User
from schemas.bookmark import CommentResponse, CommentUpdate
from services import comment_service

router = APIRouter(prefix="/comment", tags=["comments"])


@router.put("/{comment_id}", response_model=CommentResponse)
async def edit_comment(
    comment_id: int,
    data: CommentUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> CommentResponse:
    """Replace a comment's content."""
    comment = await comment_service.edit_comment(db, current_user.id, comment_id, data.content)
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    return CommentResponse.model_validate(comment)
