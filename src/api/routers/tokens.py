"""Bearer token management endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_user
from models.user import User
from schemas.token import TokenCreate, TokenCreateResponse, TokensDeletedResponse
from services import token_service

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.post("", response_model=TokenCreateResponse, status_code=201)
async def create_token(
    data: TokenCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> TokenCreateResponse:
    """
    Create a new bearer token.

    IMPORTANT: The plaintext token is only returned once. Store it securely.
    """
    token, plaintext = await token_service.create_token(db, current_user.id, data.description)
    return TokenCreateResponse(description=token.description, token=plaintext)


@router.delete("", response_model=TokensDeletedResponse)
async def delete_tokens(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> TokensDeletedResponse:
    """Revoke every bearer token of the current user."""
    deleted = await token_service.delete_tokens(db, current_user.id)
    return TokensDeletedResponse(deleted=deleted)
