"""Pydantic schemas for bearer token endpoints."""
from pydantic import BaseModel, ConfigDict, Field


class TokenCreate(BaseModel):
    """Schema for creating a new bearer token."""

    description: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="User-provided label for the token, e.g., 'bookmarklet', 'laptop'",
    )


class TokenCreateResponse(BaseModel):
    """
    Response when creating a new token.

    IMPORTANT: The `token` field contains the plaintext token and is only shown
    once at creation time. It cannot be retrieved again.
    """

    model_config = ConfigDict(from_attributes=True)

    description: str
    token: str = Field(
        ...,
        description="The plaintext token. Store this securely - it won't be shown again.",
    )


class TokensDeletedResponse(BaseModel):
    """Number of tokens revoked."""

    deleted: int
