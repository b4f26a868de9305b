"""Pydantic schemas for bookmark and comment endpoints."""
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

BOOKMARK_POST_TYPES = ("addBookmarkOrComment", "addHtml")


class AddBookmarkOrComment(BaseModel):
    """
    Bookmarklet clip: a new bookmark, or a new comment on an existing one.

    `comment` is the text selected on the page. With `quote`, each of its lines
    is prefixed with '> '.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["addBookmarkOrComment"] = Field(alias="_type")
    url: str = ""
    title: str = ""
    comment: str = ""
    quote: bool = False


class AddHtml(BaseModel):
    """Bookmarklet follow-up carrying the page's HTML when the server asked for it."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["addHtml"] = Field(alias="_type")
    id: int
    html: str = Field(..., min_length=1)


BookmarkPost = Annotated[AddBookmarkOrComment | AddHtml, Field(discriminator="type")]

bookmark_post_adapter: TypeAdapter[AddBookmarkOrComment | AddHtml] = TypeAdapter(BookmarkPost)


class BookmarkPostResponse(BaseModel):
    """Reply to a clip. `htmlWanted` asks the bookmarklet to post a snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    html_wanted: bool = Field(alias="htmlWanted")


class BookmarkUpdate(BaseModel):
    """Schema for updating an existing bookmark."""

    url: str | None = None
    title: str | None = None


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses (the cached render is served separately)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    title: str
    num_comments: int
    created_time: float
    modified_time: float


class MergeRequest(BaseModel):
    """Merge the path bookmark into `intoId`."""

    model_config = ConfigDict(populate_by_name=True)

    into_id: int = Field(alias="intoId")


class CommentCreate(BaseModel):
    """Schema for adding a comment to a bookmark."""

    content: str = ""


class CommentUpdate(BaseModel):
    """Schema for replacing a comment's content."""

    content: str


class CommentResponse(BaseModel):
    """Schema for comment responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    bookmark_id: int
    sibling_idx: int
    content: str
    created_time: float
    modified_time: float


class BackupResponse(BaseModel):
    """Reply to a stored snapshot."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    bookmark_id: int
    created_time: float
    num_media: int = Field(
        default=0,
        description="Number of referenced resources queued for mirroring",
    )
