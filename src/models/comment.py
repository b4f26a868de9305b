"""Comment model for the annotations attached to a bookmark."""
from sqlalchemy import ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin


class Comment(Base, TimestampMixin):
    """
    Comment model.

    `sibling_idx` is the 1-based creation-order position among the bookmark's
    comments. `inner_render` is the comment body alone, `full_render` wraps it in
    the bookmark header plus sibling navigation.
    """

    __tablename__ = "comment"
    __table_args__ = (UniqueConstraint("bookmarkId", "siblingIdx"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    bookmark_id: Mapped[int] = mapped_column(
        "bookmarkId",
        ForeignKey("bookmark.id", ondelete="CASCADE"),
        nullable=False,
    )
    sibling_idx: Mapped[int] = mapped_column("siblingIdx", nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    inner_render: Mapped[str] = mapped_column("innerRender", Text, nullable=False)
    full_render: Mapped[str] = mapped_column("fullRender", Text, nullable=False)
    rendered_time: Mapped[float] = mapped_column("renderedTime", nullable=False)
