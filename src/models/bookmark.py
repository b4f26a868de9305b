"""Bookmark model for storing user bookmarks."""
from sqlalchemy import ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin


class Bookmark(Base, TimestampMixin):
    """
    Bookmark model - a (url, title) pair owned by a user.

    `render` caches the bookmark's HTML: the single-line header, then the inner
    fragments of its comments newest-first, then the footer.
    """

    __tablename__ = "bookmark"
    __table_args__ = (UniqueConstraint("url", "title", "userId"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        "userId",
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    num_comments: Mapped[int] = mapped_column("numComments", nullable=False)
    render: Mapped[str] = mapped_column(Text, nullable=False)
    rendered_time: Mapped[float] = mapped_column("renderedTime", nullable=False)
