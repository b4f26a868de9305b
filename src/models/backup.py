"""Backup model for page snapshots."""
from sqlalchemy import ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, CreatedTimeMixin


class Backup(Base, CreatedTimeMixin):
    """A bookmarked page's HTML: `original` as clipped, `content` rewritten to the local mirror."""

    __tablename__ = "backup"

    id: Mapped[int] = mapped_column(primary_key=True)
    bookmark_id: Mapped[int] = mapped_column(
        "bookmarkId",
        ForeignKey("bookmark.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    original: Mapped[str] = mapped_column(Text, nullable=False)
