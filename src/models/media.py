"""Media and Blob models for mirrored page resources."""
from sqlalchemy import ForeignKey, LargeBinary, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, CreatedTimeMixin


class Blob(Base, CreatedTimeMixin):
    """
    Content-addressed bytes, keyed by sha256.

    Blobs are shared across bookmarks and paths and are never deleted automatically.
    """

    __tablename__ = "blob"

    id: Mapped[int] = mapped_column(primary_key=True)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    mime: Mapped[str] = mapped_column(Text, nullable=False)
    num_bytes: Mapped[int] = mapped_column("numBytes", nullable=False)
    sha256: Mapped[str] = mapped_column(Text, unique=True, nullable=False)


class Media(Base, CreatedTimeMixin):
    """Maps a (bookmark, remote URL) pair to the sha256 of a Blob."""

    __tablename__ = "media"
    __table_args__ = (UniqueConstraint("sha256", "path", "bookmarkId"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    bookmark_id: Mapped[int] = mapped_column(
        "bookmarkId",
        ForeignKey("bookmark.id", ondelete="CASCADE"),
        nullable=False,
    )
    sha256: Mapped[str] = mapped_column(Text, nullable=False)
