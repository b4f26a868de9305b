"""Token model for bearer credentials used by scripted clients."""
from sqlalchemy import ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class Token(Base):
    """
    Bearer token for programmatic access (bookmarklet, scripts).

    Tokens are stored hashed - plaintext is only shown once at creation.
    """

    __tablename__ = "token"

    token: Mapped[str] = mapped_column(
        Text,
        primary_key=True,
        comment="SHA-256 hash of the token",
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[int] = mapped_column(
        "userId",
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
    )
