"""User model for storing authenticated users."""
from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class User(Base):
    """User model - one row per federated (GitHub) identity."""

    __tablename__ = "user"

    id: Mapped[int] = mapped_column(primary_key=True)
    display_name: Mapped[str] = mapped_column("displayName", Text, nullable=False)
    github_id: Mapped[int] = mapped_column("githubId", unique=True, nullable=False)
