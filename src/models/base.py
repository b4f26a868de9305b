"""SQLAlchemy declarative base with common mixins."""
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class CreatedTimeMixin:
    """
    Mixin that adds the createdTime column.

    Timestamps are epoch milliseconds stored as SQLite floats. They are set by the
    service layer (never by a server default) so a single operation can stamp
    several rows with the same instant.
    """

    created_time: Mapped[float] = mapped_column("createdTime", nullable=False)


class TimestampMixin(CreatedTimeMixin):
    """Mixin that adds createdTime and modifiedTime columns."""

    modified_time: Mapped[float] = mapped_column("modifiedTime", nullable=False)
