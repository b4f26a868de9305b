"""Bookkeeping tables: the schema version row and the change log."""
from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from db.schema import CHANGE_LOG_TABLE, STATE_TABLE
from models.base import Base


class DbState(Base):
    """Single-row table recording the schema version of the database file."""

    __tablename__ = STATE_TABLE

    schema_version: Mapped[int] = mapped_column(
        "schemaVersion", primary_key=True, nullable=False,
    )


class ChangeLogEntry(Base):
    """
    Row written by the change-log triggers.

    Mapped for tests and manual recovery scripts only, the application never reads it.
    """

    __tablename__ = CHANGE_LOG_TABLE

    id: Mapped[int] = mapped_column(primary_key=True)
    created: Mapped[float] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    table_name: Mapped[str] = mapped_column(Text, nullable=False)
    obj_id: Mapped[int | None] = mapped_column(nullable=True)
    oldvals: Mapped[str | None] = mapped_column(Text, nullable=True)
