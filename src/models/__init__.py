"""SQLAlchemy models."""
from models.backup import Backup
from models.base import Base, CreatedTimeMixin, TimestampMixin
from models.bookmark import Bookmark
from models.comment import Comment
from models.db_state import ChangeLogEntry, DbState
from models.media import Blob, Media
from models.token import Token
from models.user import User

__all__ = [
    "Backup",
    "Base",
    "Blob",
    "Bookmark",
    "ChangeLogEntry",
    "Comment",
    "CreatedTimeMixin",
    "DbState",
    "Media",
    "TimestampMixin",
    "Token",
    "User",
]
