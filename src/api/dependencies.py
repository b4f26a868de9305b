"""FastAPI dependencies for injection."""
from core.auth import get_current_user, get_optional_user
from core.config import get_settings
from core.feed_cache import get_feed_cache
from db.session import get_async_session, get_session_factory

__all__ = [
    "get_async_session",
    "get_current_user",
    "get_feed_cache",
    "get_optional_user",
    "get_session_factory",
    "get_settings",
]
