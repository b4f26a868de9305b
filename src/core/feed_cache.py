"""In-memory cache of each user's fully rendered feeds."""
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

FeedComputer = Callable[[int], Awaitable[str]]


class FeedCache:
    """
    Per-user cache of the bookmark feed and the comment feed.

    Each feed is one precomputed HTML string. Any mutation touching a user's
    bookmarks or comments invalidates both of that user's entries and the next
    read recomputes the whole string.

    A generation counter per user keeps a computation that started before an
    invalidation from storing its (stale) result afterwards.
    """

    def __init__(self) -> None:
        """Initialize empty caches."""
        self._feeds: dict[int, str] = {}
        self._comment_feeds: dict[int, str] = {}
        self._generations: dict[int, int] = {}

    async def _get_or_compute(
        self,
        entries: dict[int, str],
        user_id: int,
        compute: FeedComputer,
        kind: str,
    ) -> str:
        cached = entries.get(user_id)
        if cached is not None:
            logger.debug("feed_cache_hit kind=%s user_id=%s", kind, user_id)
            return cached
        logger.debug("feed_cache_miss kind=%s user_id=%s", kind, user_id)
        generation = self._generations.get(user_id, 0)
        value = await compute(user_id)
        if self._generations.get(user_id, 0) == generation:
            entries[user_id] = value
        return value

    async def get_feed(self, user_id: int, compute: FeedComputer) -> str:
        """Get the user's bookmark feed, computing it if absent."""
        return await self._get_or_compute(self._feeds, user_id, compute, "bookmarks")

    async def get_comment_feed(self, user_id: int, compute: FeedComputer) -> str:
        """Get the user's comment feed, computing it if absent."""
        return await self._get_or_compute(self._comment_feeds, user_id, compute, "comments")

    def invalidate(self, user_id: int) -> None:
        """Drop both cached feeds of a user."""
        self._generations[user_id] = self._generations.get(user_id, 0) + 1
        self._feeds.pop(user_id, None)
        self._comment_feeds.pop(user_id, None)
        logger.debug("feed_cache_invalidate user_id=%s", user_id)

    def clear(self) -> None:
        """Drop every cached feed."""
        for user_id in list(self._generations):
            self.invalidate(user_id)
        self._feeds.clear()
        self._comment_feeds.clear()


# Global feed cache instance (set during app startup)
_feed_cache: FeedCache | None = None


def get_feed_cache() -> FeedCache | None:
    """Get the global feed cache instance."""
    return _feed_cache


def set_feed_cache(cache: FeedCache | None) -> None:
    """Set the global feed cache instance."""
    global _feed_cache  # noqa: PLW0603
    _feed_cache = cache


def invalidate_user_feeds(user_id: int) -> None:
    """Invalidate a user's feeds if the cache is running."""
    cache = get_feed_cache()
    if cache is not None:
        cache.invalidate(user_id)
