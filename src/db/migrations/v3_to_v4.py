"""
v3 -> v4: sibling indices, comment counts and two-fragment comment renders.

Every comment gets its 1-based position in its bookmark's thread (oldest first
by createdTime, then id), every bookmark its comment count, and all renders are
rebuilt with the current render functions.
"""
import logging
from collections import defaultdict

from sqlalchemy.engine import RowMapping

from db.migrations.engine import MigrationContext, MigrationError, MigrationStep
from services.render_service import CoreBookmark, CoreComment, render_bookmark, render_comment

logger = logging.getLogger(__name__)


async def migrate_bookmarks_and_comments(ctx: MigrationContext) -> None:
    """Fill `bookmark` and `comment`, re-rendering everything."""
    bookmarks = await ctx.fetch_all(
        "SELECT id, userId, url, title, createdTime, modifiedTime FROM bookmark ORDER BY id",
    )
    comments = await ctx.fetch_all(
        "SELECT id, bookmarkId, content, createdTime, modifiedTime FROM comment "
        "ORDER BY bookmarkId, createdTime, id",
    )

    threads: dict[int, list[RowMapping]] = defaultdict(list)
    for comment in comments:
        threads[comment["bookmarkId"]].append(comment)
    orphans = set(threads) - {b["id"] for b in bookmarks}
    if orphans:
        raise MigrationError(
            f"Comments reference missing bookmarks {sorted(orphans)}; fix the source first",
        )

    bookmark_rows = []
    comment_rows = []
    for bookmark in bookmarks:
        thread = threads.get(bookmark["id"], [])
        core = CoreBookmark(
            id=bookmark["id"],
            url=bookmark["url"],
            title=bookmark["title"],
            num_comments=len(thread),
        )
        inners = []
        for idx, comment in enumerate(thread, start=1):
            rendered = render_comment(
                CoreComment(
                    id=comment["id"],
                    content=comment["content"],
                    created_time=comment["createdTime"],
                    modified_time=comment["modifiedTime"],
                    sibling_idx=idx,
                ),
                core,
            )
            inners.append(rendered.inner)
            comment_rows.append({
                "id": comment["id"],
                "bookmarkId": bookmark["id"],
                "siblingIdx": idx,
                "content": comment["content"],
                "createdTime": comment["createdTime"],
                "modifiedTime": comment["modifiedTime"],
                "innerRender": rendered.inner,
                "fullRender": rendered.full,
                "renderedTime": ctx.now,
            })
        bookmark_rows.append({
            **bookmark,
            "numComments": len(thread),
            "render": render_bookmark(core, inners[::-1]),
            "renderedTime": ctx.now,
        })

    await ctx.insert_rows("bookmark", bookmark_rows)
    await ctx.insert_rows("comment", comment_rows)
    logger.info("Re-rendered %d bookmarks and %d comments", len(bookmark_rows), len(comment_rows))


STEP = MigrationStep(
    from_version=3,
    to_version=4,
    handlers={"bookmark": migrate_bookmarks_and_comments},
    populated_elsewhere=frozenset({"comment"}),
)
