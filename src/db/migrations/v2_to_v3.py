"""
v2 -> v3: content-addressed media and rewritten snapshots.

v2 stored every mirrored resource inline in `media`, keyed by its remote URL
(`filename`) and not linked to any bookmark. v3 splits the bytes into the
deduplicated `blob` table, renames `filename` to `path` and links each media row
to the bookmark whose snapshot references the URL. Snapshots keep their
untouched HTML in `original` while `content` points at the local mirror.

Media rows no snapshot references cannot be linked to a bookmark and are dropped.
"""
import hashlib
import logging

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from db.migrations.engine import MigrationContext, MigrationStep
from services.media_mirror import extract_and_rewrite
from services.utils import is_unique_violation

logger = logging.getLogger(__name__)


async def _insert_ignoring_duplicate(
    ctx: MigrationContext,
    table: str,
    row: dict,
    constraint: str,
) -> bool:
    """Insert one row; a unique violation on `constraint` is a no-op. Returns True if inserted."""
    try:
        async with ctx.dest.begin_nested():
            await ctx.insert_rows(table, [row])
    except IntegrityError as e:
        if not is_unique_violation(e, constraint):
            raise
        return False
    return True


async def migrate_backups_and_media(ctx: MigrationContext) -> None:
    """Fill `backup`, `blob` and `media` from v2's backups and inline media."""
    backups = await ctx.fetch_all(
        "SELECT backup.id, backup.bookmarkId, backup.content, backup.createdTime, "
        "bookmark.url AS pageUrl "
        "FROM backup LEFT JOIN bookmark ON bookmark.id = backup.bookmarkId "
        "ORDER BY backup.id",
    )
    used_media: set[int] = set()
    num_blobs = 0
    num_media = 0

    for backup in backups:
        snapshot = extract_and_rewrite(
            backup["content"], backup["pageUrl"] or "", backup["bookmarkId"],
        )
        await ctx.insert_rows(
            "backup",
            [{
                "id": backup["id"],
                "bookmarkId": backup["bookmarkId"],
                "content": snapshot.html,
                "original": backup["content"],
                "createdTime": backup["createdTime"],
            }],
        )

        for url in snapshot.urls:
            media_rows = await ctx.fetch_all(
                "SELECT id, mime, content, createdTime FROM media "
                "WHERE filename = :url ORDER BY createdTime, id",
                {"url": url},
            )
            for media in media_rows:
                used_media.add(media["id"])
                content = bytes(media["content"])
                sha256 = hashlib.sha256(content).hexdigest()
                blob = {
                    "content": content,
                    "mime": media["mime"],
                    "createdTime": media["createdTime"],
                    "numBytes": len(content),
                    "sha256": sha256,
                }
                if await _insert_ignoring_duplicate(ctx, "blob", blob, "blob.sha256"):
                    num_blobs += 1
                link = {
                    "path": url,
                    "bookmarkId": backup["bookmarkId"],
                    "sha256": sha256,
                    "createdTime": media["createdTime"],
                }
                if await _insert_ignoring_duplicate(ctx, "media", link, "media.sha256"):
                    num_media += 1

    result = await ctx.source.execute(text("SELECT count(*) FROM media"))
    unreferenced = result.scalar_one() - len(used_media)
    if unreferenced:
        logger.warning("Dropping %d media rows no snapshot references", unreferenced)
    logger.info(
        "Migrated %d backups into %d blobs and %d media links",
        len(backups), num_blobs, num_media,
    )


STEP = MigrationStep(
    from_version=2,
    to_version=3,
    handlers={"backup": migrate_backups_and_media},
    populated_elsewhere=frozenset({"blob", "media"}),
)
