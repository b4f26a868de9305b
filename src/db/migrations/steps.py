"""Registry of migration steps and the chained migration to a target version."""
import logging
import re
from pathlib import Path

from db.migrations import v2_to_v3, v3_to_v4, v4_to_v5
from db.migrations.engine import MigrationStep, run_migration
from db.schema import CURRENT_SCHEMA_VERSION, SchemaVersionMismatchError, read_schema_version
from db.session import create_sqlite_engine, sqlite_url

logger = logging.getLogger(__name__)

STEPS: dict[int, MigrationStep] = {
    step.from_version: step for step in (v2_to_v3.STEP, v3_to_v4.STEP, v4_to_v5.STEP)
}

_VERSION_SUFFIX = re.compile(r"-v\d+$")


def versioned_path(source_path: Path, version: int) -> Path:
    """`<dir>/<stem>-v<N>.db` for a database file, replacing an existing `-v<M>` suffix."""
    stem = _VERSION_SUFFIX.sub("", source_path.stem)
    return source_path.with_name(f"{stem}-v{version}{source_path.suffix or '.db'}")


async def read_file_schema_version(path: str | Path) -> int | None:
    """Read the recorded schema version of a database file without modifying it."""
    engine = create_sqlite_engine(sqlite_url(path, read_only=True), read_only=True)
    try:
        async with engine.connect() as conn:
            return await read_schema_version(conn)
    finally:
        await engine.dispose()


async def migrate_to(
    source_path: str | Path,
    target_version: int = CURRENT_SCHEMA_VERSION,
    now: float | None = None,
) -> Path:
    """
    Chain migration steps from the source file's version up to `target_version`.

    Each step writes a new file next to the source (`bookmarks.db` becomes
    `bookmarks-v3.db`, `bookmarks-v4.db`, ...). Intermediate files are kept.

    Returns:
        Path of the file at `target_version` (the source itself if already there).

    Raises:
        SchemaVersionMismatchError: If the source has no recorded version.
        ValueError: If the source is newer than the target or no step exists.
    """
    source_path = Path(source_path)
    if not source_path.exists():
        raise FileNotFoundError(f"Source database not found: {source_path}")
    version = await read_file_schema_version(source_path)
    if version is None:
        raise SchemaVersionMismatchError(None, target_version)
    if version > target_version:
        raise ValueError(f"{source_path} is at v{version}, newer than the target v{target_version}")
    if version == target_version:
        logger.info("%s is already at v%d", source_path, version)
        return source_path

    path = source_path
    while version < target_version:
        step = STEPS.get(version)
        if step is None:
            raise ValueError(f"No migration step from schema v{version}")
        path = await run_migration(path, versioned_path(source_path, step.to_version), step, now)
        version = step.to_version
    return path
