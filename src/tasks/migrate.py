"""
Offline schema migration.

The server never migrates on boot: it refuses to start against a database at
another schema version. Stop the server, run this task, then point
DATABASE_URL at the new file.

Usage:
    python -m tasks.migrate data/bookmarks.db --to 5

Every step writes a new file next to the source (`bookmarks-v3.db`,
`bookmarks-v4.db`, ...). The source file is never modified.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from db.migrations.engine import MigrationError
from db.migrations.steps import migrate_to
from db.schema import CURRENT_SCHEMA_VERSION, SchemaVersionMismatchError

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Migrate a bookmarks database file.")
    parser.add_argument("source", type=Path, help="Database file to migrate")
    parser.add_argument(
        "--to",
        dest="target_version",
        type=int,
        default=CURRENT_SCHEMA_VERSION,
        help=f"Target schema version (default: {CURRENT_SCHEMA_VERSION})",
    )
    return parser.parse_args(argv)


async def run_migrate(source: Path, target_version: int) -> Path:
    """Migrate `source` to `target_version` and return the resulting file."""
    result = await migrate_to(source, target_version)
    logger.info("Database at v%d: %s", target_version, result)
    return result


def main(argv: list[str] | None = None) -> int:
    """Entry point for the migration task."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args(argv)
    try:
        asyncio.run(run_migrate(args.source, args.target_version))
    except (MigrationError, SchemaVersionMismatchError, FileNotFoundError, ValueError) as e:
        logger.error("Migration failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
