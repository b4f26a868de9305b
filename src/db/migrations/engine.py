"""
Offline schema migration engine.

A migration step reads a database file at schema vN and writes a brand-new file
at vN+1. The source is opened read-only and never mutated. The destination is
built in a randomized temporary sibling file and only renamed into place once
every row has been copied, the change-log triggers are installed and the
foreign-key check passes, so a failed run leaves nothing behind.

Destination tables are filled in one of three ways:

- by an explicit handler registered for that table,
- by another table's handler (listed in `populated_elsewhere`),
- by the generic copy, which selects every column of the same-named source table
  and re-inserts by name. Any column difference is an error, never a guess.
"""
import logging
import os
import secrets
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from db.change_log import install_change_log_triggers
from db.schema import (
    CHANGE_LOG_TABLE,
    STATE_TABLE,
    apply_schema,
    get_schema,
    list_tables,
    require_schema_version,
    table_columns,
)
from db.session import create_sqlite_engine, sqlite_url
from services.utils import now_ms

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 500
_SQLITE_SIDECARS = ("-wal", "-shm", "-journal")


class MigrationError(Exception):
    """Raised when a migration cannot produce a consistent destination database."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DestinationExistsError(MigrationError):
    """Raised when the destination file of a migration already exists."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Destination database already exists: {path}")


class DestinationNotEmptyError(MigrationError):
    """Raised when the freshly created destination database already has tables."""

    def __init__(self, path: Path, tables: Sequence[str]) -> None:
        self.path = path
        self.tables = list(tables)
        super().__init__(f"Destination database {path} is not empty: {', '.join(tables)}")


class UnmappedSchemaChangeError(MigrationError):
    """Raised when a table changed between versions but the step has no handler for it."""

    def __init__(self, table: str, detail: str) -> None:
        self.table = table
        super().__init__(f"Unmapped schema change in table '{table}': {detail}")


@dataclass
class MigrationContext:
    """Connections and clock handed to every table handler."""

    source: AsyncConnection
    dest: AsyncConnection
    now: float

    async def fetch_all(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
    ) -> list[RowMapping]:
        """Run a query against the source database."""
        result = await self.source.execute(text(sql), dict(params or {}))
        return list(result.mappings().all())

    async def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Insert rows into a destination table, by column name."""
        await insert_rows(self.dest, table, rows)


Handler = Callable[[MigrationContext], Awaitable[None]]


@dataclass(frozen=True)
class MigrationStep:
    """
    One vN -> vN+1 transformation.

    Attributes:
        from_version: Schema version the source file must be at.
        to_version: Schema version of the produced file.
        handlers: Destination table -> async handler filling it.
        populated_elsewhere: Destination tables a handler of another table fills.
        consumes: Source tables without a destination counterpart that a handler reads.
    """

    from_version: int
    to_version: int
    handlers: Mapping[str, Handler] = field(default_factory=dict)
    populated_elsewhere: frozenset[str] = frozenset()
    consumes: frozenset[str] = frozenset()


@dataclass
class DerivedColumnMismatch:
    """A bookmark whose stored numComments or sibling indices disagree with its comments."""

    bookmark_id: int
    column: str
    expected: str
    found: str


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


async def insert_rows(
    conn: AsyncConnection,
    table: str,
    rows: Sequence[Mapping[str, Any]],
) -> None:
    """Insert rows (all with the same keys) into a table in batches."""
    if not rows:
        return
    columns = list(rows[0])
    column_list = ", ".join(_quote(c) for c in columns)
    placeholders = ", ".join(f":{c}" for c in columns)
    statement = text(f"INSERT INTO {_quote(table)} ({column_list}) VALUES ({placeholders})")
    for start in range(0, len(rows), INSERT_BATCH_SIZE):
        await conn.execute(statement, [dict(r) for r in rows[start:start + INSERT_BATCH_SIZE]])


async def _source_tables(conn: AsyncConnection) -> list[str]:
    return [t for t in await list_tables(conn) if t != STATE_TABLE]


async def check_step_mapping(source: AsyncConnection, step: MigrationStep) -> None:
    """
    Reject a step that would silently lose or invent data.

    Raises:
        UnmappedSchemaChangeError: If a source table has no destination counterpart
            and no handler consumes it, or if a generically copied table's columns
            differ between the two versions.
    """
    dest_schema = get_schema(step.to_version)
    source_tables = await _source_tables(source)

    for table in source_tables:
        if not dest_schema.has_table(table) and table not in step.consumes:
            raise UnmappedSchemaChangeError(
                table, f"no table in schema v{step.to_version} and no handler reads it",
            )

    for table_spec in dest_schema.tables:
        if table_spec.name in step.handlers or table_spec.name in step.populated_elsewhere:
            continue
        if table_spec.name not in source_tables:
            continue
        source_columns = await table_columns(source, table_spec.name)
        if set(source_columns) != set(table_spec.columns):
            missing = sorted(set(table_spec.columns) - set(source_columns))
            dropped = sorted(set(source_columns) - set(table_spec.columns))
            raise UnmappedSchemaChangeError(
                table_spec.name, f"columns added {missing}, columns removed {dropped}",
            )


async def copy_table(ctx: MigrationContext, table: str, columns: Iterable[str]) -> int:
    """Copy every row of a table whose columns are unchanged. Returns the row count."""
    column_list = ", ".join(_quote(c) for c in columns)
    rows = await ctx.fetch_all(f"SELECT {column_list} FROM {_quote(table)} ORDER BY rowid")
    await ctx.insert_rows(table, rows)
    return len(rows)


async def verify_derived_columns(conn: AsyncConnection) -> list[DerivedColumnMismatch]:
    """
    Re-derive numComments and the sibling indices from the comment rows.

    Every bookmark's numComments must equal its number of comments, and its
    comments' sibling indices must be exactly 1..numComments.

    Returns:
        One entry per disagreement, empty when the database is consistent.
    """
    mismatches: list[DerivedColumnMismatch] = []

    result = await conn.execute(
        text(
            "SELECT b.id AS id, b.numComments AS stored, count(c.id) AS actual "
            "FROM bookmark b LEFT JOIN comment c ON c.bookmarkId = b.id "
            "GROUP BY b.id HAVING b.numComments != count(c.id) ORDER BY b.id",
        ),
    )
    for row in result.mappings():
        mismatches.append(
            DerivedColumnMismatch(
                bookmark_id=row["id"],
                column="numComments",
                expected=str(row["actual"]),
                found=str(row["stored"]),
            ),
        )

    result = await conn.execute(
        text(
            "SELECT bookmarkId AS id, count(*) AS n, count(DISTINCT siblingIdx) AS distinct_n, "
            "min(siblingIdx) AS lo, max(siblingIdx) AS hi "
            "FROM comment GROUP BY bookmarkId ORDER BY bookmarkId",
        ),
    )
    for row in result.mappings():
        if row["distinct_n"] != row["n"] or row["lo"] != 1 or row["hi"] != row["n"]:
            mismatches.append(
                DerivedColumnMismatch(
                    bookmark_id=row["id"],
                    column="siblingIdx",
                    expected=f"1..{row['n']}",
                    found=f"{row['distinct_n']} distinct in {row['lo']}..{row['hi']}",
                ),
            )
    return mismatches


async def _check_foreign_keys(conn: AsyncConnection) -> None:
    result = await conn.exec_driver_sql("PRAGMA foreign_key_check")
    violations = result.all()
    if violations:
        sample = ", ".join(f"{row[0]} rowid {row[1]} -> {row[2]}" for row in violations[:5])
        raise MigrationError(
            f"{len(violations)} foreign key violations in migrated database: {sample}",
        )


def _temporary_path(dest_path: Path) -> Path:
    return dest_path.with_name(f"{dest_path.stem}-{secrets.token_hex(8)}{dest_path.suffix}")


def _remove_database_files(path: Path) -> None:
    for candidate in (path, *(Path(f"{path}{s}") for s in _SQLITE_SIDECARS)):
        if candidate.exists():
            candidate.unlink()


async def _checkpoint(engine: AsyncEngine) -> None:
    """Fold the WAL back into the main file. Must run outside any transaction."""
    async with engine.connect() as conn:
        raw = await conn.get_raw_connection()
        await raw.driver_connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")


async def _build_destination(
    source: AsyncConnection,
    dest: AsyncConnection,
    tmp_path: Path,
    step: MigrationStep,
    now: float,
) -> dict[str, int]:
    existing = await list_tables(dest)
    if existing:
        raise DestinationNotEmptyError(tmp_path, existing)

    dest_schema = get_schema(step.to_version)
    await apply_schema(dest, step.to_version)
    ctx = MigrationContext(source=source, dest=dest, now=now)
    source_tables = await _source_tables(source)

    copied: dict[str, int] = {}
    for table_spec in dest_schema.tables:
        if table_spec.name in step.handlers or table_spec.name in step.populated_elsewhere:
            continue
        if table_spec.name not in source_tables:
            logger.info("Table %s is new in v%d and starts empty", table_spec.name, step.to_version)
            continue
        copied[table_spec.name] = await copy_table(ctx, table_spec.name, table_spec.columns)

    for table, handler in step.handlers.items():
        logger.info("Migrating table %s", table)
        await handler(ctx)

    if dest_schema.has_table(CHANGE_LOG_TABLE):
        await install_change_log_triggers(dest, step.to_version)
    if "numComments" in dest_schema.table("bookmark").columns:
        mismatches = await verify_derived_columns(dest)
        if mismatches:
            raise MigrationError(
                f"{len(mismatches)} bookmarks have inconsistent numComments/siblingIdx, "
                f"first: {mismatches[0]}",
            )
    await _check_foreign_keys(dest)
    return copied


async def run_migration(
    source_path: str | Path,
    dest_path: str | Path,
    step: MigrationStep,
    now: float | None = None,
) -> Path:
    """
    Migrate the database at `source_path` into a new file at `dest_path`.

    Returns:
        The destination path.

    Raises:
        FileNotFoundError: If the source file does not exist.
        SchemaVersionMismatchError: If the source is not at `step.from_version`.
        DestinationExistsError: If `dest_path` already exists.
        UnmappedSchemaChangeError: If a table changed without a handler for it.
        MigrationError: If the migrated data fails an integrity check.
    """
    source_path = Path(source_path)
    dest_path = Path(dest_path)
    if not source_path.exists():
        raise FileNotFoundError(f"Source database not found: {source_path}")
    if dest_path.exists():
        raise DestinationExistsError(dest_path)

    now = now_ms() if now is None else now
    tmp_path = _temporary_path(dest_path)
    logger.info(
        "Migrating %s (v%d) to %s (v%d) via %s",
        source_path, step.from_version, dest_path, step.to_version, tmp_path.name,
    )

    source_engine = create_sqlite_engine(sqlite_url(source_path, read_only=True), read_only=True)
    # Rows are copied table by table, so references are only checked at the end
    dest_engine = create_sqlite_engine(sqlite_url(tmp_path), foreign_keys=False)
    try:
        async with source_engine.connect() as source:
            await require_schema_version(source, step.from_version)
            await check_step_mapping(source, step)
            async with dest_engine.begin() as dest:
                copied = await _build_destination(source, dest, tmp_path, step, now)
        await _checkpoint(dest_engine)
    except BaseException:
        await dest_engine.dispose()
        await source_engine.dispose()
        _remove_database_files(tmp_path)
        raise
    await dest_engine.dispose()
    await source_engine.dispose()

    if dest_path.exists():
        _remove_database_files(tmp_path)
        raise DestinationExistsError(dest_path)
    for sidecar in _SQLITE_SIDECARS:
        leftover = Path(f"{tmp_path}{sidecar}")
        if leftover.exists():
            os.rename(leftover, f"{dest_path}{sidecar}")
    os.rename(tmp_path, dest_path)

    for table, count in copied.items():
        logger.debug("Copied %d rows of %s", count, table)
    logger.info("Wrote %s at schema v%d", dest_path, step.to_version)
    return dest_path
