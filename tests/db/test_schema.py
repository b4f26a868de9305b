"""Tests for the versioned schema definitions and the startup version check."""
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from db.schema import (
    CURRENT_SCHEMA_VERSION,
    SCHEMA_VERSIONS,
    STATE_TABLE,
    SchemaVersionMismatchError,
    apply_schema,
    get_schema,
    list_tables,
    read_schema_version,
    require_schema_version,
    table_columns,
)
from db.session import create_sqlite_engine, init_database, sqlite_url
from models import Base


@pytest.mark.parametrize('version', sorted(SCHEMA_VERSIONS))
async def test__table_specs__match_ddl(tmp_path: Path, version: int) -> None:
    """The static column lists of every version match what the DDL creates."""
    engine = create_sqlite_engine(sqlite_url(tmp_path / f'v{version}.db'))
    try:
        async with engine.begin() as conn:
            await apply_schema(conn, version)
            schema = get_schema(version)

            tables = set(await list_tables(conn)) - {STATE_TABLE}
            assert tables == set(schema.table_names)
            for spec in schema.tables:
                assert await table_columns(conn, spec.name) == spec.columns
            assert await read_schema_version(conn) == version
    finally:
        await engine.dispose()


async def test__orm_models__match_current_schema(async_engine: AsyncEngine) -> None:
    """Every mapped table has exactly the columns of the current DDL."""
    async with async_engine.connect() as conn:
        for table in Base.metadata.sorted_tables:
            columns = await table_columns(conn, table.name)
            assert set(columns) == set(table.columns.keys()), table.name


def test__get_schema__unknown_version_raises() -> None:
    with pytest.raises(ValueError, match='Unknown schema version'):
        get_schema(1)


async def test__init_database__creates_current_schema(async_engine: AsyncEngine) -> None:
    """A brand-new file is initialized at the current version."""
    async with async_engine.connect() as conn:
        assert await read_schema_version(conn) == CURRENT_SCHEMA_VERSION
        result = await conn.execute(
            text("SELECT count(*) FROM sqlite_master WHERE type = 'trigger'"),
        )
        assert result.scalar_one() > 0


async def test__init_database__is_idempotent(async_engine: AsyncEngine) -> None:
    """Booting twice against the same file is fine."""
    await init_database(async_engine)
    async with async_engine.connect() as conn:
        assert await read_schema_version(conn) == CURRENT_SCHEMA_VERSION


async def test__init_database__refuses_older_version(tmp_path: Path) -> None:
    """The server never migrates: an old file is fatal."""
    engine = create_sqlite_engine(sqlite_url(tmp_path / 'old.db'))
    try:
        async with engine.begin() as conn:
            await apply_schema(conn, 4)
        with pytest.raises(SchemaVersionMismatchError) as exc_info:
            await init_database(engine)
        assert exc_info.value.found == 4
        assert exc_info.value.required == CURRENT_SCHEMA_VERSION
        assert 'tasks.migrate' in str(exc_info.value)
    finally:
        await engine.dispose()


async def test__init_database__refuses_foreign_database(tmp_path: Path) -> None:
    """A non-empty file without a version row is not ours."""
    engine = create_sqlite_engine(sqlite_url(tmp_path / 'foreign.db'))
    try:
        async with engine.begin() as conn:
            await conn.exec_driver_sql('CREATE TABLE something (id integer)')
        with pytest.raises(SchemaVersionMismatchError) as exc_info:
            await init_database(engine)
        assert exc_info.value.found is None
    finally:
        await engine.dispose()


async def test__require_schema_version__accepts_exact_match(async_engine: AsyncEngine) -> None:
    async with async_engine.connect() as conn:
        await require_schema_version(conn, CURRENT_SCHEMA_VERSION)
        with pytest.raises(SchemaVersionMismatchError):
            await require_schema_version(conn, CURRENT_SCHEMA_VERSION - 1)


async def test__v5__enforces_unique_sibling_index(async_engine: AsyncEngine) -> None:
    """Two comments of one bookmark can never share a sibling index."""
    async with async_engine.connect() as conn:
        await conn.execute(
            text("INSERT INTO user (id, displayName, githubId) VALUES (1, 'u', 1)"),
        )
        await conn.execute(
            text(
                "INSERT INTO bookmark (id, userId, url, title, createdTime, modifiedTime, "
                "numComments, render, renderedTime) VALUES (1, 1, 'u', 't', 0, 0, 2, '', 0)",
            ),
        )
        insert_comment = text(
            "INSERT INTO comment (bookmarkId, siblingIdx, content, createdTime, modifiedTime, "
            "innerRender, fullRender, renderedTime) VALUES (1, 1, :content, 0, 0, '', '', 0)",
        )
        await conn.execute(insert_comment, {'content': 'first'})
        with pytest.raises(IntegrityError, match='UNIQUE constraint failed'):
            await conn.execute(insert_comment, {'content': 'second'})
        await conn.rollback()
