"""Async SQLAlchemy engine and session factory for the SQLite database file."""
import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import get_settings
from db.change_log import install_change_log_triggers
from db.schema import (
    CURRENT_SCHEMA_VERSION,
    SchemaVersionMismatchError,
    apply_schema,
    list_tables,
    read_schema_version,
    require_schema_version,
)

logger = logging.getLogger(__name__)


def sqlite_url(path: str | Path, read_only: bool = False) -> str:
    """Build an aiosqlite URL for a database file."""
    posix = Path(path).as_posix()
    if read_only:
        return f"sqlite+aiosqlite:///file:{posix}?mode=ro&uri=true"
    return f"sqlite+aiosqlite:///{posix}"


def create_sqlite_engine(
    url: str,
    *,
    read_only: bool = False,
    foreign_keys: bool = True,
    busy_timeout_ms: int = 5000,
) -> AsyncEngine:
    """
    Create an engine for a SQLite file with the single-writer transaction discipline.

    The driver's own transaction handling is disabled and every transaction is
    opened with BEGIN IMMEDIATE instead, so the write lock is taken before the
    first read. A request that reads a cached render (or numComments) and writes
    a new one therefore cannot interleave with another writer. Read-only engines
    use a plain deferred BEGIN.
    """
    engine = create_async_engine(url, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        cursor.execute(f"PRAGMA foreign_keys = {'ON' if foreign_keys else 'OFF'}")
        if not read_only:
            cursor.execute("PRAGMA journal_mode = WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:  # noqa: ANN001
        conn.exec_driver_sql("BEGIN" if read_only else "BEGIN IMMEDIATE")

    return engine


def ensure_database_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite URL."""
    database = make_url(url).database
    if database and database != ":memory:" and not database.startswith("file:"):
        Path(database).parent.mkdir(parents=True, exist_ok=True)


async def init_database(engine: AsyncEngine) -> None:
    """
    Check the schema version at startup.

    A brand-new (empty) file gets the current schema and its change-log triggers.
    Any other recorded version is fatal: migrations never run on boot.

    Raises:
        SchemaVersionMismatchError: If the file is at another version or is not ours.
    """
    async with engine.begin() as conn:
        version = await read_schema_version(conn)
        if version is None:
            if await list_tables(conn):
                raise SchemaVersionMismatchError(None, CURRENT_SCHEMA_VERSION)
            logger.info("Uninitialized database, creating schema v%d", CURRENT_SCHEMA_VERSION)
            await apply_schema(conn, CURRENT_SCHEMA_VERSION)
            await install_change_log_triggers(conn, CURRENT_SCHEMA_VERSION)
        else:
            await require_schema_version(conn, CURRENT_SCHEMA_VERSION)


settings = get_settings()

engine = create_sqlite_engine(
    settings.database_url,
    busy_timeout_ms=settings.sqlite_busy_timeout_ms,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def get_session_factory() -> async_sessionmaker:
    """Return the session factory for work that runs outside a request (background tasks)."""
    return async_session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Yield an async database session.

    Uses unit-of-work pattern: services use flush() for refreshing objects,
    commit happens once here at request end. This ensures atomic transactions
    per request - if anything fails, all changes are rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
