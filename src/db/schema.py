"""
Versioned schema definitions.

Each schema version is an immutable DDL snapshot plus static per-table column
metadata. The column metadata drives change-log trigger generation and the
migration engine's generic copy path, so it must match the DDL exactly (a test
checks this against PRAGMA table_info for every version).

Timestamps are epoch milliseconds stored as floats.
"""
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

STATE_TABLE = "_db_state"
CHANGE_LOG_TABLE = "_change_log"
CURRENT_SCHEMA_VERSION = 5


class SchemaVersionMismatchError(Exception):
    """Raised when a database file's recorded schema version is not the one required."""

    def __init__(self, found: int | None, required: int) -> None:
        self.found = found
        self.required = required
        super().__init__(
            f"Database schema version is {found}, but version {required} is required. "
            "Run the offline migration (python -m tasks.migrate) first.",
        )


@dataclass(frozen=True)
class TableSpec:
    """A table's name and its columns, in declaration order."""

    name: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class SchemaVersion:
    """An immutable DDL document identified by its version number."""

    version: int
    tables: tuple[TableSpec, ...]
    statements: tuple[str, ...]

    @property
    def table_names(self) -> tuple[str, ...]:
        """Table names in creation order (parents before children)."""
        return tuple(t.name for t in self.tables)

    @property
    def ddl(self) -> str:
        """The full DDL text of this version."""
        return ";\n".join(self.statements) + ";\n"

    def table(self, name: str) -> TableSpec:
        """Look up a table by name."""
        for table_spec in self.tables:
            if table_spec.name == name:
                return table_spec
        raise KeyError(f"Schema v{self.version} has no table '{name}'")

    def has_table(self, name: str) -> bool:
        """Check whether this version declares a table."""
        return any(t.name == name for t in self.tables)


def _state_statements(version: int) -> tuple[str, ...]:
    return (
        f"CREATE TABLE {STATE_TABLE} (schemaVersion integer not null)",
        f"INSERT INTO {STATE_TABLE} (schemaVersion) VALUES ({version})",
    )


CHANGE_LOG_DDL = f"""CREATE TABLE {CHANGE_LOG_TABLE} (
  id INTEGER PRIMARY KEY,
  created float not null default ((julianday('now') - 2440587.5) * 86400000.0),
  action text not null,
  table_name text not null,
  obj_id integer,
  oldvals text
)"""

_CHANGE_LOG_SPEC = TableSpec(
    CHANGE_LOG_TABLE, ("id", "created", "action", "table_name", "obj_id", "oldvals"),
)

_USER_SPEC = TableSpec("user", ("id", "displayName", "githubId"))
_TOKEN_SPEC = TableSpec("token", ("token", "description", "userId"))
_BLOB_SPEC = TableSpec(
    "blob", ("id", "content", "mime", "createdTime", "numBytes", "sha256"),
)
_MEDIA_SPEC = TableSpec("media", ("id", "path", "bookmarkId", "sha256", "createdTime"))
_BACKUP_SPEC = TableSpec(
    "backup", ("id", "bookmarkId", "content", "original", "createdTime"),
)
_BOOKMARK_V4_SPEC = TableSpec(
    "bookmark",
    (
        "id", "userId", "url", "title", "createdTime", "modifiedTime",
        "numComments", "render", "renderedTime",
    ),
)
_COMMENT_V4_SPEC = TableSpec(
    "comment",
    (
        "id", "bookmarkId", "siblingIdx", "content", "createdTime", "modifiedTime",
        "innerRender", "fullRender", "renderedTime",
    ),
)


V2 = SchemaVersion(
    version=2,
    tables=(
        _USER_SPEC,
        _TOKEN_SPEC,
        TableSpec(
            "bookmark",
            (
                "id", "userId", "url", "title", "createdTime", "modifiedTime",
                "render", "renderedTime",
            ),
        ),
        TableSpec(
            "comment",
            (
                "id", "bookmarkId", "content", "createdTime", "modifiedTime",
                "render", "renderedTime",
            ),
        ),
        TableSpec("backup", ("id", "bookmarkId", "content", "createdTime")),
        TableSpec(
            "media", ("id", "filename", "mime", "content", "createdTime", "numBytes"),
        ),
    ),
    statements=(
        *_state_statements(2),
        """CREATE TABLE user (
  id INTEGER PRIMARY KEY,
  displayName text not null,
  githubId integer unique not null
)""",
        """CREATE TABLE token (
  token text primary key not null,
  description text not null,
  userId integer not null
)""",
        """CREATE TABLE bookmark (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  userId integer not null,
  url text not null,
  title text not null,
  createdTime float not null,
  modifiedTime float not null,
  render text not null,
  renderedTime float not null,
  unique (url, title)
)""",
        """CREATE TABLE comment (
  id INTEGER PRIMARY KEY,
  bookmarkId integer not null,
  content text not null,
  createdTime float not null,
  modifiedTime float not null,
  render text not null,
  renderedTime float not null
)""",
        """CREATE TABLE backup (
  id INTEGER PRIMARY KEY,
  bookmarkId integer not null,
  content text not null,
  createdTime float not null
)""",
        """CREATE TABLE media (
  id INTEGER PRIMARY KEY,
  filename text not null,
  mime text not null,
  content blob not null,
  createdTime float not null,
  numBytes integer not null,
  unique (filename, createdTime)
)""",
    ),
)

V3 = SchemaVersion(
    version=3,
    tables=(
        _USER_SPEC,
        _TOKEN_SPEC,
        V2.table("bookmark"),
        V2.table("comment"),
        _BACKUP_SPEC,
        _BLOB_SPEC,
        _MEDIA_SPEC,
        _CHANGE_LOG_SPEC,
    ),
    statements=(
        *_state_statements(3),
        V2.statements[2],  # user
        V2.statements[3],  # token
        V2.statements[4],  # bookmark
        V2.statements[5],  # comment
        """CREATE TABLE backup (
  id INTEGER PRIMARY KEY,
  bookmarkId integer not null,
  content text not null,
  original text not null,
  createdTime float not null
)""",
        """CREATE TABLE blob (
  id INTEGER PRIMARY KEY,
  content blob not null,
  mime text not null,
  createdTime float not null,
  numBytes integer not null,
  sha256 text unique not null
)""",
        """CREATE TABLE media (
  id INTEGER PRIMARY KEY,
  path text not null,
  bookmarkId integer not null,
  sha256 text not null,
  createdTime float not null,
  unique (sha256, path, bookmarkId)
)""",
        CHANGE_LOG_DDL,
    ),
)

V4 = SchemaVersion(
    version=4,
    tables=(
        _USER_SPEC,
        _TOKEN_SPEC,
        _BOOKMARK_V4_SPEC,
        _COMMENT_V4_SPEC,
        _BACKUP_SPEC,
        _BLOB_SPEC,
        _MEDIA_SPEC,
        _CHANGE_LOG_SPEC,
    ),
    statements=(
        *_state_statements(4),
        V2.statements[2],  # user
        V2.statements[3],  # token
        """CREATE TABLE bookmark (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  userId integer not null,
  url text not null,
  title text not null,
  createdTime float not null,
  modifiedTime float not null,
  numComments integer not null,
  render text not null,
  renderedTime float not null,
  unique (url, title, userId)
)""",
        """CREATE TABLE comment (
  id INTEGER PRIMARY KEY,
  bookmarkId integer not null,
  siblingIdx integer not null,
  content text not null,
  createdTime float not null,
  modifiedTime float not null,
  innerRender text not null,
  fullRender text not null,
  renderedTime float not null
)""",
        V3.statements[6],  # backup
        V3.statements[7],  # blob
        V3.statements[8],  # media
        CHANGE_LOG_DDL,
    ),
)

# v5 keeps v4's columns and adds referential integrity, the (bookmarkId, siblingIdx)
# uniqueness guarantee, lookup indexes and a comment-count view.
V5 = SchemaVersion(
    version=5,
    tables=V4.tables,
    statements=(
        *_state_statements(5),
        """CREATE TABLE user (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  displayName text not null,
  githubId integer unique not null
)""",
        """CREATE TABLE token (
  token text primary key not null,
  description text not null,
  userId integer not null references user (id) on delete cascade
)""",
        """CREATE TABLE bookmark (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  userId integer not null references user (id) on delete cascade,
  url text not null,
  title text not null,
  createdTime float not null,
  modifiedTime float not null,
  numComments integer not null,
  render text not null,
  renderedTime float not null,
  unique (url, title, userId)
)""",
        """CREATE TABLE comment (
  id INTEGER PRIMARY KEY,
  bookmarkId integer not null references bookmark (id) on delete cascade,
  siblingIdx integer not null,
  content text not null,
  createdTime float not null,
  modifiedTime float not null,
  innerRender text not null,
  fullRender text not null,
  renderedTime float not null,
  unique (bookmarkId, siblingIdx)
)""",
        """CREATE TABLE backup (
  id INTEGER PRIMARY KEY,
  bookmarkId integer not null references bookmark (id) on delete cascade,
  content text not null,
  original text not null,
  createdTime float not null
)""",
        V3.statements[7],  # blob
        """CREATE TABLE media (
  id INTEGER PRIMARY KEY,
  path text not null,
  bookmarkId integer not null references bookmark (id) on delete cascade,
  sha256 text not null,
  createdTime float not null,
  unique (sha256, path, bookmarkId)
)""",
        CHANGE_LOG_DDL,
        "CREATE INDEX ix_bookmark_user_modified ON bookmark (userId, modifiedTime)",
        "CREATE INDEX ix_backup_bookmark_created ON backup (bookmarkId, createdTime)",
        "CREATE INDEX ix_media_bookmark_path ON media (bookmarkId, path)",
        """CREATE VIEW comment_count (bookmarkId, numComments) AS
SELECT bookmarkId, count(*) FROM comment GROUP BY bookmarkId""",
    ),
)

SCHEMA_VERSIONS: dict[int, SchemaVersion] = {s.version: s for s in (V2, V3, V4, V5)}


def get_schema(version: int) -> SchemaVersion:
    """Get the DDL document for a schema version."""
    try:
        return SCHEMA_VERSIONS[version]
    except KeyError:
        raise ValueError(f"Unknown schema version: {version}") from None


async def list_tables(conn: AsyncConnection) -> list[str]:
    """List user tables in a database (SQLite internal tables excluded)."""
    result = await conn.execute(
        text(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name",
        ),
    )
    return [row[0] for row in result]


async def table_columns(conn: AsyncConnection, table: str) -> tuple[str, ...]:
    """Get a table's columns in declaration order."""
    result = await conn.exec_driver_sql(f'PRAGMA table_info("{table}")')
    return tuple(row[1] for row in result)


async def read_schema_version(conn: AsyncConnection) -> int | None:
    """Return the recorded schema version, or None if the database is uninitialized."""
    found = await conn.execute(
        text("SELECT name FROM sqlite_master WHERE type = 'table' AND name = :name"),
        {"name": STATE_TABLE},
    )
    if found.first() is None:
        return None
    result = await conn.execute(text(f"SELECT schemaVersion FROM {STATE_TABLE}"))
    return result.scalar_one_or_none()


async def apply_schema(conn: AsyncConnection, version: int) -> None:
    """Execute a version's DDL statements on an empty database."""
    for statement in get_schema(version).statements:
        await conn.exec_driver_sql(statement)


async def require_schema_version(conn: AsyncConnection, required: int) -> None:
    """Raise SchemaVersionMismatchError unless the database is at exactly `required`."""
    found = await read_schema_version(conn)
    if found != required:
        raise SchemaVersionMismatchError(found, required)
