"""
Change-log triggers.

Every row-level mutation on a designated table is recorded into the append-only
`_change_log` table by SQLite triggers, so a past state can be restored by hand.
Nothing in the application reads the log, prunes it or rewrites it.

Trigger bodies are generated from the static column lists in `db.schema`, never
from runtime table introspection.
"""
import re
from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncConnection

from db.schema import CHANGE_LOG_DDL, CHANGE_LOG_TABLE, get_schema

# Designated tables and the volatile columns whose changes are not logged.
# Token rows are credentials and are deliberately not designated.
CHANGE_LOG_TABLES: dict[str, frozenset[str]] = {
    "user": frozenset(),
    "bookmark": frozenset({"render", "renderedTime"}),
    "comment": frozenset({"render", "innerRender", "fullRender", "renderedTime"}),
    "backup": frozenset(),
    "media": frozenset(),
    # json functions cannot hold BLOB values
    "blob": frozenset({"content"}),
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier for change-log trigger: {name!r}")
    return name


def change_log_trigger_statements(
    table: str,
    columns: Iterable[str],
    ignore_columns: Iterable[str] = (),
) -> list[str]:
    """
    Build the statements that (re)install the three change-log triggers for a table.

    Args:
        table: Table to track. Must have an integer `id` column.
        columns: All columns of the table.
        ignore_columns: Columns whose values are neither compared nor logged.

    Returns:
        Drop-if-exists statements followed by the three CREATE TRIGGER statements.
    """
    table = _identifier(table)
    ignored = set(ignore_columns)
    tracked = [_identifier(c) for c in columns if c not in ignored]
    if not tracked:
        raise ValueError(f"No tracked columns for change-log table {table}")

    old_new = ",\n        ".join(
        f"json_array('{c}', OLD.\"{c}\", NEW.\"{c}\")" for c in tracked
    )
    changed = " OR ".join(f'OLD."{c}" IS NOT NEW."{c}"' for c in tracked)
    old_object = ", ".join(f"'{c}', OLD.\"{c}\"" for c in tracked)

    return [
        f'DROP TRIGGER IF EXISTS "{table}_track_insert"',
        f'DROP TRIGGER IF EXISTS "{table}_track_update"',
        f'DROP TRIGGER IF EXISTS "{table}_track_delete"',
        f"""CREATE TRIGGER "{table}_track_insert"
AFTER INSERT ON "{table}"
BEGIN
  INSERT INTO {CHANGE_LOG_TABLE} (action, table_name, obj_id)
  VALUES ('INSERT', '{table}', NEW.id);
END""",
        f"""CREATE TRIGGER "{table}_track_update"
AFTER UPDATE ON "{table}"
WHEN {changed}
BEGIN
  INSERT INTO {CHANGE_LOG_TABLE} (action, table_name, obj_id, oldvals)
  SELECT 'UPDATE', '{table}', OLD.id, json_group_object(col, oldval)
  FROM (
    SELECT
      json_extract(value, '$[0]') AS col,
      json_extract(value, '$[1]') AS oldval,
      json_extract(value, '$[2]') AS newval
    FROM json_each(json_array(
        {old_new}
    ))
    WHERE oldval IS NOT newval
  );
END""",
        f"""CREATE TRIGGER "{table}_track_delete"
AFTER DELETE ON "{table}"
BEGIN
  INSERT INTO {CHANGE_LOG_TABLE} (action, table_name, obj_id, oldvals)
  VALUES ('DELETE', '{table}', OLD.id, json_object({old_object}));
END""",
    ]


async def ensure_change_log_table(conn: AsyncConnection) -> None:
    """Create the change-log table if it does not exist yet."""
    await conn.exec_driver_sql(
        CHANGE_LOG_DDL.replace("CREATE TABLE", "CREATE TABLE IF NOT EXISTS", 1),
    )


async def install_table_triggers(
    conn: AsyncConnection,
    table: str,
    columns: Iterable[str],
    ignore_columns: Iterable[str] = (),
) -> None:
    """Install (or reinstall) change-log triggers for one table."""
    await ensure_change_log_table(conn)
    for statement in change_log_trigger_statements(table, columns, ignore_columns):
        await conn.exec_driver_sql(statement)


async def install_change_log_triggers(conn: AsyncConnection, version: int) -> None:
    """Install triggers for every designated table of a schema version. Idempotent."""
    schema = get_schema(version)
    if not schema.has_table(CHANGE_LOG_TABLE):
        raise ValueError(f"Schema v{version} has no change log")
    for table, ignored in CHANGE_LOG_TABLES.items():
        if not schema.has_table(table):
            continue
        await install_table_triggers(conn, table, schema.table(table).columns, ignored)
