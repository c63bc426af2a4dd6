"""
Guarded DDL and schema introspection.

SQLite cannot change a column's type or default in place, and ALTER TABLE ADD
COLUMN only accepts constant defaults. Every structural change therefore goes
through this module, which:

- checks the live schema before each statement so that running the same
  change twice is a no-op, and
- implements the one "safe column migration" routine used whenever a column's
  contents have to be reformatted (see ``migrate_column``).

All statements run on the caller's transaction; nothing here commits.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from ..diagnostics import DiagnosticLog, ensure_log
from ..errors import SchemaConflict
from .client import DatabaseClient

logger = logging.getLogger(__name__)

TEMP_SUFFIX = "_new"
BACKUP_SUFFIX = "_old"


@dataclass(frozen=True)
class ColumnInfo:
    """One column as reported by schema introspection."""
    name: str
    type: str
    not_null: bool
    primary_key: bool
    default: Optional[str] = None


@dataclass(frozen=True)
class IndexInfo:
    """One explicitly created index."""
    name: str
    columns: List[str]
    unique: bool


def _sql_literal(value: Any) -> str:
    """Render a constant column default as SQL."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    raise SchemaConflict(
        "<default>",
        f"column defaults must be constants, got {type(value).__name__}; "
        "add the column without a default and backfill it instead"
    )


class SchemaStore:
    """
    Applies and reverses table/column definitions.

    Migration units receive a SchemaStore; data statements go through
    ``store.db`` and data-quality notes through ``store.diagnostics``.
    """

    def __init__(self, db: DatabaseClient, diagnostics: Optional[DiagnosticLog] = None):
        self.db = db
        self.diagnostics = ensure_log(diagnostics)

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def list_tables(self) -> List[str]:
        return sorted(self.db.inspector().get_table_names())

    def has_table(self, table: str) -> bool:
        return table in self.db.inspector().get_table_names()

    def has_tables(self, *tables: str) -> bool:
        """True when every table exists; logs the missing ones otherwise."""
        existing = set(self.db.inspector().get_table_names())
        missing = [table for table in tables if table not in existing]
        if missing:
            logger.info(f"Table(s) {', '.join(missing)} not present, skipping")
            return False
        return True

    def list_columns(self, table: str) -> List[ColumnInfo]:
        return [
            ColumnInfo(
                name=column["name"],
                type=str(column["type"]),
                not_null=not column["nullable"],
                primary_key=bool(column.get("primary_key")),
                default=column.get("default"),
            )
            for column in self.db.inspector().get_columns(table)
        ]

    def column_names(self, table: str) -> List[str]:
        return [column.name for column in self.list_columns(table)]

    def has_column(self, table: str, column: str) -> bool:
        if not self.has_table(table):
            return False
        return column in self.column_names(table)

    def list_indexes(self, table: str) -> List[IndexInfo]:
        return [
            IndexInfo(
                name=index["name"],
                columns=list(index["column_names"]),
                unique=bool(index.get("unique")),
            )
            for index in self.db.inspector().get_indexes(table)
        ]

    def has_index(self, table: str, name: str) -> bool:
        if not self.has_table(table):
            return False
        return any(index.name == name for index in self.list_indexes(table))

    def row_count(self, table: str) -> int:
        return self.db.fetch_value(f"SELECT COUNT(*) FROM {table}")

    # =========================================================================
    # TABLES AND INDEXES
    # =========================================================================

    def create_table(self, table: str, ddl: str) -> bool:
        """Run ``ddl`` unless ``table`` already exists. Returns True if created."""
        if self.has_table(table):
            logger.info(f"Table {table} already exists, skipping")
            return False
        self.db.execute(ddl)
        logger.info(f"Created table {table}")
        return True

    def drop_table(self, table: str) -> bool:
        if not self.has_table(table):
            return False
        self.db.execute(f"DROP TABLE {table}")
        logger.info(f"Dropped table {table}")
        return True

    def create_index(
        self,
        name: str,
        table: str,
        columns: Sequence[str],
        unique: bool = False
    ) -> bool:
        if self.has_index(table, name):
            return False
        kind = "UNIQUE INDEX" if unique else "INDEX"
        self.db.execute(f"CREATE {kind} {name} ON {table}({', '.join(columns)})")
        logger.info(f"Created index {name} on {table}")
        return True

    def drop_index(self, name: str, table: str) -> bool:
        if not self.has_index(table, name):
            return False
        self.db.execute(f"DROP INDEX {name}")
        logger.info(f"Dropped index {name}")
        return True

    # =========================================================================
    # COLUMNS
    # =========================================================================

    def add_column(
        self,
        table: str,
        column: str,
        type_sql: str,
        default: Any = None
    ) -> bool:
        """
        Add a column unless it already exists.

        Args:
            table: Target table
            column: New column name
            type_sql: Declared type, optionally with NOT NULL
            default: Constant default value (None for no default)

        Returns:
            True if the column was added

        Raises:
            SchemaConflict: If the table is missing or the default is not a constant
        """
        if not self.has_table(table):
            raise SchemaConflict(table, f"cannot add column {column}: table does not exist")
        if self.has_column(table, column):
            logger.info(f"Column {table}.{column} already exists, skipping")
            return False

        definition = f"{column} {type_sql}"
        if default is not None:
            definition += f" DEFAULT {_sql_literal(default)}"
        self.db.execute(f"ALTER TABLE {table} ADD COLUMN {definition}")
        logger.info(f"Added column {table}.{column}")
        return True

    def drop_column(self, table: str, column: str) -> bool:
        """Drop a column (and any index covering it) if present."""
        if not self.has_column(table, column):
            return False
        for index in self.list_indexes(table):
            if column in index.columns:
                self.drop_index(index.name, table)
        self.db.execute(f"ALTER TABLE {table} DROP COLUMN {column}")
        logger.info(f"Dropped column {table}.{column}")
        return True

    def rename_column(self, table: str, old: str, new: str) -> bool:
        """
        Rename a column.

        A rename that has already happened (``old`` gone, ``new`` present) is
        a no-op. Anything else that does not fit raises SchemaConflict.
        """
        has_old = self.has_column(table, old)
        has_new = self.has_column(table, new)

        if not has_old and has_new:
            return False
        if not has_old:
            raise SchemaConflict(table, f"cannot rename {old}: column does not exist")
        if has_new:
            raise SchemaConflict(table, f"cannot rename {old} to {new}: {new} already exists")

        self.db.execute(f"ALTER TABLE {table} RENAME COLUMN {old} TO {new}")
        logger.info(f"Renamed column {table}.{old} → {new}")
        return True

    # =========================================================================
    # SAFE COLUMN MIGRATION
    # =========================================================================

    def migrate_column(
        self,
        table: str,
        column: str,
        transform: Callable[[Any], Any],
        key: str,
        type_sql: str = "TEXT"
    ) -> bool:
        """
        Rewrite every value of a column through ``transform``.

        Steps:
        1. Add ``<column>_new``.
        2. Compute each row's new value in Python and store it there.
        3. Rename ``<column>`` to ``<column>_old`` (kept as a backup).
        4. Rename ``<column>_new`` to ``<column>``.

        Args:
            table: Table holding the column
            column: Column to rewrite
            transform: Called with the old value, returns the new one
            key: Column that identifies a row (e.g. ``id`` or ``rowid``)
            type_sql: Declared type of the rewritten column

        Returns:
            True if the column was migrated, False if it already had been

        Raises:
            SchemaConflict: If the column is missing or a temporary column
                from an interrupted run is still present
        """
        temp = f"{column}{TEMP_SUFFIX}"
        backup = f"{column}{BACKUP_SUFFIX}"

        if not self.has_table(table):
            raise SchemaConflict(table, "table does not exist")

        has_column = self.has_column(table, column)
        has_temp = self.has_column(table, temp)
        has_backup = self.has_column(table, backup)

        if has_temp:
            raise SchemaConflict(table, f"temporary column {temp} already exists")
        if has_backup and has_column:
            logger.info(f"{table}.{column} already migrated ({backup} present), skipping")
            return False
        if not has_column:
            raise SchemaConflict(table, f"column {column} does not exist")

        # STEP 1: temporary column
        self.add_column(table, temp, type_sql)

        # STEP 2: values computed in application code
        rows = self.db.fetch_all(f"SELECT {key} AS row_key, {column} AS value FROM {table}")
        changed = 0
        for row in rows:
            new_value = transform(row["value"])
            if new_value != row["value"]:
                changed += 1
            self.db.execute(
                f"UPDATE {table} SET {temp} = :value WHERE {key} = :row_key",
                {"value": new_value, "row_key": row["row_key"]},
            )

        # STEP 3 and 4: swap names, keep the original as backup
        self.rename_column(table, column, backup)
        self.rename_column(table, temp, column)

        logger.info(f"Migrated {table}.{column}: {len(rows)} rows, {changed} values changed")
        return True

    def revert_column(self, table: str, column: str) -> bool:
        """
        Undo ``migrate_column``: restore ``<column>_old`` under the original name.

        Returns:
            True if the column was restored, False if there was no backup
        """
        temp = f"{column}{TEMP_SUFFIX}"
        backup = f"{column}{BACKUP_SUFFIX}"

        if not self.has_column(table, backup):
            logger.info(f"No backup column {table}.{backup}, nothing to revert")
            return False
        if self.has_column(table, temp):
            raise SchemaConflict(table, f"temporary column {temp} already exists")

        self.rename_column(table, column, temp)
        self.rename_column(table, backup, column)
        self.drop_column(table, temp)
        logger.info(f"Restored {table}.{column} from {backup}")
        return True
