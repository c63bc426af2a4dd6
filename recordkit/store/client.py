"""
Database client used by every reconciliation component.

Components never reach for a global handle: a ``DatabaseClient`` is passed
into each constructor, so tests can hand every component its own temporary
database.

The concrete ``SqlClient`` sits on SQLAlchemy Core. Work always happens inside
an explicit transaction (``begin_transaction`` / ``commit_transaction`` /
``rollback_transaction`` or the ``transaction()`` context manager), which is
what lets the migration runner guarantee that a failing unit leaves the
database exactly as it found it.

SQLite notes:
- pysqlite normally opens transactions lazily and only before DML, so DDL would
  be committed immediately. The client disables that behaviour and emits an
  explicit BEGIN so ALTER/CREATE/DROP statements roll back with everything else.
- Foreign key enforcement is switched on for every connection.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Connection, Engine, Inspector
from sqlalchemy.exc import IntegrityError

from ..config import resolve_db_url, sqlite_file_from_url
from ..errors import IntegrityViolation

logger = logging.getLogger(__name__)


class DatabaseClient:
    """
    Abstract interface for database operations.

    Implementations must provide transaction control plus a handful of
    statement helpers. Statements use named ``:param`` placeholders.
    """

    def begin_transaction(self) -> None:
        """Begin a database transaction."""
        raise NotImplementedError

    def commit_transaction(self) -> None:
        """Commit the current transaction."""
        raise NotImplementedError

    def rollback_transaction(self) -> None:
        """Rollback the current transaction."""
        raise NotImplementedError

    @property
    def in_transaction(self) -> bool:
        raise NotImplementedError

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Execute a statement.

        Returns:
            Number of rows affected (-1 when the driver does not report it)
        """
        raise NotImplementedError

    def insert(
        self,
        table: str,
        values: Dict[str, Any],
        returning: Optional[str] = "id"
    ) -> Optional[Any]:
        """
        Insert one row.

        Args:
            table: Target table
            values: Column → value mapping
            returning: Column to return from the new row (None for no value)

        Returns:
            Value of the ``returning`` column, or None

        Raises:
            IntegrityViolation: If a constraint rejects the row. The failed
                statement is rolled back; the surrounding transaction survives.
        """
        raise NotImplementedError

    def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def fetch_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_value(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Return the first column of the first row, or None."""
        raise NotImplementedError

    def inspector(self) -> Inspector:
        """Schema inspector bound to the current transaction."""
        raise NotImplementedError

    def savepoint(self):
        """
        Context manager for a nested transaction.

        A statement that fails inside it is undone without aborting the
        surrounding transaction.
        """
        raise NotImplementedError

    @contextmanager
    def transaction(self) -> Iterator["DatabaseClient"]:
        """Run the enclosed block in one transaction; roll back on any error."""
        self.begin_transaction()
        try:
            yield self
        except Exception:
            self.rollback_transaction()
            raise
        self.commit_transaction()

    def close(self) -> None:
        pass


def _enable_sqlite_transactions(engine: Engine) -> None:
    """Make pysqlite transactional for DDL and enforce foreign keys."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class SqlClient(DatabaseClient):
    """
    SQLAlchemy-backed database client.

    Connection can be configured via:
    - Constructor parameters (``db_url`` or ``db_path``)
    - Environment variables (RECORDKIT_DB_URL, then RECORDKIT_DB_PATH)
    - Default: ``data/record.db``
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        db_path: Optional[str] = None,
        echo: bool = False
    ):
        """
        Initialize the client. The engine is created on first use.

        Args:
            db_url: Full SQLAlchemy URL (e.g. sqlite:///data/record.db)
            db_path: Path to an SQLite file, used when no URL is given
            echo: Log every statement through SQLAlchemy
        """
        self.db_url = resolve_db_url(db_url, db_path)
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._conn: Optional[Connection] = None
        self._transaction = None

    @property
    def database_file(self):
        """Path of the SQLite file, or None for in-memory/non-file databases."""
        return sqlite_file_from_url(self.db_url)

    def _get_engine(self) -> Engine:
        """Get or create the engine."""
        if self._engine is None:
            db_file = self.database_file
            if db_file is not None:
                db_file.parent.mkdir(parents=True, exist_ok=True)

            self._engine = create_engine(self.db_url, echo=self.echo)
            if self._engine.dialect.name == "sqlite":
                _enable_sqlite_transactions(self._engine)
            logger.info(f"Database engine created for {self._engine.url!r}")
        return self._engine

    def begin_transaction(self) -> None:
        """Begin a database transaction."""
        if self._conn is not None:
            raise RuntimeError("Transaction already in progress")

        self._conn = self._get_engine().connect()
        self._transaction = self._conn.begin()

    def commit_transaction(self) -> None:
        """Commit the current transaction."""
        if self._conn is None:
            raise RuntimeError("No transaction in progress")

        try:
            self._transaction.commit()
        finally:
            self._release()

    def rollback_transaction(self) -> None:
        """Rollback the current transaction."""
        if self._conn is None:
            raise RuntimeError("No transaction in progress")

        try:
            self._transaction.rollback()
        finally:
            self._release()

    def _release(self) -> None:
        self._conn.close()
        self._conn = None
        self._transaction = None

    @property
    def in_transaction(self) -> bool:
        return self._conn is not None

    def _get_connection(self) -> Connection:
        """Get the connection of the current transaction."""
        if self._conn is None:
            raise RuntimeError("No transaction in progress. Call begin_transaction() first.")
        return self._conn

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        result = self._get_connection().execute(text(sql), params or {})
        return result.rowcount

    def insert(
        self,
        table: str,
        values: Dict[str, Any],
        returning: Optional[str] = "id"
    ) -> Optional[Any]:
        conn = self._get_connection()
        columns = ", ".join(values)
        placeholders = ", ".join(f":{column}" for column in values)
        sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        if returning:
            sql += f" RETURNING {returning}"

        try:
            with self.savepoint():
                result = conn.execute(text(sql), values)
                return result.scalar_one() if returning else None
        except IntegrityError as e:
            raise IntegrityViolation(table, str(e.orig)) from e

    def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        result = self._get_connection().execute(text(sql), params or {})
        return [dict(row) for row in result.mappings()]

    def fetch_value(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._get_connection().execute(text(sql), params or {}).scalar()

    def savepoint(self):
        return self._get_connection().begin_nested()

    def inspector(self) -> Inspector:
        # A fresh inspector per call: Inspector caches reflection results
        return inspect(self._get_connection())

    def close(self) -> None:
        """Roll back anything pending and dispose of the engine."""
        if self._conn is not None:
            self.rollback_transaction()
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
