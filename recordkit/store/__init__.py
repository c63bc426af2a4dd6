"""Database access and guarded schema changes."""

from .client import DatabaseClient, SqlClient
from .schema_store import SchemaStore, ColumnInfo, IndexInfo

__all__ = [
    "DatabaseClient",
    "SqlClient",
    "SchemaStore",
    "ColumnInfo",
    "IndexInfo",
]
