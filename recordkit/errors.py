"""Exception types raised by the reconciliation engine.

Only structural problems are exceptions. Data-quality gaps (a detail row that
cannot be linked to a job, a fuzzy lookup with several plausible answers) are
recorded as diagnostics instead, see ``recordkit.diagnostics``.
"""

from typing import Optional


class RecordkitError(Exception):
    """Base class for all recordkit errors."""


class SchemaConflict(RecordkitError):
    """DDL would break the idempotence assumptions of a migration.

    Examples: renaming a column onto a name that already exists, or finding a
    half-finished temporary column from an earlier interrupted run.
    """

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"{table}: {message}")


class IntegrityViolation(RecordkitError):
    """A uniqueness or foreign key constraint rejected a write."""

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"{table}: {message}")


class MigrationError(RecordkitError):
    """A migration unit failed and its transaction was rolled back."""

    def __init__(self, name: str, cause: Optional[BaseException] = None):
        self.name = name
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Migration '{name}' failed{detail}")


class MigrationLocked(RecordkitError):
    """Another process holds the migration lock for this database."""
