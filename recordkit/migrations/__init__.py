"""Migration runner and the ordered migration units."""

from .runner import (
    Migration,
    MigrationLock,
    MigrationRunner,
    MigrationStatus,
    discover_migrations,
    sort_migrations,
)

__all__ = [
    "Migration",
    "MigrationLock",
    "MigrationRunner",
    "MigrationStatus",
    "discover_migrations",
    "sort_migrations",
]
