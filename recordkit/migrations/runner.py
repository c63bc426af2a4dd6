"""
Ordered, transactional migration runner.

A migration unit is a ``Migration(sequence, name, up, down)``. Units are sorted
by their integer ``sequence`` (never by the text of their name) and applied one
by one, each inside its own transaction:

    begin → unit.up(store) → record in schema_migrations → commit

If a unit raises, its transaction is rolled back (DDL included), the run stops
and no later unit is attempted. Applied units are never retried.

The tracking table only says which units the runner applied. Every unit must
still detect its own prior effect through schema introspection, because parts
of the legacy database were migrated before the tracking table existed.
"""

import importlib
import logging
import os
import pkgutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from ..diagnostics import DiagnosticLog, ensure_log
from ..errors import MigrationError, MigrationLocked
from ..schema import MIGRATIONS_DDL, MIGRATIONS_TABLE
from ..store.client import DatabaseClient
from ..store.schema_store import SchemaStore

logger = logging.getLogger(__name__)

VERSIONS_PACKAGE = "recordkit.migrations.versions"


@dataclass(frozen=True)
class Migration:
    """A named, reversible schema/data change."""
    sequence: int
    name: str
    up: Callable[[SchemaStore], None]
    down: Callable[[SchemaStore], None]

    @property
    def label(self) -> str:
        return f"{self.sequence:03d}_{self.name}"


@dataclass
class MigrationStatus:
    sequence: int
    name: str
    applied: bool
    applied_at: Optional[str] = None


def discover_migrations(package: str = VERSIONS_PACKAGE) -> List[Migration]:
    """
    Import every module of ``package`` and collect its ``MIGRATION``.

    Returns:
        Units sorted by sequence

    Raises:
        ValueError: If two units share a sequence number or a name
    """
    module = importlib.import_module(package)
    units = []
    for info in pkgutil.iter_modules(module.__path__):
        version = importlib.import_module(f"{package}.{info.name}")
        unit = getattr(version, "MIGRATION", None)
        if unit is None:
            logger.debug(f"Module {info.name} defines no MIGRATION, ignored")
            continue
        units.append(unit)
    return sort_migrations(units)


def sort_migrations(units: Iterable[Migration]) -> List[Migration]:
    ordered = sorted(units, key=lambda unit: unit.sequence)
    seen_sequences: Dict[int, str] = {}
    seen_names = set()
    for unit in ordered:
        if unit.sequence in seen_sequences:
            raise ValueError(
                f"Duplicate migration sequence {unit.sequence}: "
                f"{seen_sequences[unit.sequence]} and {unit.name}"
            )
        if unit.name in seen_names:
            raise ValueError(f"Duplicate migration name {unit.name}")
        seen_sequences[unit.sequence] = unit.name
        seen_names.add(unit.name)
    return ordered


class MigrationLock:
    """
    Advisory lock file next to the database.

    Only one runner may migrate a database file at a time; the serving process
    is expected to stay down meanwhile.
    """

    def __init__(self, db_file: Optional[Path]):
        self.path = None if db_file is None else db_file.with_name(db_file.name + ".lock")
        self._held = False

    def acquire(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            holder = self.holder()
            owner = f"process {holder}" if holder else "another process"
            raise MigrationLocked(
                f"Migration lock {self.path} is held by {owner}. "
                "Remove it only if no other migration is running."
            )
        with os.fdopen(fd, "w") as handle:
            handle.write(str(os.getpid()))
        self._held = True

    def holder(self) -> Optional[str]:
        """PID written by the process holding the lock, if readable."""
        try:
            return self.path.read_text().strip() or None
        except OSError:
            return None

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class MigrationRunner:
    """
    Applies and reverses migration units against one database.

    Example:
        runner = MigrationRunner(SqlClient("sqlite:///data/record.db"))
        runner.up()
        runner.status()
    """

    def __init__(
        self,
        db: DatabaseClient,
        migrations: Optional[List[Migration]] = None,
        diagnostics: Optional[DiagnosticLog] = None
    ):
        """
        Args:
            db: Database client; the runner owns its transactions
            migrations: Units to manage (default: everything in
                ``recordkit.migrations.versions``)
            diagnostics: Shared log for data-quality findings
        """
        self.db = db
        self.migrations = sort_migrations(migrations) if migrations is not None else discover_migrations()
        self.diagnostics = ensure_log(diagnostics)
        self.store = SchemaStore(db, self.diagnostics)

    def _lock(self) -> MigrationLock:
        return MigrationLock(getattr(self.db, "database_file", None))

    # =========================================================================
    # TRACKING TABLE
    # =========================================================================

    def _ensure_tracking_table(self) -> None:
        self.db.begin_transaction()
        try:
            self.store.create_table(MIGRATIONS_TABLE, MIGRATIONS_DDL)
            self.db.commit_transaction()
        except Exception:
            self.db.rollback_transaction()
            raise

    def applied(self) -> Dict[str, Optional[str]]:
        """Map of applied unit name → applied_at."""
        self._ensure_tracking_table()
        with self.db.transaction():
            rows = self.db.fetch_all(
                f"SELECT name, applied_at FROM {MIGRATIONS_TABLE} ORDER BY sequence"
            )
        return {row["name"]: row["applied_at"] for row in rows}

    def pending(self) -> List[Migration]:
        done = self.applied()
        return [unit for unit in self.migrations if unit.name not in done]

    def status(self) -> List[MigrationStatus]:
        done = self.applied()
        return [
            MigrationStatus(
                sequence=unit.sequence,
                name=unit.name,
                applied=unit.name in done,
                applied_at=done.get(unit.name),
            )
            for unit in self.migrations
        ]

    # =========================================================================
    # SINGLE UNITS
    # =========================================================================

    def apply(self, unit: Migration) -> None:
        """Run ``unit.up`` and record it, all in one transaction."""
        logger.info(f"Applying {unit.label}")
        self.db.begin_transaction()
        try:
            unit.up(self.store)
            self.db.execute(
                f"INSERT INTO {MIGRATIONS_TABLE} (sequence, name) VALUES (:sequence, :name)",
                {"sequence": unit.sequence, "name": unit.name},
            )
            self.db.commit_transaction()
        except Exception as e:
            self.db.rollback_transaction()
            logger.error(f"Migration {unit.label} failed: {e}", exc_info=True)
            raise MigrationError(unit.label, e) from e
        logger.info(f"Applied {unit.label}")

    def revert(self, unit: Migration) -> None:
        """Run ``unit.down`` and drop its record, all in one transaction."""
        logger.info(f"Reverting {unit.label}")
        self.db.begin_transaction()
        try:
            unit.down(self.store)
            self.db.execute(
                f"DELETE FROM {MIGRATIONS_TABLE} WHERE name = :name",
                {"name": unit.name},
            )
            self.db.commit_transaction()
        except Exception as e:
            self.db.rollback_transaction()
            logger.error(f"Reverting {unit.label} failed: {e}", exc_info=True)
            raise MigrationError(unit.label, e) from e
        logger.info(f"Reverted {unit.label}")

    # =========================================================================
    # BATCHES
    # =========================================================================

    def up(self, target: Optional[int] = None) -> List[Migration]:
        """
        Apply every pending unit in ascending order.

        Args:
            target: Stop after the unit with this sequence number

        Returns:
            Units applied during this call

        Raises:
            MigrationError: A unit failed; it was rolled back and the run stopped
            MigrationLocked: Another runner holds the lock
        """
        applied = []
        with self._lock():
            for unit in self.pending():
                if target is not None and unit.sequence > target:
                    break
                self.apply(unit)
                applied.append(unit)

        if applied:
            logger.info(f"Applied {len(applied)} migration(s)")
        else:
            logger.info("Database is up to date")
        if self.diagnostics:
            logger.info(f"Data-quality diagnostics: {self.diagnostics.summary()}")
        return applied

    def down(self, steps: int = 1, names: Optional[List[str]] = None) -> List[Migration]:
        """
        Reverse applied units, most recent first.

        Args:
            steps: How many of the most recently applied units to reverse
            names: Reverse exactly these units instead (still in descending order)

        Returns:
            Units reverted during this call
        """
        done = self.applied()
        candidates = [unit for unit in reversed(self.migrations) if unit.name in done]
        if names is not None:
            unknown = set(names) - {unit.name for unit in candidates}
            if unknown:
                raise ValueError(f"Not applied or unknown migrations: {sorted(unknown)}")
            selected = [unit for unit in candidates if unit.name in names]
        else:
            selected = candidates[:steps]

        reverted = []
        with self._lock():
            for unit in selected:
                self.revert(unit)
                reverted.append(unit)

        if not reverted:
            logger.info("No applied migrations to revert")
        return reverted
