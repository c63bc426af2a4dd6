"""Resolve file_location for legacy jobs and assembly_detail rows."""

from recordkit.locations import FolderAliases, FuzzyLocationMatcher, LegacyDrawingIndex
from recordkit.migrations.runner import Migration


def up(store):
    if not store.has_tables("drawings"):
        return
    matcher = FuzzyLocationMatcher(
        LegacyDrawingIndex(store.db),
        FolderAliases.from_database(store.db),
        store.diagnostics,
    )
    if store.has_column("jobs", "file_location"):
        matcher.backfill_job_locations(store.db)
    matcher.backfill_assembly_locations(store.db)


def down(store):
    if store.has_column("jobs", "file_location"):
        store.db.execute("UPDATE jobs SET file_location = NULL")
    store.db.execute("UPDATE assembly_detail SET file_location = NULL")


MIGRATION = Migration(sequence=12, name="backfill_file_locations", up=up, down=down)
