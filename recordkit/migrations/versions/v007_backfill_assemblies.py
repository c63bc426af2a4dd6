"""Make sure every assembly part number from jobs is in the assemblies table."""

from recordkit.assembly import AssemblyGraphBuilder
from recordkit.migrations.runner import Migration


def up(store):
    if not store.has_tables("jobs", "assemblies"):
        return
    AssemblyGraphBuilder(store.db, store.diagnostics).backfill_missing_assemblies()


def down(store):
    if not store.has_tables("assemblies"):
        return
    AssemblyGraphBuilder(store.db, store.diagnostics).remove_backfilled_assemblies()


MIGRATION = Migration(sequence=7, name="backfill_assemblies", up=up, down=down)
