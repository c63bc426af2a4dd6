"""Copy the owning job's unique_key onto assembly_detail rows."""

from recordkit.identity import IdentityResolver
from recordkit.migrations.runner import Migration


def up(store):
    if not store.has_tables("jobs") or not store.has_column("jobs", "unique_key"):
        return
    IdentityResolver(store.db, store.diagnostics).backfill_detail_unique_keys("assembly_detail")


def down(store):
    store.db.execute("UPDATE assembly_detail SET unique_key = NULL")


MIGRATION = Migration(sequence=10, name="copy_unique_keys", up=up, down=down)
