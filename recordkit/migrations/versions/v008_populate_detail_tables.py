"""detail_drawing and assembly_detail from assemblies, with assembly root rows."""

from recordkit.assembly import AssemblyGraphBuilder
from recordkit.migrations.runner import Migration


def up(store):
    if not store.has_tables("jobs", "assemblies"):
        return
    builder = AssemblyGraphBuilder(store.db, store.diagnostics)
    builder.populate_detail_tables()
    builder.ensure_self_references()
    builder.mark_jobs_with_details()


def down(store):
    store.db.execute("DELETE FROM assembly_detail")
    store.db.execute("DELETE FROM detail_drawing")
    if store.has_column("jobs", "has_assembly_details"):
        store.db.execute("UPDATE jobs SET has_assembly_details = 0")


MIGRATION = Migration(sequence=8, name="populate_detail_tables", up=up, down=down)
