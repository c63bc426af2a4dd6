"""Parts and part_tree edges from assemblies; assembly flags and cycle report."""

from recordkit.assembly import AssemblyGraphBuilder
from recordkit.migrations.runner import Migration


def up(store):
    builder = AssemblyGraphBuilder(store.db, store.diagnostics)
    if store.has_tables("assemblies"):
        builder.build_part_tree()
    builder.reclassify_parts()
    builder.find_cycles()


def down(store):
    store.db.execute("DELETE FROM part_tree")
    store.db.execute("UPDATE part SET has_parent = NULL")
    store.db.execute(
        "DELETE FROM part WHERE id NOT IN (SELECT part_id FROM order_item WHERE part_id IS NOT NULL)"
    )


MIGRATION = Migration(sequence=9, name="build_part_tree", up=up, down=down)
