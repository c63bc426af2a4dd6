"""Purchase orders, jobs, parts and order items; unique_key on legacy rows."""

from recordkit.identity import IdentityResolver
from recordkit.migrations.runner import Migration


def up(store):
    if not store.has_tables("jobs"):
        return
    resolver = IdentityResolver(store.db, store.diagnostics)
    resolver.resolve_orders()
    resolver.backfill_legacy_unique_keys()


def down(store):
    store.db.execute("DELETE FROM order_item")
    store.db.execute("DELETE FROM job")
    store.db.execute("DELETE FROM purchase_order")
    store.db.execute("DELETE FROM part WHERE id NOT IN (SELECT parent_id FROM part_tree UNION SELECT child_id FROM part_tree)")
    if store.has_column("jobs", "unique_key"):
        store.db.execute("UPDATE jobs SET unique_key = NULL")


MIGRATION = Migration(sequence=5, name="resolve_orders", up=up, down=down)
