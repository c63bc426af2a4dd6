"""Customers and contacts from the legacy jobs table, with usage counters."""

from recordkit.identity import IdentityResolver
from recordkit.migrations.runner import Migration


def up(store):
    if not store.has_tables("jobs"):
        return
    resolver = IdentityResolver(store.db, store.diagnostics)
    resolver.extract_customers()
    resolver.extract_contacts()


def down(store):
    store.db.execute("DELETE FROM customer_contact")
    store.db.execute("DELETE FROM customer")


MIGRATION = Migration(sequence=4, name="extract_customers", up=up, down=down)
