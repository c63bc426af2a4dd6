"""Lookup indexes for the API layer."""

from recordkit.migrations.runner import Migration
from recordkit.schema import INDEXES


def up(store):
    for name, table, columns in INDEXES:
        if store.has_tables(table) and all(store.has_column(table, column) for column in columns):
            store.create_index(name, table, columns)


def down(store):
    for name, table, _ in reversed(INDEXES):
        store.drop_index(name, table)


MIGRATION = Migration(sequence=16, name="create_indexes", up=up, down=down)
