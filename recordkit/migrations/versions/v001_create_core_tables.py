"""Create the normalized tables."""

from recordkit.migrations.runner import Migration
from recordkit.schema import CORE_TABLES


def up(store):
    for name, ddl in CORE_TABLES:
        store.create_table(name, ddl)


def down(store):
    for name, _ in reversed(CORE_TABLES):
        store.drop_table(name)


MIGRATION = Migration(sequence=1, name="create_core_tables", up=up, down=down)
