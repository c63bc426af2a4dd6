"""Create detail_drawing and assembly_detail."""

from recordkit.migrations.runner import Migration
from recordkit.schema import DETAIL_TABLES


def up(store):
    for name, ddl in DETAIL_TABLES:
        store.create_table(name, ddl)


def down(store):
    for name, _ in reversed(DETAIL_TABLES):
        store.drop_table(name)


MIGRATION = Migration(sequence=2, name="create_detail_tables", up=up, down=down)
