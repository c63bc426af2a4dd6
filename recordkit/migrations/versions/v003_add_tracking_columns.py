"""Add identity and location columns to legacy jobs and to assembly_detail."""

from recordkit.migrations.runner import Migration

JOBS_COLUMNS = [
    ("unique_key", "TEXT", None),
    ("file_location", "TEXT", None),
    ("has_assembly_details", "INTEGER", 0),
]


def up(store):
    if store.has_tables("jobs"):
        for column, type_sql, default in JOBS_COLUMNS:
            store.add_column("jobs", column, type_sql, default=default)
    store.add_column("assembly_detail", "unique_key", "TEXT")


def down(store):
    store.drop_column("assembly_detail", "unique_key")
    if store.has_tables("jobs"):
        for column, _, _ in reversed(JOBS_COLUMNS):
            store.drop_column("jobs", column)


MIGRATION = Migration(sequence=3, name="add_tracking_columns", up=up, down=down)
