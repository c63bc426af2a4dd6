"""Verified customer folder aliases from the legacy customer_folder_map."""

from recordkit.locations import sync_folder_mapping
from recordkit.migrations.runner import Migration


def up(store):
    if not store.has_tables("customer_folder_map"):
        return
    sync_folder_mapping(store.db)


def down(store):
    if not store.has_tables("customer_folder_map"):
        return
    store.db.execute("""
        DELETE FROM folder_mapping
        WHERE is_verified = 1 AND EXISTS (
            SELECT 1 FROM customer_folder_map m
            JOIN customer c ON c.customer_name = TRIM(m.customer_name)
            WHERE c.id = folder_mapping.customer_id
              AND TRIM(m.folder_name) = folder_mapping.folder_name
        )
    """)


MIGRATION = Migration(sequence=11, name="populate_folder_mapping", up=up, down=down)
