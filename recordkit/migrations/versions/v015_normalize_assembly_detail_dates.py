"""ISO delivery dates in assembly_detail."""

from recordkit.dates import DateNormalizer
from recordkit.migrations.runner import Migration


def up(store):
    DateNormalizer(store).normalize_column("assembly_detail", "delivery_required_date", key="id")


def down(store):
    DateNormalizer(store).restore_column("assembly_detail", "delivery_required_date")


MIGRATION = Migration(sequence=15, name="normalize_assembly_detail_dates", up=up, down=down)
