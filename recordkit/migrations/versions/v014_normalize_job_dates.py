"""ISO dates in the legacy jobs table (originals kept as <column>_old)."""

from recordkit.dates import DateNormalizer, normalize_date, normalize_slash_date
from recordkit.migrations.runner import Migration

COLUMNS = [
    ("delivery_required_date", normalize_date),
    ("drawing_release", normalize_slash_date),
    ("delivery_shipped_date", normalize_slash_date),
]


def up(store):
    normalizer = DateNormalizer(store)
    for column, converter in COLUMNS:
        normalizer.normalize_column("jobs", column, key="job_id", converter=converter)


def down(store):
    normalizer = DateNormalizer(store)
    for column, _ in reversed(COLUMNS):
        normalizer.restore_column("jobs", column)


MIGRATION = Migration(sequence=14, name="normalize_job_dates", up=up, down=down)
