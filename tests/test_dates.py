"""
Unit tests for legacy date normalization.

These tests verify that:
1. D-Mon-YY and M/D/YY values become ISO dates with the fixed year pivot
2. Unrecognized values become None instead of raising
3. Column normalization keeps the original text and can be reverted
"""

import pytest

from recordkit.dates import (
    DateNormalizer,
    expand_year,
    normalize_any_date,
    normalize_date,
    normalize_slash_date,
)


# =============================================================================
# VALUE CONVERSION
# =============================================================================

class TestNormalizeDate:

    @pytest.mark.parametrize("value, expected", [
        ("21-Mar-25", "2025-03-21"),
        ("1-Jan-31", "1931-01-01"),
        ("5-Jun-30", "2030-06-05"),
        ("10-Aug-26", "2026-08-10"),
        ("09-Dec-99", "1999-12-09"),
        ("2024-11-02", "2024-11-02"),
        (" 7-Feb-24 ", "2024-02-07"),
    ])
    def test_known_shapes(self, value, expected):
        assert normalize_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "garbage", "21-Foo-25", "3/21/25", "21-Mar-2025"])
    def test_unknown_shapes_become_none(self, value):
        assert normalize_date(value) is None

    def test_year_pivot_is_fixed(self):
        assert expand_year("30") == 2030
        assert expand_year("31") == 1931
        assert expand_year("00") == 2000


class TestNormalizeSlashDate:

    @pytest.mark.parametrize("value, expected", [
        ("3/21/25", "2025-03-21"),
        ("12/1/98", "1998-12-01"),
        ("2025-01-09", "2025-01-09"),
    ])
    def test_known_shapes(self, value, expected):
        assert normalize_slash_date(value) == expected

    @pytest.mark.parametrize("value, expected", [
        ("0109/25", "2025-01-09"),
        ("02/1125", "2025-02-11"),
        ("62/25", "2025-06-02"),
    ])
    def test_known_corrupted_values(self, value, expected):
        assert normalize_slash_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "13/1/25", "1/32/25", "1/2/2025", "TBD"])
    def test_invalid_values_become_none(self, value):
        assert normalize_slash_date(value) is None

    def test_any_date_tries_both_shapes(self):
        assert normalize_any_date("21-Mar-25") == "2025-03-21"
        assert normalize_any_date("3/21/25") == "2025-03-21"
        assert normalize_any_date("soon") is None


# =============================================================================
# COLUMN NORMALIZATION
# =============================================================================

class TestDateNormalizer:

    def test_normalize_column_keeps_backup(self, schema, client, add_job):
        """Converted values replace the column; originals move to <column>_old."""
        first = add_job(delivery_required_date="21-Mar-25")
        second = add_job(job_number="JOB-2", delivery_required_date="not a date")

        assert DateNormalizer(schema).normalize_column("jobs", "delivery_required_date", key="job_id") is True

        rows = {
            row["job_id"]: row
            for row in client.fetch_all("SELECT job_id, delivery_required_date, delivery_required_date_old FROM jobs")
        }
        assert rows[first]["delivery_required_date"] == "2025-03-21"
        assert rows[first]["delivery_required_date_old"] == "21-Mar-25"
        assert rows[second]["delivery_required_date"] is None
        assert rows[second]["delivery_required_date_old"] == "not a date"

    def test_normalize_column_twice_is_noop(self, schema, client, add_job):
        add_job()
        normalizer = DateNormalizer(schema)
        normalizer.normalize_column("jobs", "delivery_required_date", key="job_id")

        assert normalizer.normalize_column("jobs", "delivery_required_date", key="job_id") is False
        assert client.fetch_value("SELECT delivery_required_date FROM jobs") == "2025-03-21"

    def test_restore_column(self, schema, client, add_job):
        add_job(drawing_release="3/21/25")
        normalizer = DateNormalizer(schema)
        normalizer.normalize_column("jobs", "drawing_release", key="job_id", converter=normalize_slash_date)
        assert client.fetch_value("SELECT drawing_release FROM jobs") == "2025-03-21"

        assert normalizer.restore_column("jobs", "drawing_release") is True

        assert client.fetch_value("SELECT drawing_release FROM jobs") == "3/21/25"
        assert not schema.has_column("jobs", "drawing_release_old")
        assert not schema.has_column("jobs", "drawing_release_new")

    def test_missing_table_is_skipped(self, store):
        normalizer = DateNormalizer(store)
        assert normalizer.normalize_column("jobs", "delivery_required_date", key="job_id") is False
        assert normalizer.restore_column("jobs", "delivery_required_date") is False
