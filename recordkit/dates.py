"""
Date normalization for legacy free-text date columns.

Legacy rows store dates as ``21-Mar-25`` (order entry screens), ``3/21/25``
(drawing release / shipping columns) or already as ISO text. Everything is
converted to ISO-8601 ``YYYY-MM-DD`` or None. Conversion never raises and never
guesses: a value that does not fit a known shape becomes None.

Two-digit years follow the fixed historical pivot: ``YY <= 30`` → 20YY,
otherwise 19YY. The pivot is not derived from the current date.
"""

import logging
import re
from typing import Any, Callable, Optional

from .store.schema_store import SchemaStore

logger = logging.getLogger(__name__)

MONTHS = {
    "Jan": "01", "Feb": "02", "Mar": "03", "Apr": "04",
    "May": "05", "Jun": "06", "Jul": "07", "Aug": "08",
    "Sep": "09", "Oct": "10", "Nov": "11", "Dec": "12",
}

YEAR_PIVOT = 30

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DAY_MON_YY = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{2})$")
SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")

# Values mistyped in the legacy drawing_release column, mapped to what the
# operators meant
KNOWN_CORRECTIONS = {
    "0109/25": "01/09/25",
    "02/1125": "02/11/25",
    "62/25": "6/2/25",
}


def expand_year(two_digit: str) -> int:
    year = int(two_digit)
    return 2000 + year if year <= YEAR_PIVOT else 1900 + year


def normalize_date(value: Any) -> Optional[str]:
    """Convert ``D-Mon-YY`` or ISO text to ``YYYY-MM-DD``; anything else → None.

    >>> normalize_date("21-Mar-25")
    '2025-03-21'
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if ISO_DATE.match(text):
        return text

    match = DAY_MON_YY.match(text)
    if match:
        day, month_name, year = match.groups()
        month = MONTHS.get(month_name)
        if month is None:
            return None
        return f"{expand_year(year)}-{month}-{int(day):02d}"

    return None


def normalize_slash_date(value: Any) -> Optional[str]:
    """Convert ``M/D/YY`` (or ISO) text to ``YYYY-MM-DD``; anything else → None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if ISO_DATE.match(text):
        return text

    text = KNOWN_CORRECTIONS.get(text, text)
    match = SLASH_DATE.match(text)
    if not match:
        return None
    month, day, year = int(match.group(1)), int(match.group(2)), match.group(3)
    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    return f"{expand_year(year)}-{month:02d}-{day:02d}"


def normalize_any_date(value: Any) -> Optional[str]:
    """Try the ``D-Mon-YY`` rules first, then ``M/D/YY``."""
    return normalize_date(value) or normalize_slash_date(value)


class DateNormalizer:
    """Reformats legacy date columns in place, keeping the original as ``<column>_old``."""

    def __init__(self, store: SchemaStore):
        self.store = store

    def normalize_column(
        self,
        table: str,
        column: str,
        key: str,
        converter: Callable[[Any], Optional[str]] = normalize_date
    ) -> bool:
        """Convert every value of ``table.column``; no-op if already converted."""
        if not self.store.has_table(table):
            logger.info(f"Table {table} not present, skipping date normalization of {column}")
            return False
        return self.store.migrate_column(table, column, converter, key=key)

    def restore_column(self, table: str, column: str) -> bool:
        """Bring back the original text saved in ``<column>_old``."""
        if not self.store.has_table(table):
            return False
        return self.store.revert_column(table, column)
