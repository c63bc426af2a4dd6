"""Reading external identifier feeds (CSV or spreadsheet exports)."""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Set

from .adapters import CsvAdapter, ExcelAdapter

logger = logging.getLogger(__name__)

# Header spellings of the order-entry number column seen in exports
OE_COLUMN_ALIASES = ["o.e.", "oe", "oe number", "oe no", "oe#", "order entry", "order entry number"]

# Column used when no header matches: the O.E. export keeps it second
OE_COLUMN_INDEX = 1


def normalize_header(name: Any) -> str:
    """Lower-case, trim, and collapse whitespace/underscores/dashes."""
    if name is None:
        return ""
    return re.sub(r'[\s_\-]+', ' ', str(name).lower().strip())


def cell_text(value: Any) -> Optional[str]:
    """Spreadsheet cell → identifier text (``38848.0`` → ``"38848"``)."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


class FeedReader:
    """Reads tabular feeds through registered adapters."""

    def __init__(self):
        self.adapters = []

    def register_adapter(self, adapter):
        """Register an adapter with can_handle() and read() methods."""
        self.adapters.append(adapter)

    @classmethod
    def default(cls) -> "FeedReader":
        reader = cls()
        reader.register_adapter(CsvAdapter())
        reader.register_adapter(ExcelAdapter())
        return reader

    def read(self, file_path: str) -> List[Dict[str, Any]]:
        """
        Raises:
            ValueError: If no adapter handles the file
        """
        for adapter in self.adapters:
            if adapter.can_handle(file_path):
                return adapter.read(file_path)
        raise ValueError(f"No adapter found for {file_path}")

    def read_identifiers(
        self,
        file_path: str,
        aliases: Sequence[str] = OE_COLUMN_ALIASES,
        column_index: int = OE_COLUMN_INDEX
    ) -> Set[str]:
        """
        Collect the distinct identifiers of one column.

        The column is the first header matching ``aliases``; without one the
        column at ``column_index`` is used.

        Args:
            file_path: CSV/TSV/XLSX file
            aliases: Accepted header spellings
            column_index: Fallback zero-based column position

        Returns:
            Set of non-empty identifier strings
        """
        rows = self.read(file_path)
        if not rows:
            logger.warning(f"Feed {file_path} has no rows")
            return set()

        headers = list(rows[0].keys())
        wanted = {normalize_header(alias) for alias in aliases}
        column = next((header for header in headers if normalize_header(header) in wanted), None)
        if column is None:
            if column_index >= len(headers):
                raise ValueError(
                    f"Feed {file_path} has {len(headers)} columns; no identifier column found"
                )
            column = headers[column_index]
            logger.info(f"No identifier header in {file_path}; using column {column_index} ({column!r})")

        identifiers = {cell_text(row.get(column)) for row in rows}
        identifiers.discard(None)
        logger.info(f"Read {len(identifiers)} identifiers from {file_path}")
        return identifiers


def load_oe_numbers(file_path: str) -> Set[str]:
    """Authoritative order-entry numbers from a CSV or XLSX export."""
    return FeedReader.default().read_identifiers(file_path)
