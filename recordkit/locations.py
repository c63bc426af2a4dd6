"""
Drawing location matching.

Resolves a drawing or part number (optionally with a customer name) to one
file-system location. The strategy is strictly tiered and the first tier that
produces a location wins:

1. Exact: an index entry whose drawing number equals the query.
2. Customer-scoped fuzzy: entries whose indexed name contains the query
   (SQL ``LIKE '%query%'``), in ascending name order, keeping only those whose
   path contains the customer name or the customer's folder alias
   (case-insensitive).
3. Unscoped fuzzy: the first entry of the same search. Only used when no
   customer is known; a customer whose folders hold no candidate gets None.

Matching is plain substring/equality search. Candidate order
comes from the index (name, then a stable row id), so the result is the same
for a fixed database state.

``match_location`` is a pure function over a ``CandidateIndex``; the indexes
below adapt the legacy ``drawings`` table, the ``drawing_file`` table or a plain
list of candidates.
"""

import logging
import string
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .diagnostics import DiagnosticLog, IssueKind, ensure_log
from .store.client import DatabaseClient

logger = logging.getLogger(__name__)

# SQLite LIKE folds ASCII letters only
_ASCII_FOLD = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def like_contains(haystack: str, needle: str) -> bool:
    """Python equivalent of ``haystack LIKE '%needle%'`` for plain text."""
    return needle.translate(_ASCII_FOLD) in haystack.translate(_ASCII_FOLD)


class MatchTier(Enum):
    """How a location was found."""
    STORED = auto()    # Association saved by an earlier match
    EXACT = auto()     # drawing_number equals the query
    SCOPED = auto()    # Substring match inside the customer's folders
    UNSCOPED = auto()  # Substring match, no customer known


@dataclass(frozen=True)
class Candidate:
    """One entry of a file index."""
    name: str
    location: Optional[str]
    drawing_number: Optional[str] = None
    file_id: Optional[int] = None
    part_id: Optional[int] = None


@dataclass(frozen=True)
class LocationMatch:
    location: str
    tier: MatchTier
    candidate: Candidate


# =============================================================================
# CANDIDATE INDEXES
# =============================================================================

class CandidateIndex:
    """
    Abstract source of location candidates.

    ``search`` must return entries in a deterministic order: ascending indexed
    name, ties broken by a stable row id.
    """

    def exact(self, query: str) -> List[Candidate]:
        """Entries whose drawing number equals ``query``."""
        raise NotImplementedError

    def search(self, query: str) -> List[Candidate]:
        """Entries whose indexed name contains ``query``."""
        raise NotImplementedError

    def stored(self, part_id: int) -> Optional[Candidate]:
        """Previously saved association for a part, if the index keeps any."""
        return None

    def associate(self, candidate: Candidate, part_id: int) -> bool:
        """Save a discovered association. Returns True if something was written."""
        return False


class InMemoryCandidateIndex(CandidateIndex):
    """Candidates held in a list; mirrors the SQL indexes' matching and order."""

    def __init__(self, candidates: Iterable[Candidate]):
        self._entries = list(candidates)
        self._associations: Dict[int, Candidate] = {}

    def exact(self, query: str) -> List[Candidate]:
        return [entry for entry in self._entries if entry.drawing_number == query]

    def search(self, query: str) -> List[Candidate]:
        ordered = sorted(enumerate(self._entries), key=lambda pair: (pair[1].name, pair[0]))
        return [entry for _, entry in ordered if like_contains(entry.name, query)]

    def stored(self, part_id: int) -> Optional[Candidate]:
        return self._associations.get(part_id)

    def associate(self, candidate: Candidate, part_id: int) -> bool:
        if part_id in self._associations:
            return False
        self._associations[part_id] = candidate
        return True


class LegacyDrawingIndex(CandidateIndex):
    """The legacy ``drawings`` table (drawing_number, drawing_name, file_location)."""

    def __init__(self, db: DatabaseClient):
        self.db = db

    @staticmethod
    def _candidate(row) -> Candidate:
        return Candidate(
            name=row["drawing_name"] or "",
            location=row["file_location"],
            drawing_number=row["drawing_number"],
        )

    def exact(self, query: str) -> List[Candidate]:
        rows = self.db.fetch_all(
            """
            SELECT drawing_number, drawing_name, file_location FROM drawings
            WHERE drawing_number = :query
            ORDER BY rowid
            """,
            {"query": query},
        )
        return [self._candidate(row) for row in rows]

    def search(self, query: str) -> List[Candidate]:
        rows = self.db.fetch_all(
            """
            SELECT drawing_number, drawing_name, file_location FROM drawings
            WHERE drawing_name LIKE :pattern
            ORDER BY drawing_name, rowid
            """,
            {"pattern": f"%{query}%"},
        )
        return [self._candidate(row) for row in rows]


class DrawingFileIndex(CandidateIndex):
    """
    The ``drawing_file`` table.

    Exact matches are files already linked to a part with that drawing
    number. Fuzzy matches search active files by file name.
    """

    def __init__(self, db: DatabaseClient):
        self.db = db

    @staticmethod
    def _candidate(row, drawing_number: Optional[str] = None) -> Candidate:
        return Candidate(
            name=row["file_name"],
            location=row["file_path"],
            drawing_number=drawing_number,
            file_id=row["id"],
            part_id=row["part_id"],
        )

    def exact(self, query: str) -> List[Candidate]:
        rows = self.db.fetch_all(
            """
            SELECT df.id, df.file_name, df.file_path, df.part_id
            FROM drawing_file df
            JOIN part p ON p.id = df.part_id
            WHERE p.drawing_number = :query
            ORDER BY df.is_active DESC, df.id
            """,
            {"query": query},
        )
        return [self._candidate(row, query) for row in rows]

    def search(self, query: str) -> List[Candidate]:
        rows = self.db.fetch_all(
            """
            SELECT id, file_name, file_path, part_id FROM drawing_file
            WHERE is_active = 1 AND file_name LIKE :pattern
            ORDER BY file_name, id
            """,
            {"pattern": f"%{query}%"},
        )
        return [self._candidate(row) for row in rows]

    def stored(self, part_id: int) -> Optional[Candidate]:
        row = self.db.fetch_one(
            """
            SELECT id, file_name, file_path, part_id FROM drawing_file
            WHERE part_id = :part_id
            ORDER BY is_active DESC, id
            LIMIT 1
            """,
            {"part_id": part_id},
        )
        return self._candidate(row) if row else None

    def associate(self, candidate: Candidate, part_id: int) -> bool:
        if candidate.file_id is None:
            return False
        with self.db.savepoint():
            updated = self.db.execute(
                """
                UPDATE drawing_file
                SET part_id = :part_id, updated_at = datetime('now','localtime')
                WHERE id = :file_id AND part_id IS NULL
                """,
                {"part_id": part_id, "file_id": candidate.file_id},
            )
        return updated > 0


# =============================================================================
# CUSTOMER FOLDER ALIASES
# =============================================================================

class FolderAliases:
    """
    Customer name → folder name lookup.

    When a customer has no alias the raw name is the only scoping term.
    """

    def __init__(self, mapping: Optional[Dict[str, str]] = None):
        self._mapping: Dict[str, str] = {}
        for customer, folder in (mapping or {}).items():
            self.add(customer, folder)

    def add(self, customer: str, folder: str) -> None:
        customer = (customer or "").strip()
        folder = (folder or "").strip()
        if customer and folder:
            self._mapping.setdefault(customer, folder)

    @classmethod
    def from_database(cls, db: DatabaseClient) -> "FolderAliases":
        """Load aliases from customer_folder_map, then verified folder_mapping rows."""
        aliases = cls()
        tables = set(db.inspector().get_table_names())
        if "customer_folder_map" in tables:
            for row in db.fetch_all(
                "SELECT customer_name, folder_name FROM customer_folder_map ORDER BY rowid"
            ):
                aliases.add(row["customer_name"], row["folder_name"])
        if "folder_mapping" in tables and "customer" in tables:
            for row in db.fetch_all("""
                SELECT c.customer_name, fm.folder_name
                FROM folder_mapping fm
                JOIN customer c ON c.id = fm.customer_id
                WHERE fm.is_verified = 1
                ORDER BY fm.id
            """):
                aliases.add(row["customer_name"], row["folder_name"])
        return aliases

    def alias_for(self, customer: str) -> Optional[str]:
        return self._mapping.get((customer or "").strip())

    def scoping_terms(self, customer: str) -> List[str]:
        customer = (customer or "").strip()
        terms = [customer.lower()] if customer else []
        alias = self.alias_for(customer)
        if alias and alias.lower() not in terms:
            terms.append(alias.lower())
        return terms

    def items(self):
        return self._mapping.items()

    def __len__(self) -> int:
        return len(self._mapping)


def sync_folder_mapping(db: DatabaseClient) -> int:
    """
    Copy legacy customer_folder_map aliases into folder_mapping as verified rows.

    Aliases for customers that do not exist are skipped.

    Returns:
        Number of rows inserted
    """
    inserted = 0
    for row in db.fetch_all("""
        SELECT TRIM(m.customer_name) AS customer_name, TRIM(m.folder_name) AS folder_name, c.id AS customer_id
        FROM customer_folder_map m
        LEFT JOIN customer c ON c.customer_name = TRIM(m.customer_name)
        WHERE m.folder_name IS NOT NULL AND TRIM(m.folder_name) != ''
        ORDER BY m.rowid
    """):
        if row["customer_id"] is None:
            logger.info(f"No customer named {row['customer_name']!r}; alias {row['folder_name']!r} skipped")
            continue
        exists = db.fetch_value(
            "SELECT 1 FROM folder_mapping WHERE customer_id = :cid AND folder_name = :folder",
            {"cid": row["customer_id"], "folder": row["folder_name"]},
        )
        if exists:
            continue
        db.insert("folder_mapping", {
            "customer_id": row["customer_id"],
            "folder_name": row["folder_name"],
            "is_verified": 1,
        })
        inserted += 1
    logger.info(f"folder_mapping: {inserted} aliases inserted")
    return inserted


# =============================================================================
# MATCHING
# =============================================================================

def match_location(
    query: Optional[str],
    customer_hint: Optional[str],
    index: CandidateIndex,
    aliases: Optional[FolderAliases] = None
) -> Optional[LocationMatch]:
    """
    Resolve ``query`` to a single location, or None.

    Args:
        query: Drawing or part number
        customer_hint: Customer name, if known; restricts fuzzy matches
        index: Candidate source
        aliases: Customer → folder alias lookup

    Returns:
        The first hit of the exact / scoped / unscoped tiers
    """
    query = (query or "").strip()
    if not query:
        return None

    # Tier 1: exact
    for candidate in index.exact(query):
        if candidate.location:
            return LocationMatch(candidate.location, MatchTier.EXACT, candidate)

    candidates = [candidate for candidate in index.search(query) if candidate.location]
    customer = (customer_hint or "").strip()

    # Tier 2: customer-scoped fuzzy
    if customer:
        terms = (aliases or FolderAliases()).scoping_terms(customer)
        for candidate in candidates:
            path = candidate.location.lower()
            if any(term in path for term in terms):
                return LocationMatch(candidate.location, MatchTier.SCOPED, candidate)
        return None

    # Tier 3: unscoped fuzzy
    if candidates:
        return LocationMatch(candidates[0].location, MatchTier.UNSCOPED, candidates[0])
    return None


class FuzzyLocationMatcher:
    """Tiered location matcher with association persistence and backfills."""

    def __init__(
        self,
        index: CandidateIndex,
        aliases: Optional[FolderAliases] = None,
        diagnostics: Optional[DiagnosticLog] = None
    ):
        self.index = index
        self.aliases = aliases or FolderAliases()
        self.diagnostics = ensure_log(diagnostics)

    def locate(self, query: Optional[str], customer: Optional[str] = None) -> Optional[LocationMatch]:
        match = match_location(query, customer, self.index, self.aliases)
        if match is not None:
            logger.debug(f"{query!r} ({customer or 'no customer'}) → {match.location} [{match.tier.name}]")
        return match

    def locate_for_part(
        self,
        part_id: int,
        drawing_number: str,
        customer: Optional[str] = None
    ) -> Optional[LocationMatch]:
        """
        Locate the drawing of a stored part.

        A saved association answers directly. Otherwise the tiered match runs
        and its result is saved for next time; failing to save is logged and
        does not affect the returned match.
        """
        stored = self.index.stored(part_id)
        if stored is not None and stored.location:
            return LocationMatch(stored.location, MatchTier.STORED, stored)

        match = self.locate(drawing_number, customer)
        if match is None or match.candidate.part_id is not None:
            return match

        try:
            if self.index.associate(match.candidate, part_id):
                logger.info(f"Linked part {part_id} ({drawing_number}) to {match.location}")
        except SQLAlchemyError as e:
            logger.warning(f"Could not save drawing association for part {part_id}: {e}")
        return match

    # =========================================================================
    # BACKFILLS
    # =========================================================================

    def backfill_job_locations(self, db: DatabaseClient) -> int:
        """Fill empty jobs.file_location from part number and customer."""
        rows = db.fetch_all("""
            SELECT job_id, part_number, customer_name FROM jobs
            WHERE (file_location IS NULL OR file_location = '')
              AND part_number IS NOT NULL AND TRIM(part_number) != ''
            ORDER BY job_id
        """)
        found = 0
        for row in rows:
            match = self.locate(row["part_number"], row["customer_name"])
            if match is None:
                self.diagnostics.record(
                    IssueKind.UNRESOLVABLE_REFERENCE, "jobs", row["job_id"],
                    "no drawing location found; file_location left NULL",
                    part_number=row["part_number"], customer=row["customer_name"],
                )
                continue
            db.execute(
                "UPDATE jobs SET file_location = :location WHERE job_id = :job_id",
                {"location": match.location, "job_id": row["job_id"]},
            )
            found += 1
        logger.info(f"jobs.file_location: {found} of {len(rows)} rows resolved")
        return found

    def backfill_assembly_locations(self, db: DatabaseClient) -> int:
        """
        Fill empty assembly_detail.file_location.

        The customer comes from the lowest-numbered legacy job with the same
        part number; rows without one use the unscoped tier.
        """
        rows = db.fetch_all("""
            SELECT ad.id, ad.part_number, ad.drawing_number,
                   (SELECT j.customer_name FROM jobs j
                    WHERE j.part_number = ad.part_number
                    ORDER BY j.job_id LIMIT 1) AS customer_name
            FROM assembly_detail ad
            WHERE ad.file_location IS NULL OR ad.file_location = ''
            ORDER BY ad.id
        """)
        found = 0
        for row in rows:
            match = self.locate(row["drawing_number"] or row["part_number"], row["customer_name"])
            if match is None:
                self.diagnostics.record(
                    IssueKind.UNRESOLVABLE_REFERENCE, "assembly_detail", row["id"],
                    "no drawing location found; file_location left NULL",
                    drawing_number=row["drawing_number"], customer=row["customer_name"],
                )
                continue
            db.execute(
                "UPDATE assembly_detail SET file_location = :location WHERE id = :id",
                {"location": match.location, "id": row["id"]},
            )
            found += 1
        logger.info(f"assembly_detail.file_location: {found} of {len(rows)} rows resolved")
        return found

    def link_parts(self, db: DatabaseClient) -> int:
        """
        Resolve a drawing file for every part without one.

        The customer is taken from the part's first order item.

        Returns:
            Number of parts for which a file was found
        """
        parts = db.fetch_all("""
            SELECT p.id, p.drawing_number,
                   (SELECT c.customer_name
                    FROM order_item oi
                    JOIN job j ON j.id = oi.job_id
                    JOIN purchase_order po ON po.id = j.po_id
                    JOIN customer_contact cc ON cc.id = po.contact_id
                    JOIN customer c ON c.id = cc.customer_id
                    WHERE oi.part_id = p.id
                    ORDER BY oi.id LIMIT 1) AS customer_name
            FROM part p
            WHERE NOT EXISTS (SELECT 1 FROM drawing_file df WHERE df.part_id = p.id)
            ORDER BY p.id
        """)
        found = 0
        for part in parts:
            if self.locate_for_part(part["id"], part["drawing_number"], part["customer_name"]) is not None:
                found += 1
        logger.info(f"Drawing files resolved for {found} of {len(parts)} parts")
        return found
