"""
Bill-of-materials graph construction from the legacy ``assemblies`` table.

The legacy table is a flat list of (parent part_number, child drawing_number,
quantity) rows. From it this module derives:

- ``detail_drawing``: one row per drawing number that appears in a BOM
- ``assembly_detail``: one row per legacy BOM row, plus a self-referencing
  root row (part_number == drawing_number) for every assembly drawing
- ``part`` / ``part_tree``: normalized parts and parent → child edges

Classification:
    A drawing number containing the marker ``-GA-`` (any case) is an
    assembly. A number starting with ``RT-`` and carrying no marker is
    definitely not an assembly. Everything else is unknown and stored as NULL,
    never as 0.

The builder never invents edges: when the assemblies table is empty it logs a
notice and does nothing.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Set, Tuple

from .diagnostics import DiagnosticLog, IssueKind, ensure_log
from .store.client import DatabaseClient

logger = logging.getLogger(__name__)

ASSEMBLY_MARKER = "-ga-"
NOT_ASSEMBLY_PREFIX = "rt-"
SELF_REFERENCE_QUANTITY = "1"
PENDING = "Pending"

_LEADING_INT = re.compile(r"^\s*(\d+)")


# =============================================================================
# CLASSIFICATION
# =============================================================================

class AssemblyClass(Enum):
    """
    Three-valued assembly flag.

    Stored as 1 / 0 / NULL; the integer encoding exists only at the storage
    boundary (``to_storage`` / ``from_storage``).
    """
    ASSEMBLY = auto()
    NOT_ASSEMBLY = auto()
    UNKNOWN = auto()

    def to_storage(self) -> Optional[int]:
        if self is AssemblyClass.ASSEMBLY:
            return 1
        if self is AssemblyClass.NOT_ASSEMBLY:
            return 0
        return None

    @classmethod
    def from_storage(cls, value: Any) -> "AssemblyClass":
        if value is None:
            return cls.UNKNOWN
        return cls.ASSEMBLY if int(value) == 1 else cls.NOT_ASSEMBLY


def is_assembly_number(drawing_number: Optional[str]) -> bool:
    """True when the drawing number carries the ``-GA-`` marker (any case)."""
    if not drawing_number:
        return False
    return ASSEMBLY_MARKER in drawing_number.lower()


def classify_drawing(drawing_number: Optional[str]) -> AssemblyClass:
    if is_assembly_number(drawing_number):
        return AssemblyClass.ASSEMBLY
    if drawing_number and drawing_number.strip().lower().startswith(NOT_ASSEMBLY_PREFIX):
        return AssemblyClass.NOT_ASSEMBLY
    return AssemblyClass.UNKNOWN


def parse_bom_quantity(value: Any) -> int:
    """Leading integer of a legacy quantity; anything not positive becomes 1."""
    if value is None:
        return 1
    match = _LEADING_INT.match(str(value))
    if not match:
        return 1
    quantity = int(match.group(1))
    return quantity if quantity > 0 else 1


@dataclass
class DetailStats:
    skipped: bool = False
    detail_drawings: int = 0
    assembly_details: int = 0


@dataclass
class PartTreeStats:
    skipped: bool = False
    parts_created: int = 0
    edges_created: int = 0
    self_references: int = 0
    missing_parent: int = 0
    missing_child: int = 0
    existing_edges: int = 0
    missing: List[Tuple[str, str]] = field(default_factory=list)


class AssemblyGraphBuilder:
    """Derives detail tables, parts and BOM edges from legacy assemblies."""

    def __init__(self, db: DatabaseClient, diagnostics: Optional[DiagnosticLog] = None):
        self.db = db
        self.diagnostics = ensure_log(diagnostics)

    def _assemblies_empty(self) -> bool:
        count = self.db.fetch_value("SELECT COUNT(*) FROM assemblies")
        if not count:
            logger.warning("assemblies table is empty; BOM construction skipped")
            return True
        return False

    # =========================================================================
    # COMPLETENESS
    # =========================================================================

    def backfill_missing_assemblies(self) -> int:
        """
        Copy assembly part numbers seen in jobs but absent from assemblies.

        Each missing part number becomes a placeholder row
        (part_number, part_number, job description, '1').

        Returns:
            Number of rows inserted
        """
        rows = self.db.fetch_all("""
            SELECT part_number, part_description
            FROM jobs
            WHERE part_number IS NOT NULL AND TRIM(part_number) != ''
              AND TRIM(part_number) NOT IN (
                  SELECT TRIM(part_number) FROM assemblies WHERE part_number IS NOT NULL
              )
            ORDER BY job_id
        """)

        missing: Dict[str, str] = {}
        for row in rows:
            part_number = row["part_number"].strip()
            if not is_assembly_number(part_number) or part_number in missing:
                continue
            missing[part_number] = (row["part_description"] or "").strip() or part_number

        for part_number, description in missing.items():
            self.db.execute(
                """
                INSERT INTO assemblies (part_number, drawing_number, description, quantity)
                VALUES (:part_number, :part_number, :description, :quantity)
                """,
                {"part_number": part_number, "description": description, "quantity": SELF_REFERENCE_QUANTITY},
            )

        logger.info(f"Backfilled {len(missing)} assemblies from jobs")
        return len(missing)

    def remove_backfilled_assemblies(self) -> int:
        """Delete placeholder rows created by ``backfill_missing_assemblies``."""
        rows = self.db.fetch_all("""
            SELECT rowid AS row_id, part_number FROM assemblies
            WHERE part_number = drawing_number
        """)
        removed = 0
        for row in rows:
            if is_assembly_number(row["part_number"]):
                self.db.execute("DELETE FROM assemblies WHERE rowid = :row_id", {"row_id": row["row_id"]})
                removed += 1
        return removed

    # =========================================================================
    # DETAIL TABLES
    # =========================================================================

    def populate_detail_tables(self) -> DetailStats:
        """Fill detail_drawing and assembly_detail from assemblies."""
        stats = DetailStats()
        if self._assemblies_empty():
            stats.skipped = True
            return stats

        # STEP 1: one detail_drawing per drawing number
        drawings: Dict[str, Optional[str]] = {}
        for row in self.db.fetch_all("""
            SELECT drawing_number, description FROM assemblies
            WHERE drawing_number IS NOT NULL AND TRIM(drawing_number) != ''
            ORDER BY rowid
        """):
            drawings.setdefault(row["drawing_number"].strip(), row["description"])

        for row in self.db.fetch_all("""
            SELECT part_number, part_description FROM jobs
            WHERE part_number IS NOT NULL ORDER BY job_id
        """):
            part_number = row["part_number"].strip()
            if is_assembly_number(part_number):
                drawings.setdefault(part_number, row["part_description"])

        for drawing_number, description in drawings.items():
            exists = self.db.fetch_value(
                "SELECT 1 FROM detail_drawing WHERE drawing_number = :dn",
                {"dn": drawing_number},
            )
            if exists:
                continue
            self.db.insert("detail_drawing", {
                "drawing_number": drawing_number,
                "description": description,
                "isAssembly": classify_drawing(drawing_number).to_storage(),
            }, returning=None)
            stats.detail_drawings += 1

        # STEP 2: one assembly_detail per legacy BOM row
        for row in self.db.fetch_all("""
            SELECT part_number, drawing_number, quantity FROM assemblies
            WHERE part_number IS NOT NULL AND drawing_number IS NOT NULL
            ORDER BY rowid
        """):
            part_number = row["part_number"].strip()
            drawing_number = row["drawing_number"].strip()
            exists = self.db.fetch_value(
                """
                SELECT 1 FROM assembly_detail
                WHERE part_number = :pn AND drawing_number = :dn
                """,
                {"pn": part_number, "dn": drawing_number},
            )
            if exists:
                continue
            required = self.db.fetch_value(
                """
                SELECT delivery_required_date FROM jobs
                WHERE part_number = :pn ORDER BY job_id LIMIT 1
                """,
                {"pn": part_number},
            )
            self.db.insert("assembly_detail", {
                "part_number": part_number,
                "drawing_number": drawing_number,
                "quantity": row["quantity"],
                "status": PENDING,
                "delivery_required_date": required,
            }, returning=None)
            stats.assembly_details += 1

        logger.info(
            f"Detail tables populated: {stats.detail_drawings} drawings, "
            f"{stats.assembly_details} assembly rows"
        )
        return stats

    def mark_jobs_with_details(self) -> int:
        """Set jobs.has_assembly_details from assembly_detail membership."""
        return self.db.execute("""
            UPDATE jobs SET has_assembly_details = CASE
                WHEN part_number IN (SELECT part_number FROM assembly_detail) THEN 1
                ELSE 0
            END
        """)

    def ensure_self_references(self) -> int:
        """
        Give every assembly drawing exactly one root row in assembly_detail.

        Missing root rows are inserted (quantity 1, status Pending); surplus
        duplicates are deleted, keeping the oldest.

        Returns:
            Number of root rows inserted
        """
        assemblies = self.db.fetch_all("""
            SELECT drawing_number FROM detail_drawing
            WHERE isAssembly = 1 ORDER BY drawing_id
        """)

        inserted = 0
        for row in assemblies:
            drawing_number = row["drawing_number"]
            existing = self.db.fetch_all(
                """
                SELECT id FROM assembly_detail
                WHERE part_number = :dn AND drawing_number = :dn
                ORDER BY id
                """,
                {"dn": drawing_number},
            )
            if not existing:
                self.db.insert("assembly_detail", {
                    "part_number": drawing_number,
                    "drawing_number": drawing_number,
                    "quantity": SELF_REFERENCE_QUANTITY,
                    "status": PENDING,
                }, returning=None)
                inserted += 1
                continue

            for duplicate in existing[1:]:
                self.db.execute("DELETE FROM assembly_detail WHERE id = :id", {"id": duplicate["id"]})
                logger.info(f"Removed duplicate root row {duplicate['id']} for {drawing_number}")

        logger.info(f"Self-reference check: {len(assemblies)} assemblies, {inserted} roots inserted")
        return inserted

    # =========================================================================
    # PARTS AND PART TREE
    # =========================================================================

    def current_part_ids(self) -> Dict[str, int]:
        """
        Map drawing_number → id of its current revision.

        The current revision is the newest part row that has not been
        superseded (``next_id IS NULL``).
        """
        rows = self.db.fetch_all("""
            SELECT id, drawing_number FROM part
            WHERE next_id IS NULL
            ORDER BY id
        """)
        return {row["drawing_number"]: row["id"] for row in rows}

    def build_part_tree(self) -> PartTreeStats:
        """
        Create missing parts and parent → child edges from assemblies.

        Self edges, edges with a missing end and edges that already exist are
        skipped and counted.
        """
        stats = PartTreeStats()
        if self._assemblies_empty():
            stats.skipped = True
            return stats

        bom_rows = self.db.fetch_all("""
            SELECT part_number, drawing_number, description, quantity FROM assemblies
            WHERE part_number IS NOT NULL AND drawing_number IS NOT NULL
            ORDER BY rowid
        """)

        # STEP 1: parts for every drawing number in the BOM
        parts = self.current_part_ids()
        for row in bom_rows:
            for number, description in (
                (row["part_number"].strip(), None),
                (row["drawing_number"].strip(), row["description"]),
            ):
                if not number or number in parts:
                    continue
                parts[number] = self.db.insert("part", {
                    "drawing_number": number,
                    "revision": "-",
                    "description": description,
                    "is_assembly": classify_drawing(number).to_storage(),
                })
                stats.parts_created += 1

        # STEP 2: edges
        for row in bom_rows:
            parent_number = row["part_number"].strip()
            child_number = row["drawing_number"].strip()
            if parent_number == child_number:
                stats.self_references += 1
                continue

            parent_id = parts.get(parent_number)
            child_id = parts.get(child_number)
            if parent_id is None:
                stats.missing_parent += 1
                stats.missing.append((parent_number, child_number))
                continue
            if child_id is None:
                stats.missing_child += 1
                stats.missing.append((parent_number, child_number))
                continue

            exists = self.db.fetch_value(
                "SELECT 1 FROM part_tree WHERE parent_id = :p AND child_id = :c",
                {"p": parent_id, "c": child_id},
            )
            if exists:
                stats.existing_edges += 1
                continue

            self.db.insert("part_tree", {
                "parent_id": parent_id,
                "child_id": child_id,
                "quantity": parse_bom_quantity(row["quantity"]),
            })
            stats.edges_created += 1

        for parent_number, child_number in stats.missing:
            self.diagnostics.record(
                IssueKind.UNRESOLVABLE_REFERENCE, "part_tree", f"{parent_number}->{child_number}",
                "BOM edge skipped: part not found",
            )

        self.refresh_has_parent()
        logger.info(
            f"Part tree built: {stats.parts_created} parts, {stats.edges_created} edges, "
            f"{stats.existing_edges} existing, {stats.self_references} self references skipped"
        )
        return stats

    def refresh_has_parent(self) -> int:
        return self.db.execute("""
            UPDATE part SET has_parent = CASE
                WHEN id IN (SELECT child_id FROM part_tree) THEN 1
                ELSE 0
            END
        """)

    def reclassify_parts(self) -> int:
        """
        Re-apply the naming rule to stored parts.

        Only definite classifications are written; parts whose number says
        nothing keep their stored value.

        Returns:
            Number of parts updated
        """
        updated = 0
        for row in self.db.fetch_all("SELECT id, drawing_number, is_assembly FROM part ORDER BY id"):
            classification = classify_drawing(row["drawing_number"])
            if classification is AssemblyClass.UNKNOWN:
                continue
            value = classification.to_storage()
            if row["is_assembly"] == value:
                continue
            self.db.execute(
                "UPDATE part SET is_assembly = :value WHERE id = :id",
                {"value": value, "id": row["id"]},
            )
            updated += 1
        logger.info(f"Reclassified {updated} parts")
        return updated

    # =========================================================================
    # VALIDATION AND REVISIONS
    # =========================================================================

    def find_cycles(self) -> List[List[int]]:
        """
        Report cycles in part_tree.

        Cycles are a data-quality defect, not a structural error: each one is
        recorded as a diagnostic and returned as a list of part ids.
        """
        children: Dict[int, List[int]] = {}
        for edge in self.db.fetch_all("SELECT parent_id, child_id FROM part_tree ORDER BY id"):
            children.setdefault(edge["parent_id"], []).append(edge["child_id"])

        cycles: List[List[int]] = []
        seen_cycles: Set[Tuple[int, ...]] = set()
        state: Dict[int, int] = {}  # 1 = on path, 2 = done

        # Iterative DFS; `work` holds (node, index of next child) frames
        for root in sorted(children):
            if root in state:
                continue
            path: List[int] = [root]
            work: List[List[int]] = [[root, 0]]
            state[root] = 1
            while work:
                frame = work[-1]
                node, position = frame
                siblings = children.get(node, [])
                if position >= len(siblings):
                    work.pop()
                    path.pop()
                    state[node] = 2
                    continue
                frame[1] += 1
                child = siblings[position]
                if state.get(child) == 1:
                    cycle = path[path.index(child):]
                    start = cycle.index(min(cycle))
                    canonical = tuple(cycle[start:] + cycle[:start])
                    if canonical not in seen_cycles:
                        seen_cycles.add(canonical)
                        cycles.append(list(canonical))
                elif child not in state:
                    state[child] = 1
                    path.append(child)
                    work.append([child, 0])

        for cycle in cycles:
            self.diagnostics.record(
                IssueKind.GRAPH_CYCLE, "part_tree", cycle[0],
                "BOM contains a cycle", part_ids=cycle,
            )
        return cycles

    def supersede_revision(self, old_part_id: int, new_part_id: int) -> None:
        """Link ``new_part_id`` as the revision following ``old_part_id``."""
        if old_part_id == new_part_id:
            raise ValueError("A part cannot supersede itself")

        old = self.db.fetch_one("SELECT id, next_id FROM part WHERE id = :id", {"id": old_part_id})
        new = self.db.fetch_one("SELECT id, previous_id FROM part WHERE id = :id", {"id": new_part_id})
        if old is None or new is None:
            raise ValueError(f"Unknown part id in revision link {old_part_id} → {new_part_id}")
        if old["next_id"] not in (None, new_part_id):
            raise ValueError(f"Part {old_part_id} is already superseded by {old['next_id']}")
        if new["previous_id"] not in (None, old_part_id):
            raise ValueError(f"Part {new_part_id} already follows {new['previous_id']}")

        self.db.execute("UPDATE part SET next_id = :new WHERE id = :old", {"new": new_part_id, "old": old_part_id})
        self.db.execute("UPDATE part SET previous_id = :old WHERE id = :new", {"new": new_part_id, "old": old_part_id})
        logger.info(f"Part {new_part_id} supersedes {old_part_id}")
