"""
Identity extraction and repair for the legacy ``jobs`` table.

Each legacy row is one (job, line) pair with the customer, contact and PO text
repeated on every line. This module turns those rows into normalized
customer / customer_contact / purchase_order / job / part / order_item rows
and keeps the derived identity keys consistent.

Key rules:
- ``unique_key`` is ``"{job_number}|{line_number}"``. It is written to every
  order item, back onto the legacy row and copied onto dependent detail rows.
  A detail row whose owning job cannot be found gets NULL, never a guess.
- A real PO number is globally unique: lines that reuse one are merged onto
  the existing purchase order.
- Lines without a PO (empty, ``NPO`` or ``VERBAL``) get the synthetic number
  ``NPO-{oe_number}-{job_number}-{line_number}``.
- Data-quality gaps are recorded as diagnostics; constraint violations raise
  IntegrityViolation.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from .assembly import classify_drawing
from .dates import normalize_any_date
from .diagnostics import DiagnosticLog, IssueKind, ensure_log
from .store.client import DatabaseClient

logger = logging.getLogger(__name__)

MISSING_PO_MARKERS = {"", "NPO", "VERBAL"}
SYNTHETIC_PREFIX = "NPO-"

# NPO-{YYYYMMDD}-{CUSTOMER}-{SEQ}: synthetic numbers issued before the
# NPO-{oe}-{job}-{line} scheme
LEGACY_NPO_PATTERN = re.compile(r"^NPO-\d{8}-[A-Z0-9]+-\d{2}$")

_LEADING_INT = re.compile(r"^\s*(-?\d+)")
_PRICE = re.compile(r"[\d.]+")


# =============================================================================
# KEY AND VALUE HELPERS
# =============================================================================

def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def make_unique_key(job_number: str, line_number: Any) -> str:
    return f"{job_number}|{line_number}"


def parse_line_number(value: Any) -> int:
    """Leading integer of a legacy line number; missing or non-positive → 1."""
    match = _LEADING_INT.match(str(value)) if value is not None else None
    number = int(match.group(1)) if match else 0
    return number if number > 0 else 1


def parse_quantity(value: Any) -> int:
    match = _LEADING_INT.match(str(value)) if value is not None else None
    return int(match.group(1)) if match else 0


def parse_price(value: Any) -> Optional[float]:
    """First number in a price string such as ``$1,250.00``; None if absent."""
    if value is None:
        return None
    match = _PRICE.search(str(value).replace(",", ""))
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def is_missing_po(po_number: Any) -> bool:
    return (_clean(po_number) or "").upper() in MISSING_PO_MARKERS


def synthetic_po_number(oe_number: Any, job_number: str, line_number: Any) -> str:
    """``NPO-{oe}-{job}-{line}``; an absent O.E. number leaves its slot empty."""
    return f"{SYNTHETIC_PREFIX}{_clean(oe_number) or ''}-{job_number}-{line_number}"


def is_synthetic_po(po_number: str) -> bool:
    return po_number.upper().startswith(SYNTHETIC_PREFIX)


def normalize_po_number(po_number: str) -> str:
    """
    Canonical spelling of a real customer PO number.

    - whitespace removed, upper-cased
    - ``REV.`` shortened to ``R.``
    - revision suffix separated by a dash (``4500R.1`` → ``4500-R.1``)
    - bare ``-R1`` written as ``-R.1``
    - leading zero dropped from single-digit revisions (``R.01`` → ``R.1``)
    """
    text = re.sub(r"\s+", "", po_number).upper()
    text = text.replace("REV.", "R.")
    text = re.sub(r"([A-Z0-9])R\.", r"\1-R.", text)
    text = re.sub(r"-R(\d)(?!\d)", r"-R.\1", text)
    text = re.sub(r"R\.0(\d)", r"R.\1", text)
    return text


@dataclass
class ResolutionStats:
    """Counters for one ``resolve_orders`` pass."""
    purchase_orders: int = 0
    synthetic_purchase_orders: int = 0
    merged_purchase_orders: int = 0
    jobs: int = 0
    parts: int = 0
    order_items: int = 0
    existing_order_items: int = 0
    skipped_lines: int = 0


@dataclass
class RewriteStats:
    """Counters for the legacy synthetic PO rewrite."""
    rewritten: int = 0
    merged: int = 0
    unchanged: int = 0
    unresolved: int = 0


class IdentityResolver:
    """Builds and repairs normalized identities from the legacy jobs table."""

    def __init__(self, db: DatabaseClient, diagnostics: Optional[DiagnosticLog] = None):
        self.db = db
        self.diagnostics = ensure_log(diagnostics)

    # =========================================================================
    # CUSTOMERS AND CONTACTS
    # =========================================================================

    def extract_customers(self) -> int:
        """
        Create one customer per distinct legacy customer name.

        Usage counters are (re)computed on every run.

        Returns:
            Number of customers created
        """
        rows = self.db.fetch_all("""
            SELECT TRIM(customer_name) AS name,
                   COUNT(DISTINCT job_number) AS jobs,
                   MAX(create_timestamp) AS last_used
            FROM jobs
            WHERE customer_name IS NOT NULL AND TRIM(customer_name) != ''
            GROUP BY TRIM(customer_name)
            ORDER BY TRIM(customer_name)
        """)

        created = 0
        for row in rows:
            customer_id = self.customer_id(row["name"])
            if customer_id is None:
                self.db.insert("customer", {
                    "customer_name": row["name"],
                    "usage_count": row["jobs"],
                    "last_used": row["last_used"],
                })
                created += 1
            else:
                self.db.execute(
                    "UPDATE customer SET usage_count = :jobs, last_used = :last_used WHERE id = :id",
                    {"jobs": row["jobs"], "last_used": row["last_used"], "id": customer_id},
                )

        logger.info(f"Customers: {len(rows)} distinct, {created} created")
        return created

    def extract_contacts(self) -> int:
        """
        Create one contact per distinct (customer_name, customer_contact) pair.

        Returns:
            Number of contacts created
        """
        rows = self.db.fetch_all("""
            SELECT TRIM(customer_name) AS customer,
                   TRIM(customer_contact) AS contact,
                   COUNT(DISTINCT job_number) AS jobs,
                   MAX(create_timestamp) AS last_used
            FROM jobs
            WHERE customer_name IS NOT NULL AND TRIM(customer_name) != ''
              AND customer_contact IS NOT NULL AND TRIM(customer_contact) != ''
            GROUP BY TRIM(customer_name), TRIM(customer_contact)
            ORDER BY TRIM(customer_name), TRIM(customer_contact)
        """)

        created = 0
        for row in rows:
            customer_id = self.customer_id(row["customer"])
            if customer_id is None:
                self.diagnostics.record(
                    IssueKind.UNRESOLVABLE_REFERENCE, "customer_contact", row["contact"],
                    "contact's customer has not been extracted", customer=row["customer"],
                )
                continue

            contact_id = self.contact_id(row["customer"], row["contact"])
            if contact_id is None:
                self.db.insert("customer_contact", {
                    "customer_id": customer_id,
                    "contact_name": row["contact"],
                    "usage_count": row["jobs"],
                    "last_used": row["last_used"],
                })
                created += 1
            else:
                self.db.execute(
                    "UPDATE customer_contact SET usage_count = :jobs, last_used = :last_used WHERE id = :id",
                    {"jobs": row["jobs"], "last_used": row["last_used"], "id": contact_id},
                )

        logger.info(f"Contacts: {len(rows)} distinct, {created} created")
        return created

    def customer_id(self, name: Optional[str]) -> Optional[int]:
        name = _clean(name)
        if name is None:
            return None
        return self.db.fetch_value(
            "SELECT id FROM customer WHERE customer_name = :name", {"name": name}
        )

    def contact_id(self, customer: Optional[str], contact: Optional[str]) -> Optional[int]:
        customer, contact = _clean(customer), _clean(contact)
        if customer is None or contact is None:
            return None
        return self.db.fetch_value(
            """
            SELECT cc.id FROM customer_contact cc
            JOIN customer c ON c.id = cc.customer_id
            WHERE c.customer_name = :customer AND cc.contact_name = :contact
            ORDER BY cc.id LIMIT 1
            """,
            {"customer": customer, "contact": contact},
        )

    # =========================================================================
    # PURCHASE ORDERS, JOBS, PARTS, ORDER ITEMS
    # =========================================================================

    def resolve_orders(self) -> ResolutionStats:
        """
        Create purchase orders, jobs, parts and order items from legacy rows.

        Lines are grouped by job number. A job is attached to the purchase
        order of its lowest line naming a real PO, or to a synthetic one when
        no line does. Already migrated lines (matched by unique_key) are left
        alone; a second legacy line parsing to the same line number is skipped
        and recorded.
        """
        stats = ResolutionStats()

        rows = self.db.fetch_all("""
            SELECT * FROM jobs
            WHERE job_number IS NOT NULL AND TRIM(job_number) != ''
            ORDER BY job_id
        """)
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            grouped.setdefault(row["job_number"].strip(), []).append(row)

        existing_keys = {
            row["unique_key"]
            for row in self.db.fetch_all("SELECT unique_key FROM order_item WHERE unique_key IS NOT NULL")
        }
        added_keys: Set[str] = set()

        for job_number, lines in grouped.items():
            lines.sort(key=lambda line: (parse_line_number(line["line_number"]), line["job_id"]))

            job_id = self.db.fetch_value(
                "SELECT id FROM job WHERE job_number = :job_number", {"job_number": job_number}
            )
            if job_id is None:
                po_id = self._resolve_purchase_order(job_number, lines, stats)
                job_id = self.db.insert("job", {"job_number": job_number, "po_id": po_id})
                stats.jobs += 1

            for line in lines:
                line_number = parse_line_number(line["line_number"])
                unique_key = make_unique_key(job_number, line_number)
                if unique_key in added_keys:
                    self.diagnostics.record(
                        IssueKind.SKIPPED_ROW, "jobs", line["job_id"],
                        "legacy line collides with another line of the same job; not migrated",
                        unique_key=unique_key, line_number=line["line_number"],
                    )
                    stats.skipped_lines += 1
                    continue
                if unique_key in existing_keys:
                    stats.existing_order_items += 1
                    continue

                self.add_order_item(
                    job_id,
                    line_number,
                    part_id=self._resolve_part(line, stats),
                    quantity=parse_quantity(line["job_quantity"]),
                    actual_price=parse_price(line["unit_price"]),
                    drawing_release_date=normalize_any_date(line["drawing_release"]),
                    delivery_required_date=normalize_any_date(line["delivery_required_date"]),
                    unique_key=unique_key,
                    created_at=_clean(line["create_timestamp"]),
                    updated_at=_clean(line["last_modified"]),
                )
                existing_keys.add(unique_key)
                added_keys.add(unique_key)
                stats.order_items += 1

        logger.info(
            f"Orders resolved: {stats.purchase_orders} POs "
            f"({stats.synthetic_purchase_orders} synthetic, {stats.merged_purchase_orders} merged), "
            f"{stats.jobs} jobs, {stats.parts} parts, {stats.order_items} order items"
        )
        return stats

    def _resolve_purchase_order(
        self,
        job_number: str,
        lines: List[Dict[str, Any]],
        stats: ResolutionStats
    ) -> int:
        """Find or create the purchase order for a job (from its lowest line naming a real PO)."""
        real_lines = [line for line in lines if not is_missing_po(line["po_number"])]
        first = real_lines[0] if real_lines else lines[0]

        # Mixed or conflicting POs within one job: the lowest real PO wins
        real_numbers = {_clean(line["po_number"]) for line in real_lines}
        if len(real_numbers) > 1 or (real_lines and len(real_lines) < len(lines)):
            self.diagnostics.record(
                IssueKind.AMBIGUOUS_IDENTITY, "job", job_number,
                "job lines disagree on the PO number; using the lowest line with a real PO",
                po_numbers=sorted(real_numbers),
                chosen=_clean(first["po_number"]),
                lines_without_po=len(lines) - len(real_lines),
            )

        contact_id = self.contact_id(first["customer_name"], first["customer_contact"])
        oe_number = _clean(first["oe_number"])

        if real_lines:
            po_number = _clean(first["po_number"])
            synthetic = False
        else:
            po_number = synthetic_po_number(oe_number, job_number, parse_line_number(first["line_number"]))
            synthetic = True

        existing = self.db.fetch_one(
            "SELECT id, contact_id FROM purchase_order WHERE po_number = :po", {"po": po_number}
        )
        if existing is not None:
            stats.merged_purchase_orders += 1
            if existing["contact_id"] != contact_id:
                logger.info(
                    f"PO {po_number} reused by job {job_number} from a different contact "
                    f"({existing['contact_id']} vs {contact_id}); merged onto existing PO"
                )
            return existing["id"]

        po_id = self.db.insert("purchase_order", {
            "po_number": po_number,
            "oe_number": oe_number,
            "contact_id": contact_id,
        })
        stats.purchase_orders += 1
        if synthetic:
            stats.synthetic_purchase_orders += 1
        return po_id

    def _resolve_part(self, line: Dict[str, Any], stats: ResolutionStats) -> Optional[int]:
        drawing_number = _clean(line["part_number"])
        if drawing_number is None:
            self.diagnostics.record(
                IssueKind.UNRESOLVABLE_REFERENCE, "order_item",
                make_unique_key(line["job_number"].strip(), parse_line_number(line["line_number"])),
                "legacy line has no part number; part_id left NULL",
            )
            return None

        revision = _clean(line["revision"]) or "-"
        part_id = self.db.fetch_value(
            "SELECT id FROM part WHERE drawing_number = :dn AND revision = :rev",
            {"dn": drawing_number, "rev": revision},
        )
        if part_id is not None:
            return part_id

        stats.parts += 1
        return self.db.insert("part", {
            "drawing_number": drawing_number,
            "revision": revision,
            "description": _clean(line["part_description"]),
            "is_assembly": classify_drawing(drawing_number).to_storage(),
            "unit_price": parse_price(line["unit_price"]) or 0,
        })

    def add_order_item(
        self,
        job_id: int,
        line_number: int,
        part_id: Optional[int] = None,
        quantity: int = 0,
        unique_key: Optional[str] = None,
        **extra: Any
    ) -> int:
        """
        Insert one order item.

        Args:
            job_id: Owning job
            line_number: Line within the job; ``(job_id, line_number)`` is unique
            part_id: Ordered part, if known
            quantity: Ordered quantity
            unique_key: ``job_number|line_number``; derived from the job if omitted
            **extra: Other order_item columns (dates, price, status, timestamps)

        Returns:
            Id of the new order item

        Raises:
            IntegrityViolation: If the job already has this line number
        """
        if unique_key is None:
            job_number = self.db.fetch_value("SELECT job_number FROM job WHERE id = :id", {"id": job_id})
            if job_number is not None:
                unique_key = make_unique_key(job_number, line_number)

        values = {
            "job_id": job_id,
            "part_id": part_id,
            "line_number": line_number,
            "quantity": quantity,
            "unique_key": unique_key,
        }
        values.update({column: value for column, value in extra.items() if value is not None})
        return self.db.insert("order_item", values)

    # =========================================================================
    # UNIQUE KEY BACKFILL
    # =========================================================================

    def backfill_legacy_unique_keys(self) -> int:
        """
        Write ``job_number|line_number`` onto legacy jobs rows lacking it.

        Returns:
            Number of rows updated
        """
        rows = self.db.fetch_all("""
            SELECT job_id, job_number, line_number FROM jobs
            WHERE (unique_key IS NULL OR unique_key = '')
              AND job_number IS NOT NULL AND TRIM(job_number) != ''
            ORDER BY job_id
        """)
        for row in rows:
            self.db.execute(
                "UPDATE jobs SET unique_key = :key WHERE job_id = :job_id",
                {
                    "key": make_unique_key(row["job_number"].strip(), parse_line_number(row["line_number"])),
                    "job_id": row["job_id"],
                },
            )
        logger.info(f"unique_key backfilled on {len(rows)} legacy rows")
        return len(rows)

    def backfill_detail_unique_keys(self, table: str = "assembly_detail") -> int:
        """
        Copy the owning job's unique_key onto detail rows via part_number.

        Several candidate jobs: the lowest ``jobs.job_id`` wins. No candidate:
        the key stays NULL. Both cases are recorded as diagnostics.

        Returns:
            Number of rows that received a key
        """
        rows = self.db.fetch_all(
            f"SELECT id, part_number FROM {table} WHERE unique_key IS NULL ORDER BY id"
        )

        linked = 0
        for row in rows:
            owners = self.db.fetch_all(
                """
                SELECT unique_key, MIN(job_id) AS first_job FROM jobs
                WHERE part_number = :pn AND unique_key IS NOT NULL AND unique_key != ''
                GROUP BY unique_key
                ORDER BY first_job
                """,
                {"pn": row["part_number"]},
            )
            if not owners:
                self.diagnostics.record(
                    IssueKind.UNRESOLVABLE_REFERENCE, table, row["id"],
                    "no job owns this part number; unique_key left NULL",
                    part_number=row["part_number"],
                )
                continue

            if len(owners) > 1:
                self.diagnostics.record(
                    IssueKind.AMBIGUOUS_IDENTITY, table, row["id"],
                    "several jobs own this part number; lowest job_id chosen",
                    part_number=row["part_number"],
                    candidates=[owner["unique_key"] for owner in owners],
                )

            self.db.execute(
                f"UPDATE {table} SET unique_key = :key WHERE id = :id",
                {"key": owners[0]["unique_key"], "id": row["id"]},
            )
            linked += 1

        logger.info(f"{table}: unique_key copied onto {linked} of {len(rows)} rows")
        return linked

    # =========================================================================
    # PURCHASE ORDER REPAIRS
    # =========================================================================

    def rewrite_legacy_npo_numbers(self) -> RewriteStats:
        """
        Rewrite ``NPO-{date}-{customer}-{seq}`` numbers to ``NPO-{oe}-{job}-{line}``.

        The new number comes from the PO's first order item. A number already
        in the new scheme maps onto itself and is left alone, so running the
        pass twice changes nothing. When the new number already belongs to
        another PO, the old PO is deactivated as merged.
        """
        stats = RewriteStats()
        rows = self.db.fetch_all(
            "SELECT id, po_number, oe_number FROM purchase_order WHERE po_number LIKE 'NPO-%' ORDER BY id"
        )

        for po in rows:
            if not LEGACY_NPO_PATTERN.match(po["po_number"]):
                continue

            item = self.db.fetch_one(
                """
                SELECT j.job_number, oi.line_number
                FROM order_item oi
                JOIN job j ON j.id = oi.job_id
                WHERE j.po_id = :po_id
                ORDER BY oi.line_number, oi.id
                LIMIT 1
                """,
                {"po_id": po["id"]},
            )
            if item is None:
                stats.unresolved += 1
                self.diagnostics.record(
                    IssueKind.UNRESOLVABLE_REFERENCE, "purchase_order", po["po_number"],
                    "no order item found; PO number left unchanged",
                )
                continue

            new_number = synthetic_po_number(po["oe_number"], item["job_number"], item["line_number"])
            if new_number == po["po_number"]:
                stats.unchanged += 1
                continue

            holder = self.db.fetch_value(
                "SELECT id FROM purchase_order WHERE po_number = :po AND id != :id",
                {"po": new_number, "id": po["id"]},
            )
            if holder is not None:
                self.db.execute(
                    "UPDATE purchase_order SET is_active = 0, updated_at = :now WHERE id = :id",
                    {"now": _now(), "id": po["id"]},
                )
                stats.merged += 1
                self.diagnostics.record(
                    IssueKind.SKIPPED_ROW, "purchase_order", po["po_number"],
                    f"{new_number} already exists; old PO deactivated as merged",
                    merged_into=holder,
                )
                continue

            self.db.execute(
                "UPDATE purchase_order SET po_number = :po, updated_at = :now WHERE id = :id",
                {"po": new_number, "now": _now(), "id": po["id"]},
            )
            stats.rewritten += 1
            logger.info(f"PO {po['po_number']} → {new_number}")

        logger.info(
            f"Legacy NPO rewrite: {stats.rewritten} rewritten, {stats.merged} merged, "
            f"{stats.unchanged} unchanged, {stats.unresolved} unresolved"
        )
        return stats

    def normalize_purchase_orders(self) -> int:
        """
        Apply ``normalize_po_number`` to every real (non-synthetic) PO number.

        A normalized number that collides with another PO is skipped and
        recorded.

        Returns:
            Number of PO numbers changed
        """
        changed = 0
        for po in self.db.fetch_all("SELECT id, po_number FROM purchase_order ORDER BY id"):
            if is_synthetic_po(po["po_number"]):
                continue
            normalized = normalize_po_number(po["po_number"])
            if normalized == po["po_number"]:
                continue

            holder = self.db.fetch_value(
                "SELECT id FROM purchase_order WHERE po_number = :po AND id != :id",
                {"po": normalized, "id": po["id"]},
            )
            if holder is not None:
                self.diagnostics.record(
                    IssueKind.SKIPPED_ROW, "purchase_order", po["po_number"],
                    f"normalized number {normalized} already used by PO {holder}",
                )
                continue

            self.db.execute(
                "UPDATE purchase_order SET po_number = :po, updated_at = :now WHERE id = :id",
                {"po": normalized, "now": _now(), "id": po["id"]},
            )
            changed += 1

        logger.info(f"Normalized {changed} PO numbers")
        return changed

    def flag_inactive_purchase_orders(self, oe_numbers: Iterable[str]) -> int:
        """
        Deactivate POs whose O.E. number is missing from an authoritative feed.

        Comparison is exact string match. POs that are already inactive are
        not touched and nothing is ever re-activated.

        Args:
            oe_numbers: Valid order-entry numbers from the external feed

        Returns:
            Number of POs deactivated
        """
        valid = {str(number) for number in oe_numbers}
        now = _now()
        deactivated = 0
        for po in self.db.fetch_all(
            "SELECT id, oe_number FROM purchase_order WHERE is_active = 1 ORDER BY id"
        ):
            if po["oe_number"] in valid:
                continue
            self.db.execute(
                "UPDATE purchase_order SET is_active = 0, closed_at = :now, updated_at = :now WHERE id = :id",
                {"now": now, "id": po["id"]},
            )
            deactivated += 1

        logger.info(f"Deactivated {deactivated} POs absent from the O.E. feed ({len(valid)} valid numbers)")
        return deactivated


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")
