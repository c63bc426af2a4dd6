"""
Unit tests for identity extraction and repair.

These tests verify that:
1. Legacy lines become one job per job number and one order item per line
2. Missing POs get the synthetic NPO-{oe}-{job}-{line} number
3. unique_key is consistent across order_item, jobs and detail rows
4. Constraint violations raise, data-quality gaps become diagnostics
5. One-time PO repairs are idempotent
"""

import pytest

from recordkit.diagnostics import IssueKind
from recordkit.errors import IntegrityViolation
from recordkit.identity import (
    IdentityResolver,
    is_missing_po,
    make_unique_key,
    normalize_po_number,
    parse_line_number,
    parse_price,
    synthetic_po_number,
)


@pytest.fixture
def resolver(schema, client, diagnostics):
    return IdentityResolver(client, diagnostics)


def resolve_all(resolver):
    resolver.extract_customers()
    resolver.extract_contacts()
    return resolver.resolve_orders()


def make_purchase_order(client, po_number, oe_number="38848", is_active=1):
    return client.insert("purchase_order", {
        "po_number": po_number,
        "oe_number": oe_number,
        "is_active": is_active,
    })


def make_job_with_line(client, po_id, job_number, line_number=1):
    job_id = client.insert("job", {"job_number": job_number, "po_id": po_id})
    client.insert("order_item", {
        "job_id": job_id,
        "line_number": line_number,
        "unique_key": make_unique_key(job_number, line_number),
    })
    return job_id


# =============================================================================
# HELPERS
# =============================================================================

class TestValueHelpers:

    @pytest.mark.parametrize("value, expected", [
        ("3", 3), ("2A", 2), ("abc", 1), ("0", 1), ("-4", 1), (None, 1), ("", 1),
    ])
    def test_parse_line_number(self, value, expected):
        assert parse_line_number(value) == expected

    @pytest.mark.parametrize("value, expected", [
        ("$1,250.00", 1250.0), ("10", 10.0), ("N/A", None), (None, None),
    ])
    def test_parse_price(self, value, expected):
        assert parse_price(value) == expected

    @pytest.mark.parametrize("value", ["", "  ", "NPO", "npo", "Verbal", None])
    def test_missing_po_markers(self, value):
        assert is_missing_po(value)

    def test_real_po_is_not_missing(self):
        assert not is_missing_po("4500-R.1")

    def test_synthetic_po_number(self):
        assert synthetic_po_number("38848", "JOB-TEST", 1) == "NPO-38848-JOB-TEST-1"
        assert synthetic_po_number(None, "JOB-1", 1) == "NPO--JOB-1-1"

    @pytest.mark.parametrize("value, expected", [
        (" 4500 rev.01 ", "4500-R.1"),
        ("PO-77-R2", "PO-77-R.2"),
        ("4500R.1", "4500-R.1"),
        ("4500-R.12", "4500-R.12"),
        ("abc123", "ABC123"),
    ])
    def test_normalize_po_number(self, value, expected):
        assert normalize_po_number(value) == expected


# =============================================================================
# CUSTOMERS AND CONTACTS
# =============================================================================

class TestCustomers:

    def test_customers_and_contacts_extracted(self, resolver, client, add_job):
        add_job(job_number="JOB-1", create_timestamp="2025-01-01 08:00:00")
        add_job(job_number="JOB-1", line_number="2", create_timestamp="2025-01-02 08:00:00")
        add_job(job_number="JOB-2", customer_contact="Bob", create_timestamp="2025-02-01 08:00:00")
        add_job(job_number="JOB-3", customer_name="  ", customer_contact="Nobody")

        assert resolver.extract_customers() == 1
        assert resolver.extract_contacts() == 2

        customer = client.fetch_one("SELECT * FROM customer")
        assert customer["customer_name"] == "Acme Corp"
        assert customer["usage_count"] == 2
        assert customer["last_used"] == "2025-02-01 08:00:00"

        contacts = client.fetch_all("SELECT contact_name, usage_count FROM customer_contact ORDER BY contact_name")
        assert [(row["contact_name"], row["usage_count"]) for row in contacts] == [("Bob", 1), ("Jane Roe", 1)]

    def test_extraction_twice_creates_nothing(self, resolver, client, add_job):
        add_job()
        resolver.extract_customers()
        resolver.extract_contacts()

        assert resolver.extract_customers() == 0
        assert resolver.extract_contacts() == 0
        assert client.fetch_value("SELECT COUNT(*) FROM customer_contact") == 1


# =============================================================================
# ORDERS
# =============================================================================

class TestResolveOrders:

    def test_job_without_po(self, resolver, client, add_job):
        """Two lines of a job without PO: one job, one synthetic PO, two items."""
        add_job(job_number="JOB-TEST", line_number="1", part_number="TEST-PART", customer_name="客户A",
                po_number="", oe_number="38848")
        add_job(job_number="JOB-TEST", line_number="2", part_number="P-200", customer_name="客户A",
                po_number="NPO", oe_number="38848")

        stats = resolve_all(resolver)

        assert stats.jobs == 1
        assert stats.synthetic_purchase_orders == 1
        assert client.fetch_value("SELECT po_number FROM purchase_order") == "NPO-38848-JOB-TEST-1"
        assert client.fetch_value("SELECT customer_name FROM customer") == "客户A"
        keys = [row["unique_key"] for row in client.fetch_all("SELECT unique_key FROM order_item ORDER BY line_number")]
        assert keys == ["JOB-TEST|1", "JOB-TEST|2"]
        assert client.fetch_value("SELECT COUNT(*) FROM job") == 1

    def test_order_item_values(self, resolver, client, add_job):
        add_job(job_quantity="12 pcs", unit_price="$1,250.00", drawing_release="3/21/25",
                delivery_required_date="21-Mar-25")

        resolve_all(resolver)

        item = client.fetch_one("SELECT * FROM order_item")
        assert item["quantity"] == 12
        assert item["actual_price"] == 1250.0
        assert item["drawing_release_date"] == "2025-03-21"
        assert item["delivery_required_date"] == "2025-03-21"
        part = client.fetch_one("SELECT * FROM part WHERE id = :id", {"id": item["part_id"]})
        assert part["drawing_number"] == "P-100"
        assert part["revision"] == "A"

    def test_existing_po_number_is_merged(self, resolver, client, add_job):
        add_job(job_number="JOB-1", po_number="4500-R.1")
        add_job(job_number="JOB-2", po_number="4500-R.1", customer_contact="Bob")

        stats = resolve_all(resolver)

        assert stats.purchase_orders == 1
        assert stats.merged_purchase_orders == 1
        po_ids = {row["po_id"] for row in client.fetch_all("SELECT po_id FROM job")}
        assert len(po_ids) == 1

    def test_job_uses_lowest_line_po(self, resolver, client, diagnostics, add_job):
        add_job(job_number="JOB-1", line_number="2", po_number="PO-B")
        add_job(job_number="JOB-1", line_number="1", po_number="PO-A")

        resolve_all(resolver)

        assert client.fetch_value("SELECT po_number FROM purchase_order") == "PO-A"
        [entry] = diagnostics.of_kind(IssueKind.AMBIGUOUS_IDENTITY)
        assert entry.key == "JOB-1"
        assert entry.evidence["po_numbers"] == ["PO-A", "PO-B"]

    def test_real_po_preferred_over_missing(self, resolver, client, diagnostics, add_job):
        """A later line's real PO beats a synthetic number for the lowest line."""
        add_job(job_number="J2", line_number="1", po_number="")
        add_job(job_number="J2", line_number="2", po_number="PO-REAL")

        stats = resolve_all(resolver)

        assert client.fetch_all("SELECT po_number FROM purchase_order") == [{"po_number": "PO-REAL"}]
        assert stats.synthetic_purchase_orders == 0
        [entry] = diagnostics.of_kind(IssueKind.AMBIGUOUS_IDENTITY)
        assert entry.key == "J2"
        assert entry.evidence["chosen"] == "PO-REAL"
        assert entry.evidence["lines_without_po"] == 1

    def test_colliding_line_numbers_recorded(self, resolver, client, diagnostics, add_job):
        """Two legacy lines parsing to the same line number: the second is skipped and recorded."""
        first = add_job(job_number="J1", line_number="1")
        second = add_job(job_number="J1", line_number="1A", part_number="P-200")

        stats = resolve_all(resolver)

        assert client.fetch_value("SELECT COUNT(*) FROM order_item") == 1
        assert stats.skipped_lines == 1
        [entry] = diagnostics.of_kind(IssueKind.SKIPPED_ROW)
        assert entry.table == "jobs"
        assert entry.key == second
        assert entry.evidence["unique_key"] == "J1|1"
        assert first != second

    def test_missing_part_number_recorded(self, resolver, client, diagnostics, add_job):
        add_job(part_number="")

        resolve_all(resolver)

        assert client.fetch_value("SELECT part_id FROM order_item") is None
        assert len(diagnostics.of_kind(IssueKind.UNRESOLVABLE_REFERENCE)) == 1

    def test_assembly_flag_from_part_number(self, resolver, client, add_job):
        add_job(job_number="JOB-1", part_number="500-GA-1")
        add_job(job_number="JOB-2", part_number="RT-7")
        add_job(job_number="JOB-3", part_number="777-X")

        resolve_all(resolver)

        flags = {
            row["drawing_number"]: row["is_assembly"]
            for row in client.fetch_all("SELECT drawing_number, is_assembly FROM part")
        }
        assert flags == {"500-GA-1": 1, "RT-7": 0, "777-X": None}

    def test_resolve_twice_is_noop(self, resolver, client, add_job):
        add_job(job_number="JOB-1")
        add_job(job_number="JOB-1", line_number="2")
        resolve_all(resolver)

        stats = resolve_all(resolver)

        assert stats.order_items == 0
        assert stats.existing_order_items == 2
        assert client.fetch_value("SELECT COUNT(*) FROM order_item") == 2
        assert client.fetch_value("SELECT COUNT(*) FROM purchase_order") == 1


class TestAddOrderItem:

    def test_duplicate_line_raises(self, resolver, client):
        po_id = make_purchase_order(client, "PO-1")
        job_id = make_job_with_line(client, po_id, "JOB-1", line_number=1)

        with pytest.raises(IntegrityViolation):
            resolver.add_order_item(job_id, 1, quantity=3)

        assert client.fetch_value("SELECT COUNT(*) FROM order_item") == 1

    def test_transaction_survives_violation(self, resolver, client):
        po_id = make_purchase_order(client, "PO-1")
        job_id = make_job_with_line(client, po_id, "JOB-1", line_number=1)
        with pytest.raises(IntegrityViolation):
            resolver.add_order_item(job_id, 1)

        resolver.add_order_item(job_id, 2)

        assert client.fetch_value("SELECT unique_key FROM order_item WHERE line_number = 2") == "JOB-1|2"


# =============================================================================
# UNIQUE KEYS
# =============================================================================

class TestUniqueKeys:

    def test_legacy_rows_receive_key(self, resolver, client, add_job):
        add_job(job_number=" JOB-1 ", line_number="x")

        assert resolver.backfill_legacy_unique_keys() == 1
        assert client.fetch_value("SELECT unique_key FROM jobs") == "JOB-1|1"
        assert resolver.backfill_legacy_unique_keys() == 0

    def test_detail_rows_tie_break_and_unresolved(self, resolver, client, diagnostics, add_job):
        add_job(job_number="JOB-2", part_number="500-GA-1")
        add_job(job_number="JOB-1", part_number="500-GA-1")
        resolver.backfill_legacy_unique_keys()
        owned = client.insert("assembly_detail", {"part_number": "500-GA-1", "drawing_number": "RT-1"})
        orphan = client.insert("assembly_detail", {"part_number": "999-GA-9", "drawing_number": "RT-2"})

        assert resolver.backfill_detail_unique_keys() == 1

        keys = {row["id"]: row["unique_key"] for row in client.fetch_all("SELECT id, unique_key FROM assembly_detail")}
        # JOB-2 was inserted first, so it has the lowest job_id
        assert keys[owned] == "JOB-2|1"
        assert keys[orphan] is None
        [ambiguous] = diagnostics.of_kind(IssueKind.AMBIGUOUS_IDENTITY)
        assert ambiguous.evidence["candidates"] == ["JOB-2|1", "JOB-1|1"]
        [unresolved] = diagnostics.of_kind(IssueKind.UNRESOLVABLE_REFERENCE)
        assert unresolved.key == orphan


# =============================================================================
# PURCHASE ORDER REPAIRS
# =============================================================================

class TestLegacyNpoRewrite:

    def test_rewrite_to_final_scheme(self, resolver, client):
        po_id = make_purchase_order(client, "NPO-20250301-ACME-01", oe_number="12345678")
        make_job_with_line(client, po_id, "J7", line_number=10)

        stats = resolver.rewrite_legacy_npo_numbers()

        assert stats.rewritten == 1
        assert client.fetch_value("SELECT po_number FROM purchase_order") == "NPO-12345678-J7-10"

    def test_rewrite_twice_changes_nothing(self, resolver, client):
        po_id = make_purchase_order(client, "NPO-20250301-ACME-01", oe_number="12345678")
        make_job_with_line(client, po_id, "J7", line_number=10)
        resolver.rewrite_legacy_npo_numbers()

        stats = resolver.rewrite_legacy_npo_numbers()

        # the new number still fits the legacy pattern and maps onto itself
        assert stats.rewritten == 0
        assert stats.unchanged == 1
        assert client.fetch_value("SELECT po_number FROM purchase_order") == "NPO-12345678-J7-10"

    def test_po_without_items_is_skipped(self, resolver, client, diagnostics):
        make_purchase_order(client, "NPO-20250301-ACME-02")

        stats = resolver.rewrite_legacy_npo_numbers()

        assert stats.unresolved == 1
        assert client.fetch_value("SELECT po_number FROM purchase_order") == "NPO-20250301-ACME-02"
        assert len(diagnostics.of_kind(IssueKind.UNRESOLVABLE_REFERENCE)) == 1

    def test_collision_deactivates_old_po(self, resolver, client):
        make_purchase_order(client, "NPO-38848-J1-1")
        old_id = make_purchase_order(client, "NPO-20250301-ACME-03")
        make_job_with_line(client, old_id, "J1", line_number=1)

        stats = resolver.rewrite_legacy_npo_numbers()

        assert stats.merged == 1
        old = client.fetch_one("SELECT po_number, is_active FROM purchase_order WHERE id = :id", {"id": old_id})
        assert old["po_number"] == "NPO-20250301-ACME-03"
        assert old["is_active"] == 0

    def test_other_numbers_untouched(self, resolver, client):
        make_purchase_order(client, "NPO-38848-J1-1")
        make_purchase_order(client, "4500-R.1")

        stats = resolver.rewrite_legacy_npo_numbers()

        assert (stats.rewritten, stats.merged, stats.unchanged, stats.unresolved) == (0, 0, 0, 0)


class TestNormalizePurchaseOrders:

    def test_real_numbers_normalized(self, resolver, client):
        make_purchase_order(client, "4500 rev.01")
        make_purchase_order(client, "NPO-38848-j1-1")

        assert resolver.normalize_purchase_orders() == 1

        numbers = sorted(row["po_number"] for row in client.fetch_all("SELECT po_number FROM purchase_order"))
        assert numbers == ["4500-R.1", "NPO-38848-j1-1"]

    def test_collision_skipped(self, resolver, client, diagnostics):
        make_purchase_order(client, "4500-R.1")
        make_purchase_order(client, "4500R.1")

        assert resolver.normalize_purchase_orders() == 0
        assert len(diagnostics.of_kind(IssueKind.SKIPPED_ROW)) == 1


class TestFlagInactive:

    def test_only_absent_oe_numbers_deactivated(self, resolver, client):
        kept = make_purchase_order(client, "PO-1", oe_number="1001")
        dropped = make_purchase_order(client, "PO-2", oe_number="1002")
        already = make_purchase_order(client, "PO-3", oe_number="1003", is_active=0)

        assert resolver.flag_inactive_purchase_orders({"1001"}) == 1

        rows = {row["id"]: row for row in client.fetch_all("SELECT id, is_active, closed_at FROM purchase_order")}
        assert rows[kept]["is_active"] == 1
        assert rows[dropped]["is_active"] == 0
        assert rows[dropped]["closed_at"] is not None
        assert rows[already]["closed_at"] is None

    def test_flag_twice(self, resolver, client):
        make_purchase_order(client, "PO-1", oe_number="1001")
        resolver.flag_inactive_purchase_orders(set())

        assert resolver.flag_inactive_purchase_orders(set()) == 0

    def test_nothing_reactivated(self, resolver, client):
        make_purchase_order(client, "PO-1", oe_number="1001", is_active=0)

        resolver.flag_inactive_purchase_orders({"1001"})

        assert client.fetch_value("SELECT is_active FROM purchase_order") == 0
