"""
Unit tests for tiered drawing location matching.

These tests verify that:
1. Exact matches always beat fuzzy ones
2. A known customer restricts fuzzy matches to that customer's folders
3. Candidate order (name, then row id) makes results deterministic
4. Found associations are saved, and failing to save does not lose the match
"""

import pytest
from sqlalchemy.exc import OperationalError

from recordkit.diagnostics import IssueKind
from recordkit.locations import (
    Candidate,
    DrawingFileIndex,
    FolderAliases,
    FuzzyLocationMatcher,
    InMemoryCandidateIndex,
    LegacyDrawingIndex,
    MatchTier,
    like_contains,
    match_location,
    sync_folder_mapping,
)


def make_candidate(name, location, drawing_number=None, file_id=None, part_id=None) -> Candidate:
    """Helper to create Candidate objects for testing."""
    return Candidate(
        name=name,
        location=location,
        drawing_number=drawing_number,
        file_id=file_id,
        part_id=part_id,
    )


@pytest.fixture
def index():
    return InMemoryCandidateIndex([
        make_candidate("ABC-123 rev B.pdf", "/drawings/zeta/ABC-123 rev B.pdf", "ABC-123-B"),
        make_candidate("ABC-123.pdf", "/drawings/beta/ABC-123.pdf"),
        make_candidate("ABC-123.pdf", "/drawings/acme/ABC-123.pdf"),
        make_candidate("XYZ-9.pdf", "/drawings/beta/XYZ-9.pdf", "XYZ-9"),
        make_candidate("EMPTY-1.pdf", "", "EMPTY-1"),
    ])


# =============================================================================
# PURE MATCHING
# =============================================================================

class TestMatchLocation:

    def test_exact_beats_fuzzy(self, index):
        match = match_location("XYZ-9", "Acme", index)

        assert match.tier is MatchTier.EXACT
        assert match.location == "/drawings/beta/XYZ-9.pdf"

    def test_exact_without_location_falls_through(self, index):
        assert match_location("EMPTY-1", None, index) is None

    def test_scoped_match_uses_customer_folder(self, index):
        match = match_location("ABC-123", "ACME", index)

        assert match.tier is MatchTier.SCOPED
        assert match.location == "/drawings/acme/ABC-123.pdf"

    def test_scoped_match_uses_alias(self, index):
        aliases = FolderAliases({"Beta Industries LLC": "Beta"})

        match = match_location("ABC-123", "Beta Industries LLC", index, aliases)

        assert match.location == "/drawings/beta/ABC-123.pdf"

    def test_customer_without_candidates_gets_none(self, index):
        assert match_location("ABC-123", "Gamma", index) is None

    def test_unscoped_match_is_first_by_name(self, index):
        match = match_location("abc-123", None, index)

        assert match.tier is MatchTier.UNSCOPED
        # "ABC-123 rev B.pdf" sorts before "ABC-123.pdf"
        assert match.location == "/drawings/zeta/ABC-123 rev B.pdf"

    def test_ties_broken_by_insertion_order(self):
        index = InMemoryCandidateIndex([
            make_candidate("P-1.pdf", "/b/P-1.pdf"),
            make_candidate("P-1.pdf", "/a/P-1.pdf"),
        ])

        assert match_location("P-1", None, index).location == "/b/P-1.pdf"

    def test_repeated_calls_agree(self, index):
        results = {match_location("ABC", None, index).location for _ in range(5)}
        assert len(results) == 1

    @pytest.mark.parametrize("query", [None, "", "   "])
    def test_empty_query(self, index, query):
        assert match_location(query, None, index) is None

    def test_like_folds_ascii_only(self):
        assert like_contains("Drawing ABC.pdf", "abc")
        assert not like_contains("ÄBC.pdf", "äbc")


class TestFolderAliases:

    def test_scoping_terms(self):
        aliases = FolderAliases({"Acme Corp": "ACME"})

        assert aliases.scoping_terms("Acme Corp") == ["acme corp", "acme"]
        assert aliases.scoping_terms("Other") == ["other"]
        assert aliases.scoping_terms("") == []

    def test_first_alias_wins(self):
        aliases = FolderAliases()
        aliases.add("Acme Corp", "ACME")
        aliases.add("Acme Corp", "ACME2")

        assert aliases.alias_for("Acme Corp") == "ACME"
        assert len(aliases) == 1

    def test_loaded_from_database(self, schema, client):
        client.insert("customer_folder_map", {"customer_name": "Acme Corp", "folder_name": "ACME"}, returning=None)
        customer_id = client.insert("customer", {"customer_name": "Beta LLC"})
        client.insert("folder_mapping", {"customer_id": customer_id, "folder_name": "BETA", "is_verified": 1})

        aliases = FolderAliases.from_database(client)

        assert aliases.alias_for("Acme Corp") == "ACME"
        assert aliases.alias_for("Beta LLC") == "BETA"

    def test_sync_folder_mapping(self, schema, client):
        client.insert("customer", {"customer_name": "Acme Corp"})
        client.insert("customer_folder_map", {"customer_name": "Acme Corp ", "folder_name": "ACME"}, returning=None)
        client.insert("customer_folder_map", {"customer_name": "Unknown", "folder_name": "UNK"}, returning=None)

        assert sync_folder_mapping(client) == 1
        assert sync_folder_mapping(client) == 0
        row = client.fetch_one("SELECT folder_name, is_verified FROM folder_mapping")
        assert row == {"folder_name": "ACME", "is_verified": 1}


# =============================================================================
# DATABASE INDEXES
# =============================================================================

class TestLegacyDrawingIndex:

    def test_search_ordered_by_name(self, schema, client, add_drawing):
        add_drawing("P-2", "P-100 b.pdf", "/x/b.pdf")
        add_drawing("P-1", "P-100 a.pdf", "/x/a.pdf")
        add_drawing("Q-1", "Q-1.pdf", "/x/q.pdf")

        names = [candidate.name for candidate in LegacyDrawingIndex(client).search("p-100")]

        assert names == ["P-100 a.pdf", "P-100 b.pdf"]

    def test_exact(self, schema, client, add_drawing):
        add_drawing("P-1", "anything.pdf", "/x/p1.pdf")

        [candidate] = LegacyDrawingIndex(client).exact("P-1")
        assert candidate.location == "/x/p1.pdf"


class TestFuzzyLocationMatcher:

    def make_part(self, client, drawing_number):
        return client.insert("part", {"drawing_number": drawing_number, "revision": "-"})

    def make_file(self, client, name, path, part_id=None, is_active=1):
        return client.insert("drawing_file", {
            "file_name": name,
            "file_path": path,
            "part_id": part_id,
            "is_active": is_active,
        })

    def test_match_is_saved_then_reused(self, schema, client):
        part_id = self.make_part(client, "P-100")
        file_id = self.make_file(client, "P-100 rev A.pdf", "/drawings/acme/P-100 rev A.pdf")
        matcher = FuzzyLocationMatcher(DrawingFileIndex(client))

        first = matcher.locate_for_part(part_id, "P-100", "Acme")

        assert first.tier is MatchTier.SCOPED
        assert client.fetch_value("SELECT part_id FROM drawing_file WHERE id = :id", {"id": file_id}) == part_id

        second = matcher.locate_for_part(part_id, "P-100", "Acme")
        assert second.tier is MatchTier.STORED
        assert second.location == first.location

    def test_inactive_files_not_searched(self, schema, client):
        part_id = self.make_part(client, "P-100")
        self.make_file(client, "P-100.pdf", "/old/P-100.pdf", is_active=0)

        assert FuzzyLocationMatcher(DrawingFileIndex(client)).locate_for_part(part_id, "P-100") is None

    def test_linked_file_is_exact_for_other_lookups(self, schema, client):
        part_id = self.make_part(client, "P-100")
        self.make_file(client, "scan-0001.pdf", "/scans/scan-0001.pdf", part_id=part_id)

        match = FuzzyLocationMatcher(DrawingFileIndex(client)).locate("P-100")

        assert match.tier is MatchTier.EXACT
        assert match.location == "/scans/scan-0001.pdf"

    def test_persistence_failure_is_ignored(self):
        class FailingIndex(InMemoryCandidateIndex):
            def associate(self, candidate, part_id):
                raise OperationalError("UPDATE drawing_file", {}, Exception("database is locked"))

        index = FailingIndex([make_candidate("P-1.pdf", "/a/P-1.pdf", file_id=1)])

        match = FuzzyLocationMatcher(index).locate_for_part(7, "P-1")

        assert match.location == "/a/P-1.pdf"

    def test_link_parts(self, schema, client):
        linked = self.make_part(client, "P-100")
        self.make_part(client, "P-999")
        self.make_file(client, "P-100.pdf", "/drawings/P-100.pdf")

        assert FuzzyLocationMatcher(DrawingFileIndex(client)).link_parts(client) == 1
        assert client.fetch_value("SELECT part_id FROM drawing_file") == linked


class TestBackfills:

    def test_job_locations(self, schema, client, diagnostics, add_job, add_drawing):
        found = add_job(part_number="P-100", customer_name="Acme Corp")
        missing = add_job(job_number="JOB-2", part_number="P-404", customer_name="Acme Corp")
        add_drawing("P-100", "P-100.pdf", "/drawings/acme/P-100.pdf")
        matcher = FuzzyLocationMatcher(LegacyDrawingIndex(client), diagnostics=diagnostics)

        assert matcher.backfill_job_locations(client) == 1

        locations = {row["job_id"]: row["file_location"] for row in client.fetch_all("SELECT job_id, file_location FROM jobs")}
        assert locations[found] == "/drawings/acme/P-100.pdf"
        assert locations[missing] is None
        [entry] = diagnostics.of_kind(IssueKind.UNRESOLVABLE_REFERENCE)
        assert entry.key == missing

    def test_assembly_locations_scoped_by_job_customer(self, schema, client, add_job, add_drawing):
        add_job(part_number="500-GA-1", customer_name="Beta LLC")
        add_drawing("X", "RT-5 plate.pdf", "/drawings/acme/RT-5.pdf")
        add_drawing("Y", "RT-5 plate.pdf", "/drawings/beta llc/RT-5.pdf")
        row_id = client.insert("assembly_detail", {"part_number": "500-GA-1", "drawing_number": "RT-5"})

        FuzzyLocationMatcher(LegacyDrawingIndex(client)).backfill_assembly_locations(client)

        assert client.fetch_value(
            "SELECT file_location FROM assembly_detail WHERE id = :id", {"id": row_id}
        ) == "/drawings/beta llc/RT-5.pdf"
