"""
tests/test_crossref.py
----------------------
Tests for entity mention detection and graph edge construction.

Run with: python -m pytest tests/test_crossref.py -v
"""

from indexing.crossref import build_cross_references, chunk_owner, find_mentions
from indexing.indexer import index_all_knowledge
from sqlite import queries


def _edges(conn, edge_type: str) -> set[tuple[str, str, str, str]]:
    rows = conn.execute(
        "SELECT source_type, source_id, target_type, target_id FROM knowledge_edges WHERE edge_type = ?",
        (edge_type,)
    ).fetchall()
    return {tuple(row) for row in rows}


class TestFindMentions:
    """Tests for find_mentions."""

    def test_first_appearance_order(self):
        text = "See CR-3 and VR-BUILD; CR-3 again, then Incident #4 and P1-002"
        assert find_mentions(text) == [
            ("cr", "CR-3"),
            ("vr", "VR-BUILD"),
            ("incident", "4"),
            ("plan_item", "P1-002"),
        ]

    def test_incident_case_insensitive(self):
        assert find_mentions("caused by incident 12") == [("incident", "12")]

    def test_compound_vr(self):
        assert find_mentions("run VR-SCHEMA-DIFF first") == [("vr", "VR-SCHEMA-DIFF")]

    def test_nothing(self):
        assert find_mentions("") == []
        assert find_mentions("plain prose with CRX-1 and vr-build") == []


class TestChunkOwner:
    """Tests for chunk_owner."""

    def test_entity_owners(self):
        assert chunk_owner({"id": 1, "metadata": {"cr_id": "CR-2"}}) == ("cr", "CR-2")
        assert chunk_owner({"id": 1, "metadata": {"incident_num": 3}}) == ("incident", "3")
        assert chunk_owner({"id": 1, "metadata": {"is_correction": True, "title": "T"}}) == ("correction", "T")
        assert chunk_owner({"id": 1, "metadata": {"plan_item_id": "P1-001"}}) == ("plan_item", "P1-001")

    def test_plain_chunk(self):
        assert chunk_owner({"id": 7, "metadata": {"level": 2}}) == ("chunk", "7")


class TestBuildCrossReferences:
    """Edges built while indexing the sample corpus."""

    def test_structured_edges(self, corpus, conn):
        index_all_knowledge(conn, corpus)

        assert _edges(conn, "enforced_by") >= {
            ("cr", "CR-1", "vr", "VR-FILE"),
            ("cr", "CR-2", "vr", "VR-SCHEMA"),
            ("cr", "CR-3", "vr", "VR-BUILD"),
        }
        assert ("cr", "CR-1", "pattern", "evidence") in _edges(conn, "references")
        assert _edges(conn, "caused") == {
            ("incident", "1", "cr", "CR-3"),
            ("incident", "2", "cr", "CR-2"),
        }
        assert _edges(conn, "enforces") == {("correction", "Verify files exist", "cr", "CR-1")}

    def test_co_occurrence(self, corpus, conn):
        """Incident #1 mentions VR-BUILD and CR-3 in that order"""
        index_all_knowledge(conn, corpus)
        assert ("vr", "VR-BUILD", "cr", "CR-3") in _edges(conn, "co_occurs")

    def test_no_self_loops(self, corpus, conn):
        index_all_knowledge(conn, corpus)
        loops = conn.execute(
            "SELECT COUNT(*) FROM knowledge_edges WHERE source_type = target_type AND source_id = target_id"
        ).fetchone()[0]
        assert loops == 0

    def test_rebuild_adds_nothing(self, corpus, conn):
        index_all_knowledge(conn, corpus)
        doc_id = queries.get_document_by_path(conn, "CLAUDE.md")["id"]
        before = conn.execute("SELECT COUNT(*) FROM knowledge_edges").fetchone()[0]

        with conn:
            created = build_cross_references(conn, doc_id)

        assert created == 0
        assert conn.execute("SELECT COUNT(*) FROM knowledge_edges").fetchone()[0] == before

    def test_edges_owned_by_document(self, corpus, conn):
        """Purging a document drops the edges it produced"""
        index_all_knowledge(conn, corpus)
        (corpus.memory_dir / "corrections.md").unlink()
        index_all_knowledge(conn, corpus)
        assert _edges(conn, "enforces") == set()
