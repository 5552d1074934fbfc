"""
tests/test_search.py
--------------------
Tests for full-text search over indexed chunks.

Run with: python -m pytest tests/test_search.py -v
"""

import pytest

from indexing.indexer import index_all_knowledge
from retrieval.search import MAX_LIMIT, _clamp_limit, sanitize_fts_query, search_knowledge


@pytest.fixture
def indexed(corpus, conn):
    index_all_knowledge(conn, corpus)
    return conn


class TestSanitize:
    """Tests for sanitize_fts_query."""

    def test_tokens_quoted(self):
        assert sanitize_fts_query('BigInt "serialization" OR (error*') == '"BigInt" "serialization" "error"'

    def test_operators_only(self):
        assert sanitize_fts_query("AND OR NOT") is None

    def test_punctuation_only(self):
        assert sanitize_fts_query("() * ^ --") is None

    def test_empty(self):
        assert sanitize_fts_query("") is None
        assert sanitize_fts_query(None) is None

    def test_inner_hyphen_kept(self):
        assert sanitize_fts_query("CR-1") == '"CR-1"'


class TestSearchKnowledge:
    """Tests for search_knowledge."""

    def test_finds_matches(self, indexed):
        results = search_knowledge(indexed, "schema")
        assert results
        first = results[0]
        assert set(first) >= {
            "chunk_id", "heading", "content", "chunk_type", "metadata",
            "file_path", "category", "title", "rank",
        }
        assert isinstance(first["metadata"], dict)

    def test_category_filter(self, indexed):
        results = search_knowledge(indexed, "claimed", category="memory")
        assert results
        assert all(r["category"] == "memory" for r in results)

    def test_chunk_type_filter(self, indexed):
        results = search_knowledge(indexed, "schema", chunk_type="rule")
        assert [r["metadata"]["cr_id"] for r in results] == ["CR-2"]

    def test_ranked_best_first(self, indexed):
        ranks = [r["rank"] for r in search_knowledge(indexed, "build")]
        assert ranks == sorted(ranks)

    def test_no_match(self, indexed):
        assert search_knowledge(indexed, "xylophone") == []

    @pytest.mark.parametrize("query", ["AND OR", "", "***"])
    def test_unusable_queries_empty(self, indexed, query):
        assert search_knowledge(indexed, query) == []

    @pytest.mark.parametrize("query", ['schema"', "(build", "NEAR(a b)", "col:value", "^start"])
    def test_syntax_characters_never_raise(self, indexed, query):
        assert isinstance(search_knowledge(indexed, query), list)

    def test_limit(self, indexed):
        assert len(search_knowledge(indexed, "the", limit=1)) <= 1

    def test_limit_clamped(self):
        assert _clamp_limit(500) == MAX_LIMIT
        assert _clamp_limit(0) == 10
        assert _clamp_limit(None) == 10
