"""
tests/test_lookup.py
--------------------
Tests for rule, verification, incident, schema and plan lookups.

Run with: python -m pytest tests/test_lookup.py -v
"""

import pytest

from indexing.indexer import index_all_knowledge
from retrieval.lookup import (
    check_schema,
    find_commands,
    find_incidents,
    find_patterns,
    find_plans,
    find_rules,
    find_verifications,
    get_incident,
    get_command,
    get_plan,
    get_rule,
    get_verification,
    list_corrections,
)

from tests.conftest import write


PLAN_MD = """\
# Search Rollout

# IMPLEMENTATION STATUS

P1-001 done, P1-002 pending

---

### P1-001: Add FTS table

Edit src/db/schema.sql

### P1-002: Wire search tool

Touch src/tools/search.ts
"""


COMMAND_MD = """\
# Ship a Release

Run the release checklist, then tag the commit.

## Steps

Run the build and push the tag.
"""

PREAMBLE_MD = """\
# Shared Preamble

## Rules

Read the project rules before any command.
"""

DB_PATTERNS_MD = """\
# Database Patterns

## Migrations

Always write reversible migrations.

## Indexes

Index every foreign key column.
"""


@pytest.fixture
def indexed(corpus, conn):
    write(corpus.plans_dir / "search-rollout.md", PLAN_MD)
    write(corpus.knowledge_dir / "commands" / "ship.md", COMMAND_MD)
    write(corpus.knowledge_dir / "commands" / "_shared-preamble.md", PREAMBLE_MD)
    write(corpus.knowledge_dir / "patterns" / "database-patterns.md", DB_PATTERNS_MD)
    index_all_knowledge(conn, corpus)
    return conn


class TestRules:
    """Tests for rule lookups."""

    def test_get_rule(self, indexed):
        rule = get_rule(indexed, "CR-2")
        assert rule["rule_text"] == "Check the schema before writing queries"
        assert [v["vr_type"] for v in rule["verifications"]] == ["VR-SCHEMA"]
        assert [i["incident_num"] for i in rule["incidents"]] == [2]
        assert rule["corrections"] == []

    def test_undefined_verification_skipped(self, indexed):
        assert get_rule(indexed, "CR-1")["verifications"] == []

    def test_missing_rule(self, indexed):
        assert get_rule(indexed, "CR-99") is None

    def test_find_rules(self, indexed):
        assert [r["rule_id"] for r in find_rules(indexed, "build")] == ["CR-3"]
        assert len(find_rules(indexed)) == 3


class TestVerifications:
    """Tests for verification lookups."""

    def test_get_verification_with_rules(self, indexed):
        vr = get_verification(indexed, "VR-BUILD")
        assert vr["command"] == "npm run build"
        assert [r["rule_id"] for r in vr["rules"]] == ["CR-3"]

    def test_missing(self, indexed):
        assert get_verification(indexed, "VR-NOPE") is None

    def test_find_by_situation(self, indexed):
        assert [v["vr_type"] for v in find_verifications(indexed, "queries")] == ["VR-SCHEMA"]


class TestIncidents:
    """Tests for incident lookups."""

    def test_get_incident(self, indexed):
        incident = get_incident(indexed, 1)
        assert incident["type"] == "false-claim"
        assert [r["rule_id"] for r in incident["rules"]] == ["CR-3"]

    def test_missing(self, indexed):
        assert get_incident(indexed, 42) is None

    def test_find_by_keyword_and_type(self, indexed):
        assert [i["incident_num"] for i in find_incidents(indexed, keyword="schema")] == [2]
        assert [i["incident_num"] for i in find_incidents(indexed, incident_type="false")] == [1]
        assert len(find_incidents(indexed)) == 2


class TestSchemaAndCorrections:
    """Tests for schema mismatch and correction lookups."""

    def test_check_schema(self, indexed):
        assert [m["correct_column"] for m in check_schema(indexed, "users", "name")] == ["full_name"]
        assert check_schema(indexed, "orders") == []

    def test_list_corrections_newest_first(self, indexed):
        assert [c["title"] for c in list_corrections(indexed)] == ["Keep answers short", "Verify files exist"]

    def test_list_corrections_by_rule(self, indexed):
        assert [c["title"] for c in list_corrections(indexed, "CR-1")] == ["Verify files exist"]


class TestPlans:
    """Tests for plan lookups."""

    def test_list_plans(self, indexed):
        assert [p["file_path"] for p in find_plans(indexed)] == ["plans/search-rollout.md"]

    def test_find_by_referenced_file(self, indexed):
        assert [p["title"] for p in find_plans(indexed, file="src/db/schema.sql")] == ["Search Rollout"]
        assert find_plans(indexed, file="other.py") == []

    def test_find_by_keyword(self, indexed):
        assert [p["file_path"] for p in find_plans(indexed, keyword="FTS")] == ["plans/search-rollout.md"]

    def test_get_plan(self, indexed):
        plan = get_plan(indexed, "rollout")
        assert [i["item_id"] for i in plan["items"]] == ["P1-001", "P1-002"]
        assert "P1-002 pending" in plan["status"]
        assert plan["file_refs"] == ["src/db/schema.sql", "src/tools/search.ts"]

    def test_get_plan_missing(self, indexed):
        assert get_plan(indexed, "nothing") is None

    def test_find_by_status(self, indexed):
        assert [p["file_path"] for p in find_plans(indexed, status="pending")] == ["plans/search-rollout.md"]
        assert find_plans(indexed, status="blocked") == []


class TestCommands:
    """Tests for command lookups."""

    def test_get_by_name(self, indexed):
        command = get_command(indexed, "ship")
        assert command["file_path"] == "commands/ship.md"
        assert command["content"].startswith("# Ship a Release")

    def test_get_by_title(self, indexed):
        assert get_command(indexed, "Ship a Release")["name"] == "ship"

    def test_falls_back_to_document_sections(self, indexed):
        """The shared preamble has no command chunk"""
        command = get_command(indexed, "preamble")
        assert command["file_path"] == "commands/_shared-preamble.md"
        assert "Read the project rules before any command." in command["content"]

    def test_missing(self, indexed):
        assert get_command(indexed, "deploy") is None

    def test_find_by_keyword(self, indexed):
        assert [c["name"] for c in find_commands(indexed, "tag")] == ["ship"]
        assert find_commands(indexed, "rollback") == []

    def test_list_all(self, indexed):
        assert [c["name"] for c in find_commands(indexed)] == ["ship"]


class TestPatterns:
    """Tests for domain pattern guidance."""

    def test_domain_sections(self, indexed):
        guidance = find_patterns(indexed, "database")
        assert guidance["documents"] == ["patterns/database-patterns.md"]
        headings = [s["heading"] for s in guidance["sections"] if s["heading"]]
        assert headings == ["Migrations", "Indexes"]
        assert guidance["fallback"] is False

    def test_topic_within_domain(self, indexed):
        guidance = find_patterns(indexed, "database", "foreign")
        assert [s["heading"] for s in guidance["sections"]] == ["Indexes"]

    def test_fallback_to_corpus_search(self, indexed):
        """No pattern file mentions schema, so the whole corpus is searched"""
        guidance = find_patterns(indexed, "schema")
        assert guidance["documents"] == []
        assert guidance["fallback"] is True
        assert guidance["sections"]

    def test_domain_required(self, indexed):
        with pytest.raises(ValueError):
            find_patterns(indexed, "")
