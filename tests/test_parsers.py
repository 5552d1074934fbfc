"""
tests/test_parsers.py
---------------------
Unit tests for the structured-format parsers and table scanning.

Run with: python -m pytest tests/test_parsers.py -v
"""

import pytest

from indexing.parsers import (
    extract_description,
    extract_file_references,
    extract_implementation_status,
    extract_title,
    parse_corrections,
    parse_incidents,
    parse_plan_items,
    parse_rule_table,
    parse_schema_mismatches,
    parse_verification_table,
)
from indexing.tables import link_target, scan_tables, split_row, strip_markup

from tests.conftest import CORRECTIONS_MD, INCIDENT_LOG_MD, RULES_MD


class TestTables:
    """Tests for the markdown table scanner."""

    def test_header_and_rows(self):
        tables = scan_tables("| a | b |\n|---|---|\n| 1 | 2 |\n| 3 | 4 |\n")
        assert len(tables) == 1
        assert tables[0].header == ["a", "b"]
        assert [row.cells for row in tables[0].rows] == [["1", "2"], ["3", "4"]]

    def test_row_line_numbers(self):
        tables = scan_tables("intro\n\n| a |\n|---|\n| x |\n")
        assert tables[0].line_start == 3
        assert tables[0].rows[0].line == 5

    def test_separate_tables(self):
        """A non-table line ends a table"""
        tables = scan_tables("| a |\n| 1 |\n\n| b |\n| 2 |\n")
        assert len(tables) == 2

    def test_escaped_pipe(self):
        assert split_row("| a | b \\| c |") == ["a", "b | c"]

    def test_strip_markup(self):
        assert strip_markup("**`VR-BUILD`**") == "VR-BUILD"
        assert strip_markup("  ") is None

    def test_link_target(self):
        assert link_target("[evidence](patterns/evidence.md)") == "patterns/evidence.md"
        assert link_target("patterns/db.md") == "patterns/db.md"

    def test_column_index_matches_whole_words(self):
        table = scan_tables("| # | Description | **CR Added** |\n|---|---|---|\n")[0]
        assert table.column_index("cr added", "cr") == 2
        assert table.column_index("cr") == 2
        assert table.column_index("script") is None


class TestRuleTable:
    """Tests for canonical rule table parsing."""

    def test_parses_every_row_in_order(self):
        """N well-formed rows give N rules in table order"""
        rules = parse_rule_table(RULES_MD)
        assert [r.rule_id for r in rules] == ["CR-1", "CR-2", "CR-3"]

    def test_fields(self):
        rule = parse_rule_table(RULES_MD)[0]
        assert rule.rule_text == "Never claim state without proof"
        assert rule.vr_type == "VR-FILE"
        assert rule.reference_path == "patterns/evidence.md"

    def test_empty_optional_cell(self):
        """Empty reference cell is None, mandatory fields still present"""
        rule = parse_rule_table(RULES_MD)[1]
        assert rule.rule_id == "CR-2"
        assert rule.reference_path is None

    def test_short_rows_keep_mandatory_fields(self):
        """Rows missing optional columns still yield id and text"""
        text = "| CR-7 | Keep commits small |\n| CR-8 | Write tests |\n"
        rules = parse_rule_table(text)
        assert [(r.rule_id, r.rule_text, r.vr_type) for r in rules] == [
            ("CR-7", "Keep commits small", None),
            ("CR-8", "Write tests", None),
        ]

    def test_bold_identifiers(self):
        text = "| Rule | Text |\n|---|---|\n| **CR-4** | Do the thing |\n"
        assert parse_rule_table(text)[0].rule_id == "CR-4"

    def test_unnamed_extra_column_ignored(self):
        """Optional columns come from header names when a header exists"""
        text = "| ID | Rule | Notes |\n|---|---|---|\n| CR-5 | Be careful | see VR docs |\n"
        rule = parse_rule_table(text)[0]
        assert rule.vr_type is None
        assert rule.reference_path is None

    def test_severity_column(self):
        text = "| ID | Rule | Severity |\n|---|---|---|\n| CR-6 | Never force push | CRITICAL |\n"
        assert parse_rule_table(text)[0].severity == "CRITICAL"

    @pytest.mark.parametrize("text", ["", "no tables here", "| a | b |\n|---|---|\n| x | y |\n"])
    def test_no_rules(self, text):
        assert parse_rule_table(text) == []


class TestVerificationTable:
    """Tests for verification type table parsing."""

    def test_rows(self):
        vrs = parse_verification_table(RULES_MD)
        assert [v.vr_type for v in vrs] == ["VR-BUILD", "VR-SCHEMA"]

    def test_command_backticks_stripped(self):
        vr = parse_verification_table(RULES_MD)[0]
        assert vr.command == "npm run build"
        assert vr.expected == "Exit 0"
        assert vr.use_when == "Before claiming done"

    def test_headerless_positional(self):
        text = "| VR-TEST | `pytest` | All pass | After edits | Regressions |\n"
        vr = parse_verification_table(text)[0]
        assert vr.command == "pytest"
        assert vr.expected == "All pass"
        assert vr.use_when == "After edits"

    def test_row_without_command_skipped(self):
        text = "| Type | Command |\n|---|---|\n| VR-EMPTY | |\n"
        assert parse_verification_table(text) == []


class TestIncidents:
    """Tests for incident log parsing."""

    def test_blocks(self):
        incidents = parse_incidents(INCIDENT_LOG_MD)
        assert [i.incident_num for i in incidents] == [1, 2]

    def test_block_fields(self):
        incident = parse_incidents(INCIDENT_LOG_MD)[0]
        assert incident.title == "Claimed build passed without running it"
        assert incident.date == "2026-01-10"
        assert incident.type == "false-claim"
        assert incident.description == "Reported a green build that was never run"
        assert incident.prevention == "Always run VR-BUILD before reporting"
        assert incident.cr_added == "CR-3"

    def test_bold_marker(self):
        text = "**Incident #5** - Deleted the wrong branch\n\n**Root Cause**: Guessed the name\n"
        incident = parse_incidents(text)[0]
        assert incident.incident_num == 5
        assert incident.title == "Deleted the wrong branch"
        assert incident.root_cause == "Guessed the name"

    def test_summary_table_fills_gaps(self):
        """Table rows add incidents not already seen as blocks"""
        text = INCIDENT_LOG_MD + (
            "\n## Summary\n\n"
            "| # | Date | Type | Gap | Prevention |\n"
            "|---|------|------|-----|------------|\n"
            "| 1 | 2026-01-10 | false-claim | dup | dup |\n"
            "| 3 | 2026-01-20 | process | Skipped review | Always review |\n"
        )
        incidents = parse_incidents(text)
        assert [i.incident_num for i in incidents] == [1, 2, 3]
        assert incidents[0].description == "Reported a green build that was never run"
        assert incidents[2].description == "Skipped review"

    def test_summary_table_cr_added_column(self):
        """CR Added is read from its own column, not from Description"""
        text = (
            "| # | Date | Type | Description | Prevention | CR Added |\n"
            "|---|------|------|-------------|------------|----------|\n"
            "| 1 | 2026-01-10 | false-claim | Claimed build passed | Run build | CR-3 |\n"
            "| 2 | 2026-01-12 | schema | Guessed a column | Check schema | |\n"
        )
        incidents = parse_incidents(text)
        assert incidents[0].description == "Claimed build passed"
        assert incidents[0].cr_added == "CR-3"
        assert incidents[1].cr_added is None

    def test_template_yields_nothing(self):
        """Placeholder numbers are not incidents"""
        text = "## Incident #N: Title\n\n- **Date**: YYYY-MM-DD\n"
        assert parse_incidents(text) == []


class TestSchemaMismatches:
    """Tests for the Known Schema Mismatches section."""

    def test_table_rows(self):
        mismatches = parse_schema_mismatches(RULES_MD)
        assert len(mismatches) == 1
        m = mismatches[0]
        assert (m.table_name, m.wrong_column, m.correct_column) == ("users", "name", "full_name")

    def test_bullet_notes(self):
        text = "## Known Schema Mismatches\n\n- `orders.total` -> `amount_cents`\n- Dates are UTC\n"
        mismatches = parse_schema_mismatches(text)
        assert mismatches[0].table_name == "orders"
        assert mismatches[0].wrong_column == "total"
        assert mismatches[0].correct_column == "amount_cents"
        assert mismatches[1].note == "Dates are UTC"
        assert mismatches[1].table_name is None

    def test_section_ends_at_next_heading(self):
        text = "## Known Schema Mismatches\n\n- one\n\n## Other\n\n- two\n"
        assert [m.note for m in parse_schema_mismatches(text)] == ["one"]

    def test_absent_section(self):
        assert parse_schema_mismatches("# Nothing\n\n| a | b | c |\n") == []


class TestCorrections:
    """Tests for corrections log parsing."""

    def test_only_active_entries(self):
        """Archived entries are excluded"""
        corrections = parse_corrections(CORRECTIONS_MD)
        assert [c.title for c in corrections] == ["Verify files exist", "Keep answers short"]

    def test_fields(self):
        c = parse_corrections(CORRECTIONS_MD)[0]
        assert c.date == "2026-01-15"
        assert c.wrong == "Claimed the config file existed"
        assert c.correction == "Listed the directory first"
        assert c.rule == "Never claim a file exists without checking"
        assert c.cr_rule == "CR-1"

    def test_missing_cr_is_none(self):
        assert parse_corrections(CORRECTIONS_MD)[1].cr_rule is None

    def test_missing_active_heading(self):
        text = "# Corrections\n\n### 2026-01-15 - Orphan\n- **Wrong**: x\n"
        assert parse_corrections(text) == []

    def test_configurable_headings(self):
        text = (
            "## Current\n\n### 2026-02-01 - New\n- **Rule**: r\n\n"
            "## Old Stuff\n\n### 2025-01-01 - Gone\n- **Rule**: r\n"
        )
        corrections = parse_corrections(text, active_heading="Current", archive_heading="Old Stuff")
        assert [c.title for c in corrections] == ["New"]

    def test_archive_heading_deeper_than_active(self):
        """An archive heading nested under the active one still ends the span"""
        text = (
            "# Active Prevention Rules\n\n### 2026-02-01 - Kept\n- **Rule**: r\n\n"
            "## Archived\n\n### 2025-01-01 - Dropped\n- **Rule**: r\n"
        )
        assert [c.title for c in parse_corrections(text)] == ["Kept"]


class TestPlansAndMetadata:
    """Tests for plan parsing and document metadata."""

    PLAN = (
        "# Search Rollout\n\n"
        "# IMPLEMENTATION STATUS\n\nP1-001 done, P1-002 pending\n\n---\n\n"
        "## Phase 1\n\n"
        "### P1-001: Add FTS table\n\nEdit src/db/schema.sql and scripts/migrate.py\n\n"
        "### P1-002: Wire search tool\n\nTouch src/tools/search.ts\n"
    )

    def test_plan_items(self):
        items = parse_plan_items(self.PLAN)
        assert [(i.item_id, i.title) for i in items] == [
            ("P1-001", "Add FTS table"),
            ("P1-002", "Wire search tool"),
        ]
        assert self.PLAN.splitlines()[items[0].line - 1].startswith("### P1-001")

    def test_implementation_status(self):
        status = extract_implementation_status(self.PLAN)
        assert status.startswith("# IMPLEMENTATION STATUS")
        assert "P1-002 pending" in status
        assert "Phase 1" not in status

    def test_file_references_unique(self):
        refs = extract_file_references(self.PLAN + "\nAgain src/db/schema.sql\n")
        assert refs == ["src/db/schema.sql", "scripts/migrate.py", "src/tools/search.ts"]

    def test_title_from_h1(self):
        assert extract_title(self.PLAN, "docs/plans/rollout.md") == "Search Rollout"

    def test_title_from_file_name(self):
        assert extract_title("no heading", "docs/plans/rollout.md") == "rollout"

    def test_description_from_front_matter(self):
        text = '---\nname: ship\ndescription: "Ship the current branch"\n---\n\n# Ship\n'
        assert extract_description(text) == "Ship the current branch"

    def test_description_first_prose_line(self):
        text = "# Title\n\n| table | row |\nshort\nThis line is long enough to describe the file.\n"
        assert extract_description(text) == "This line is long enough to describe the file."

    def test_description_none(self):
        assert extract_description("# Title\n\nshort\n") is None
