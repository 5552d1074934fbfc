"""
tests/test_section_detect.py
----------------------------
Unit tests for heading-based section splitting.

Run with: python -m pytest tests/test_section_detect.py -v
"""

from indexing.section_detect import find_heading, heading_level, parse_sections


DOC = (
    "# Title\n"             # 1
    "intro text here\n"     # 2
    "\n"                    # 3
    "## First\n"            # 4
    "alpha\n"               # 5
    "\n"                    # 6
    "### Sub\n"             # 7
    "beta\n"                # 8
    "## Second\n"           # 9
    "gamma\n"               # 10
)


class TestParseSections:
    """Tests for parse_sections."""

    def test_empty_input(self):
        assert parse_sections("") == []
        assert parse_sections("   \n\n") == []

    def test_headings_and_preamble(self):
        sections = parse_sections(DOC)
        assert [s.heading for s in sections] == ["", "First", "Sub", "Second"]
        assert [s.level for s in sections] == [0, 2, 3, 2]

    def test_line_ranges(self):
        """Heading line to the line before the next heading, 1-based"""
        ranges = [(s.line_start, s.line_end) for s in parse_sections(DOC)]
        assert ranges == [(1, 3), (4, 6), (7, 8), (9, 10)]

    def test_ranges_increasing_and_disjoint(self):
        sections = parse_sections(DOC)
        for prev, nxt in zip(sections, sections[1:]):
            assert prev.line_end < nxt.line_start

    def test_content_excludes_heading(self):
        sections = parse_sections(DOC)
        assert sections[1].content == "alpha"
        assert sections[0].content == "# Title\nintro text here"

    def test_no_preamble_when_blank(self):
        sections = parse_sections("\n\n## Only\nbody\n")
        assert [s.heading for s in sections] == ["Only"]
        assert sections[0].line_start == 3

    def test_h4_does_not_split(self):
        sections = parse_sections("## Top\n#### Deep\ntext\n")
        assert len(sections) == 1
        assert "#### Deep" in sections[0].content

    def test_headings_in_code_fence_ignored(self):
        text = "## Real\n```\n## not a heading\n```\nafter\n"
        sections = parse_sections(text)
        assert [s.heading for s in sections] == ["Real"]

    def test_closing_hashes_stripped(self):
        assert parse_sections("## Closed ##\ntext\n")[0].heading == "Closed"

    def test_headed_empty_section_kept(self):
        sections = parse_sections("## Empty\n## Full\ntext\n")
        assert [s.heading for s in sections] == ["Empty", "Full"]
        assert sections[0].content == ""
        assert (sections[0].line_start, sections[0].line_end) == (1, 1)


class TestHeadingHelpers:
    """Tests for heading_level and find_heading."""

    def test_heading_level(self):
        assert heading_level("### Three") == 3
        assert heading_level("#NoSpace") == 0
        assert heading_level("plain") == 0

    def test_find_heading_case_insensitive(self):
        text = "# Doc\n\n## active prevention rules\n"
        assert find_heading(text, "Active Prevention Rules") == (2, 2)

    def test_find_heading_missing(self):
        assert find_heading("# Doc\n", "Archived") is None
