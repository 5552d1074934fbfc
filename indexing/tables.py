"""
indexing/tables.py
------------------
Tolerant markdown table scanning shared by the structured parsers.

A table is a run of consecutive lines starting with "|". The first row is
the header; separator rows ("|---|:--:|") are skipped. Rows may have more
or fewer cells than the header - callers pick the columns they need.
"""

import re
from dataclasses import dataclass, field


SEPARATOR_CELL_REGEX = re.compile(r"^:?-{2,}:?$")

# Pipe not preceded by a backslash
CELL_SPLIT_REGEX = re.compile(r"(?<!\\)\|")

MARKDOWN_LINK_REGEX = re.compile(r"\[([^\]]+)\]\(([^)]*)\)")


@dataclass
class TableRow:
    """A data row with its 1-based line number."""
    cells: list[str]
    line: int


@dataclass
class MarkdownTable:
    """A markdown table found in a document."""
    header: list[str]
    rows: list[TableRow] = field(default_factory=list)
    line_start: int = 0

    def column_index(self, *names: str) -> int | None:
        """
        Index of the first header cell naming any of the names, or None.

        Names are tried in order, case-insensitively. A header matches when
        it equals the name or contains it as whole words, so "cr" finds
        "CR Added" but not "Description".
        """
        lowered = [" ".join(cell.replace("**", "").lower().split()) for cell in self.header]
        for name in names:
            name = name.lower()
            for i, header in enumerate(lowered):
                if header == name:
                    return i
            pattern = re.compile(rf"(?<!\w){re.escape(name)}(?!\w)")
            for i, header in enumerate(lowered):
                if pattern.search(header):
                    return i
        return None


def split_row(line: str) -> list[str]:
    """
    Split a markdown table line into stripped cells.

    "| a | b \\| c |" -> ["a", "b | c"]
    """
    stripped = line.strip()
    if stripped.startswith("|"):
        stripped = stripped[1:]
    if stripped.endswith("|") and not stripped.endswith("\\|"):
        stripped = stripped[:-1]
    return [cell.strip().replace("\\|", "|") for cell in CELL_SPLIT_REGEX.split(stripped)]


def is_separator_row(cells: list[str]) -> bool:
    non_empty = [c for c in cells if c]
    return bool(non_empty) and all(SEPARATOR_CELL_REGEX.match(c) for c in non_empty)


def scan_tables(text: str) -> list[MarkdownTable]:
    """Find every markdown table in text, in document order."""
    if not text:
        return []

    tables = []
    current = None

    for i, line in enumerate(text.splitlines(), start=1):
        if not line.lstrip().startswith("|"):
            current = None
            continue

        cells = split_row(line)
        if current is None:
            current = MarkdownTable(header=cells, line_start=i)
            tables.append(current)
            continue

        if is_separator_row(cells):
            continue

        current.rows.append(TableRow(cells=cells, line=i))

    return tables


def cell(row: TableRow, index: int | None) -> str | None:
    """Cell text at index, or None when the row is too short or empty."""
    if index is None or index >= len(row.cells):
        return None
    value = row.cells[index].strip()
    return value or None


def strip_markup(value: str | None) -> str | None:
    """Remove bold/italic markers and surrounding backticks from a cell."""
    if value is None:
        return None
    value = value.replace("**", "").strip()
    if len(value) >= 2 and value.startswith("`") and value.endswith("`"):
        value = value[1:-1].strip()
    return value or None


def link_text(value: str | None) -> str | None:
    """
    Reduce markdown links to their text.

    "[db-patterns](patterns/db.md)" -> "db-patterns"
    """
    if value is None:
        return None
    value = MARKDOWN_LINK_REGEX.sub(lambda m: m.group(1), value)
    value = re.sub(r"\(.*?\)", "", value).strip()
    return value or None


def link_target(value: str | None) -> str | None:
    """
    Target of the first markdown link, else the cell text.

    "[db-patterns](patterns/db.md)" -> "patterns/db.md"
    """
    if value is None:
        return None
    match = MARKDOWN_LINK_REGEX.search(value)
    if match and match.group(2).strip():
        return match.group(2).strip()
    return link_text(value)
