"""
indexing/section_detect.py
--------------------------
Heading-based section detection for markdown knowledge files.

Documents are split at level-2 and level-3 headings. Text before the first
such heading (usually the H1 title and an intro) becomes a section with an
empty heading. Line numbers are 1-based: a section spans from its heading
line to the line before the next heading.
"""

import re
from dataclasses import dataclass


SECTION_HEADER_REGEX = re.compile(r"^(#{2,3})\s+(.+?)(?:\s+#+)?\s*$")

# Any markdown heading, used for span boundaries
ANY_HEADER_REGEX = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")

# Fenced code blocks - headings inside them are not section breaks
FENCE_REGEX = re.compile(r"^\s*(```|~~~)")


@dataclass
class Section:
    """A heading-delimited slice of a document."""
    heading: str
    content: str
    line_start: int
    line_end: int
    level: int  # 2 or 3, 0 for the preamble


def parse_sections(text: str) -> list[Section]:
    """
    Split markdown into sections at ## and ### headings.

    Returns:
        Sections in document order with strictly increasing,
        non-overlapping line ranges. Empty input yields [].
    """
    if not text or not text.strip():
        return []

    lines = text.splitlines()
    sections = []

    heading = ""
    level = 0
    start = 1
    body: list[str] = []
    in_fence = False

    def _flush(end: int) -> None:
        content = "\n".join(body).strip()
        # Preamble only kept when it has text; headed sections always kept
        if heading or content:
            sections.append(Section(
                heading=heading,
                content=content,
                line_start=start,
                line_end=max(end, start),
                level=level,
            ))

    for i, line in enumerate(lines, start=1):
        if FENCE_REGEX.match(line):
            in_fence = not in_fence
            body.append(line)
            continue

        match = None if in_fence else SECTION_HEADER_REGEX.match(line)
        if match is None:
            body.append(line)
            continue

        _flush(i - 1)
        heading = match.group(2).strip()
        level = len(match.group(1))
        start = i
        body = []

    _flush(len(lines))
    return sections


def heading_level(line: str) -> int:
    """Markdown heading level of a line, 0 if it is not a heading."""
    match = ANY_HEADER_REGEX.match(line)
    return len(match.group(1)) if match else 0


def find_heading(text: str, heading_text: str, max_level: int = 6) -> tuple[int, int] | None:
    """
    Locate a heading by its text (case-insensitive).

    Returns:
        (0-based line index, level) of the first match, or None
    """
    wanted = heading_text.strip().lower()
    for i, line in enumerate(text.splitlines()):
        match = ANY_HEADER_REGEX.match(line)
        if not match:
            continue
        level = len(match.group(1))
        if level <= max_level and match.group(2).strip().lower() == wanted:
            return i, level
    return None
