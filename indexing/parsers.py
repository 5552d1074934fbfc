"""
indexing/parsers.py
-------------------
Structured-format parsers for knowledge markdown.

Each parser takes raw document text and returns a list of records. Input
that doesn't match the expected shape yields an empty list, never an
exception: a missing or malformed table is just "no entries".

Parsers:
- parse_rule_table: canonical rule (CR-N) tables
- parse_verification_table: verification type (VR-*) tables
- parse_incidents: incident logs ("## Incident #N" blocks, summary tables)
- parse_schema_mismatches: "Known Schema Mismatches" section
- parse_corrections: dated entries in the active section of a corrections log
- parse_plan_items, extract_implementation_status, extract_file_references:
  plan documents
- extract_title, extract_description: document metadata
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .section_detect import ANY_HEADER_REGEX, find_heading, heading_level
from .tables import (
    MarkdownTable,
    TableRow,
    cell,
    link_target,
    scan_tables,
    strip_markup,
)


logger = logging.getLogger(__name__)


CR_ID_REGEX = re.compile(r"^(CR-\d+)$")
VR_ID_REGEX = re.compile(r"^(VR-[A-Za-z0-9]+(?:-[A-Za-z0-9]+)*)$")
CR_REF_REGEX = re.compile(r"\bCR-\d+\b")
DATE_REGEX = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")


# ============================================================================
# Records
# ============================================================================

@dataclass
class RuleRecord:
    rule_id: str
    rule_text: str
    vr_type: str | None = None
    reference_path: str | None = None
    severity: str | None = None


@dataclass
class VerificationRecord:
    vr_type: str
    command: str
    description: str | None = None
    expected: str | None = None
    use_when: str | None = None
    catches: str | None = None
    category: str | None = None


@dataclass
class IncidentRecord:
    incident_num: int
    date: str | None = None
    type: str | None = None
    title: str | None = None
    description: str | None = None
    prevention: str | None = None
    cr_added: str | None = None
    root_cause: str | None = None
    user_quote: str | None = None


@dataclass
class SchemaMismatchRecord:
    table_name: str | None = None
    wrong_column: str | None = None
    correct_column: str | None = None
    note: str | None = None


@dataclass
class CorrectionRecord:
    date: str
    title: str
    wrong: str = ""
    correction: str = ""
    rule: str = ""
    cr_rule: str | None = None


@dataclass
class PlanItem:
    item_id: str
    title: str
    line: int


# ============================================================================
# Table helpers
# ============================================================================

def _id_rows(table: MarkdownTable, id_regex: re.Pattern) -> tuple[list[TableRow], bool]:
    """
    Data rows whose first cell is an identifier.

    Tables without a header row have their first line parsed as the header;
    that line is included when it is itself an identifier row.

    Returns:
        (rows, headerless)
    """
    header_id = strip_markup(table.header[0]) if table.header else None
    headerless = bool(header_id and id_regex.match(header_id))

    rows = []
    if headerless:
        rows.append(TableRow(cells=table.header, line=table.line_start))
    for row in table.rows:
        first = strip_markup(cell(row, 0))
        if first and id_regex.match(first):
            rows.append(row)
    return rows, headerless


def _column(
    table: MarkdownTable,
    headerless: bool,
    names: tuple[str, ...],
    default: int | None,
    claimed: set[int],
    required: bool = False,
) -> int | None:
    """
    Pick a column by header name, falling back to a positional default.

    Column 0 (the identifier) and already claimed columns are never returned
    by name lookup. With a named header, optional columns only come from
    name matches; headerless tables use positions throughout.
    """
    if not headerless:
        lowered = [c.lower() for c in table.header]
        for name in names:
            for i, header_cell in enumerate(lowered):
                if i == 0 or i in claimed:
                    continue
                if name in header_cell:
                    claimed.add(i)
                    return i
        if not required:
            return None
    if default is not None and default not in claimed:
        claimed.add(default)
        return default
    return None


def _command_text(value: str | None) -> str | None:
    """Command cell contents, preferring the back-ticked part."""
    if value is None:
        return None
    ticked = re.findall(r"`([^`]+)`", value)
    if ticked:
        return " && ".join(t.strip() for t in ticked if t.strip()) or None
    return strip_markup(value)


# ============================================================================
# Rule (CR) tables
# ============================================================================

def parse_rule_table(text: str) -> list[RuleRecord]:
    """
    Extract canonical rules from markdown tables.

    Recognized rows start with a CR-N identifier:
        | CR-1 | Never claim state without proof | VR-FILE | [ref](patterns/x.md) |

    Columns are mapped by header name (rule/text, vr/verification,
    reference/pattern, severity) with positional fallback, so tables with
    extra or missing optional columns still yield rule_id and rule_text.
    Rows keep table order; a repeated rule_id keeps its first occurrence.
    """
    if not text:
        return []

    rules = []
    seen = set()

    for table in scan_tables(text):
        rows, headerless = _id_rows(table, CR_ID_REGEX)
        if not rows:
            continue

        claimed: set[int] = set()
        text_col = _column(table, headerless, ("rule", "text", "description", "statement"), 1, claimed, required=True)
        vr_col = _column(table, headerless, ("vr", "verif"), 2, claimed)
        ref_col = _column(table, headerless, ("ref", "pattern", "source", "see"), 3, claimed)
        sev_col = _column(table, headerless, ("severity", "priority"), None, claimed)

        for row in rows:
            rule_id = strip_markup(cell(row, 0))
            rule_text = strip_markup(cell(row, text_col))
            if not rule_id or not rule_text or rule_id in seen:
                continue

            vr_type = strip_markup(cell(row, vr_col))
            if vr_type and "VR-" not in vr_type:
                # Positional fallback landed on a non-verification column
                vr_type = None

            seen.add(rule_id)
            rules.append(RuleRecord(
                rule_id=rule_id,
                rule_text=rule_text,
                vr_type=vr_type,
                reference_path=link_target(strip_markup(cell(row, ref_col))),
                severity=strip_markup(cell(row, sev_col)),
            ))

    return rules


# ============================================================================
# Verification (VR) tables
# ============================================================================

def parse_verification_table(text: str) -> list[VerificationRecord]:
    """
    Extract verification types from markdown tables.

    Recognized rows start with a VR-* identifier and carry a command:
        | VR-BUILD | `npm run build` | Exit 0 | Before claiming done |
    """
    if not text:
        return []

    types = []
    seen = set()

    for table in scan_tables(text):
        rows, headerless = _id_rows(table, VR_ID_REGEX)
        if not rows:
            continue

        claimed: set[int] = set()
        cmd_col = _column(table, headerless, ("command", "cmd", "check"), 1, claimed, required=True)
        expected_col = _column(table, headerless, ("expected", "result", "pass"), 2, claimed)
        when_col = _column(table, headerless, ("use when", "when"), 3, claimed)
        desc_col = _column(table, headerless, ("description", "purpose"), None, claimed)
        catches_col = _column(table, headerless, ("catches",), None, claimed)
        category_col = _column(table, headerless, ("category",), None, claimed)

        for row in rows:
            vr_type = strip_markup(cell(row, 0))
            command = _command_text(cell(row, cmd_col))
            if not vr_type or not command or vr_type in seen:
                continue

            expected = strip_markup(cell(row, expected_col))
            use_when = strip_markup(cell(row, when_col))
            description = strip_markup(cell(row, desc_col)) or use_when or expected

            seen.add(vr_type)
            types.append(VerificationRecord(
                vr_type=vr_type,
                command=command,
                description=description,
                expected=expected,
                use_when=use_when,
                catches=strip_markup(cell(row, catches_col)),
                category=strip_markup(cell(row, category_col)),
            ))

    return types


# ============================================================================
# Incident logs
# ============================================================================

# "## Incident #3: Title", "### Incident 3 - Title", "**Incident #3** - Title"
INCIDENT_HEADING_REGEX = re.compile(
    r"^(?:(#{2,4})\s+|\*\*)\s*Incident\s+#?(\d+)\b(?:\*\*)?\s*[:\-–—]?\s*(.*?)\s*(?:\*\*)?\s*$",
    re.IGNORECASE
)

INCIDENT_FIELDS = {
    "date": ("Date",),
    "type": ("Type", "Category"),
    "description": ("Gap Found", "Description", "What Happened", "Summary", "Gap"),
    "prevention": ("Prevention", "Fix"),
    "cr_added": ("CR Added", "Rule Added", "CR"),
    "root_cause": ("Root Cause",),
    "user_quote": ("User Quote", "Quote"),
}


def _field_regex(labels: tuple[str, ...]) -> re.Pattern:
    alternation = "|".join(re.escape(label) for label in labels)
    return re.compile(
        rf"^\s*(?:[-*]\s+)?\*{{0,2}}(?:{alternation})\*{{0,2}}\s*:\s*\*{{0,2}}\s*(.+?)\s*$",
        re.IGNORECASE
    )


INCIDENT_FIELD_REGEXES = {name: _field_regex(labels) for name, labels in INCIDENT_FIELDS.items()}
ANY_FIELD_REGEX = re.compile(r"^\s*(?:[-*]\s+)?\*{0,2}[A-Za-z][\w ]{0,30}\*{0,2}\s*:")


def _extract_fields(lines: list[str], regexes: dict[str, re.Pattern]) -> dict[str, str]:
    fields = {}
    for line in lines:
        for name, regex in regexes.items():
            if name in fields:
                continue
            match = regex.match(line)
            if match:
                fields[name] = match.group(1).strip()
                break
    return fields


def _normalize_cr_list(value: str | None) -> str | None:
    if not value:
        return None
    ids = list(dict.fromkeys(CR_REF_REGEX.findall(value)))
    return ", ".join(ids) if ids else value.strip() or None


def _incident_blocks(lines: list[str]) -> list[IncidentRecord]:
    markers = []
    for i, line in enumerate(lines):
        match = INCIDENT_HEADING_REGEX.match(line)
        if match:
            level = len(match.group(1)) if match.group(1) else 7
            markers.append((i, level, int(match.group(2)), match.group(3)))

    incidents = []
    for n, (start, level, num, title) in enumerate(markers):
        end = markers[n + 1][0] if n + 1 < len(markers) else len(lines)
        for j in range(start + 1, end):
            line_level = heading_level(lines[j])
            if line_level and line_level <= min(level, 6):
                end = j
                break

        body = lines[start + 1:end]
        fields = _extract_fields(body, INCIDENT_FIELD_REGEXES)

        title = strip_markup(title) if title else None
        description = fields.get("description")
        if not description:
            prose = [
                ln.strip() for ln in body
                if ln.strip() and not ANY_FIELD_REGEX.match(ln) and not heading_level(ln)
            ]
            description = prose[0] if prose else title

        date = fields.get("date")
        if not date and title:
            date_match = DATE_REGEX.search(title)
            date = date_match.group(1) if date_match else None

        incidents.append(IncidentRecord(
            incident_num=num,
            date=date,
            type=fields.get("type"),
            title=title,
            description=description,
            prevention=fields.get("prevention"),
            cr_added=_normalize_cr_list(fields.get("cr_added")),
            root_cause=fields.get("root_cause"),
            user_quote=fields.get("user_quote"),
        ))
    return incidents


def _incident_table_rows(text: str) -> list[IncidentRecord]:
    """Summary table rows: | N | date | type | gap | prevention | [CR] |"""
    incidents = []
    for table in scan_tables(text):
        cr_col = table.column_index("cr added", "cr")
        candidates = list(table.rows)
        for row in candidates:
            first = strip_markup(cell(row, 0)) or ""
            first = first.lstrip("#")
            if not first.isdigit() or int(first) == 0 or len(row.cells) < 5:
                continue
            incidents.append(IncidentRecord(
                incident_num=int(first),
                date=strip_markup(cell(row, 1)),
                type=strip_markup(cell(row, 2)),
                description=strip_markup(cell(row, 3)),
                prevention=strip_markup(cell(row, 4)),
                cr_added=_normalize_cr_list(cell(row, cr_col)) if cr_col not in (None, 0) else None,
            ))
    return incidents


def parse_incidents(text: str) -> list[IncidentRecord]:
    """
    Extract incidents from an incident log.

    Incident blocks ("## Incident #N: title" or "**Incident #N**") carry
    labelled fields (Date, Type, Gap Found, Prevention, CR Added, ...).
    Summary table rows add incidents not already seen as blocks. Template
    logs with placeholder numbers ("Incident #N") yield [].
    """
    if not text:
        return []

    incidents = _incident_blocks(text.splitlines())
    seen = {inc.incident_num for inc in incidents}

    for inc in _incident_table_rows(text):
        if inc.incident_num not in seen:
            seen.add(inc.incident_num)
            incidents.append(inc)

    return incidents


# ============================================================================
# Schema mismatches
# ============================================================================

SCHEMA_MISMATCH_HEADING_REGEX = re.compile(r"^#{2,3}\s+Known Schema Mismatches\b", re.IGNORECASE)

# "users.name -> full_name", "`users.name` → `users.full_name`"
MISMATCH_NOTE_REGEX = re.compile(
    r"`?(\w+)\.(\w+)`?\s*(?:->|→|=>)\s*`?(?:\w+\.)?(\w+)`?"
)

BULLET_REGEX = re.compile(r"^\s*[-*]\s+(.+?)\s*$")


def _schema_mismatch_span(lines: list[str]) -> list[str] | None:
    for i, line in enumerate(lines):
        if SCHEMA_MISMATCH_HEADING_REGEX.match(line):
            span = []
            for following in lines[i + 1:]:
                level = heading_level(following)
                if (level and level <= 3) or following.strip() == "---":
                    break
                span.append(following)
            return span
    return None


def parse_schema_mismatches(text: str) -> list[SchemaMismatchRecord]:
    """
    Extract schema mismatch notes from the "Known Schema Mismatches" section.

    Table rows give table / wrong column / correct column; bullet lines give
    free-text notes (with columns filled in when written as table.col -> col).
    No section yields [].
    """
    if not text:
        return []

    span = _schema_mismatch_span(text.splitlines())
    if span is None:
        return []

    mismatches = []
    span_text = "\n".join(span)

    for table in scan_tables(span_text):
        for row in table.rows:
            values = [strip_markup(c) for c in row.cells[:3]]
            if len(values) < 3 or not all(values):
                continue
            mismatches.append(SchemaMismatchRecord(
                table_name=values[0],
                wrong_column=values[1],
                correct_column=values[2],
            ))

    for line in span:
        bullet = BULLET_REGEX.match(line)
        if not bullet:
            continue
        note = bullet.group(1)
        match = MISMATCH_NOTE_REGEX.search(note)
        mismatches.append(SchemaMismatchRecord(
            table_name=match.group(1) if match else None,
            wrong_column=match.group(2) if match else None,
            correct_column=match.group(3) if match else None,
            note=note,
        ))

    return mismatches


# ============================================================================
# Corrections log
# ============================================================================

CORRECTION_ENTRY_REGEX = re.compile(r"^###\s+(\d{4}-\d{2}-\d{2})\s+[-–—]\s+(.+?)\s*$")

CORRECTION_FIELD_REGEXES = {
    "wrong": _field_regex(("Wrong",)),
    "correction": _field_regex(("Correction",)),
    "rule": _field_regex(("Rule",)),
    "cr": _field_regex(("CR",)),
}


def _active_span(lines: list[str], active_heading: str, archive_heading: str) -> list[str] | None:
    """Lines after the active heading up to the next same-or-higher heading or the archive heading."""
    found = find_heading("\n".join(lines), active_heading)
    if found is None:
        return None

    start, level = found
    archive = archive_heading.strip().lower() if archive_heading else None
    span = []
    for line in lines[start + 1:]:
        match = ANY_HEADER_REGEX.match(line)
        if match:
            line_level = len(match.group(1))
            if line_level <= level:
                break
            if archive and match.group(2).strip().lower() == archive:
                break
        span.append(line)
    return span


def parse_corrections(
    text: str,
    active_heading: str = "Active Prevention Rules",
    archive_heading: str = "Archived",
) -> list[CorrectionRecord]:
    """
    Extract dated correction entries from the active section of a corrections log.

    Layout:
        ## Active Prevention Rules
        ### 2026-01-15 - Title
        - **Wrong**: ...
        - **Correction**: ...
        - **Rule**: ...
        - **CR**: CR-1          (optional)
        ## Archived
        ...

    Entries outside the active span are excluded. A missing active heading
    yields []. cr_rule is None when the entry has no CR field.
    """
    if not text:
        return []

    lines = text.splitlines()
    span = _active_span(lines, active_heading, archive_heading)
    if span is None:
        logger.debug(f"No '{active_heading}' heading found in corrections log")
        return []

    entries = []
    current = None
    body: list[str] = []

    def _flush() -> None:
        if current is None:
            return
        date, title = current
        fields = _extract_fields(body, CORRECTION_FIELD_REGEXES)
        cr_match = CR_REF_REGEX.search(fields.get("cr", ""))
        entries.append(CorrectionRecord(
            date=date,
            title=title,
            wrong=fields.get("wrong", ""),
            correction=fields.get("correction", ""),
            rule=fields.get("rule", ""),
            cr_rule=cr_match.group(0) if cr_match else None,
        ))

    for line in span:
        match = CORRECTION_ENTRY_REGEX.match(line)
        if match:
            _flush()
            current = (match.group(1), match.group(2))
            body = []
        elif heading_level(line):
            # Any other heading ends the current entry
            _flush()
            current = None
            body = []
        else:
            body.append(line)
    _flush()

    return entries


# ============================================================================
# Plans
# ============================================================================

PLAN_ITEM_REGEX = re.compile(r"^###\s+(P\d+-\d+):\s+(.+?)\s*$", re.MULTILINE)

IMPLEMENTATION_STATUS_REGEX = re.compile(r"^#\s+IMPLEMENTATION STATUS\b", re.IGNORECASE)

FILE_REFERENCE_REGEX = re.compile(r"(?:src|scripts)/[\w\-/]+\.(?:ts|tsx|js|py|sql|md)")


def parse_plan_items(text: str) -> list[PlanItem]:
    """Plan items headed "### P1-001: Title"."""
    if not text:
        return []
    items = []
    for match in PLAN_ITEM_REGEX.finditer(text):
        line = text.count("\n", 0, match.start()) + 1
        items.append(PlanItem(item_id=match.group(1), title=match.group(2), line=line))
    return items


def extract_implementation_status(text: str) -> str | None:
    """The "# IMPLEMENTATION STATUS" block, up to the next H1 or "---"."""
    if not text:
        return None
    lines = text.splitlines()
    for i, line in enumerate(lines):
        if IMPLEMENTATION_STATUS_REGEX.match(line):
            block = [line]
            for following in lines[i + 1:]:
                if heading_level(following) == 1 or following.strip() == "---":
                    break
                block.append(following)
            return "\n".join(block).strip()
    return None


def extract_file_references(text: str) -> list[str]:
    """Unique src/ and scripts/ file paths mentioned in text, in order."""
    if not text:
        return []
    return list(dict.fromkeys(FILE_REFERENCE_REGEX.findall(text)))


# ============================================================================
# Document metadata
# ============================================================================

H1_REGEX = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)
FRONTMATTER_DESCRIPTION_REGEX = re.compile(
    r"\A---\s*\n(?:.*\n)*?description:\s*\"?([^\"\n]+)\"?\s*\n(?:.*\n)*?---",
)


def extract_title(text: str, file_path: Path | str) -> str:
    """First H1 heading, or the file name without extension."""
    match = H1_REGEX.search(text or "")
    if match:
        return match.group(1).strip()
    return Path(file_path).stem


def extract_description(text: str) -> str | None:
    """Front-matter description, else the first prose line over 20 characters."""
    if not text:
        return None
    match = FRONTMATTER_DESCRIPTION_REGEX.search(text)
    if match:
        return match.group(1).strip()
    for line in text.splitlines():
        stripped = line.strip()
        if (
            stripped
            and not stripped.startswith(("#", "---", "|"))
            and len(stripped) > 20
        ):
            return stripped[:200]
    return None
