"""
indexing/chunk.py
-----------------
Turn a parsed knowledge document into search-ready chunks.

Every document yields heading-delimited section chunks. Structured sources
add one chunk per extracted entity so that rules, verification types,
incidents, schema mismatches and corrections are individually searchable
and carry their identifiers in chunk metadata:

    rule          {"cr_id", "vr_type"}
    verification  {"vr_type"}
    incident      {"incident_num"}
    correction    {"is_correction", "date", "cr_rule", "title"}
    plan_item     {"plan_item_id", "title"} / {"is_status"} / {"file_refs"}
    command       {"command_name"}
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import PurePosixPath

from .parsers import (
    CorrectionRecord,
    IncidentRecord,
    RuleRecord,
    SchemaMismatchRecord,
    VerificationRecord,
    extract_file_references,
    extract_implementation_status,
    parse_plan_items,
)
from .section_detect import parse_sections


logger = logging.getLogger(__name__)


# Command files are stored as one chunk of at most this many characters
COMMAND_CHUNK_CHARS = 1000

# Shared include for command files, not a command itself
COMMAND_PREAMBLE_FILE = "_shared-preamble.md"


@dataclass
class ChunkRecord:
    """A chunk ready for insertion into knowledge_chunks."""
    chunk_type: str
    content: str
    heading: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def section_chunks(text: str, min_chars: int = 10) -> list[ChunkRecord]:
    """Section chunks for every heading slice with more than min_chars of content."""
    chunks = []
    for section in parse_sections(text):
        if len(section.content) <= min_chars:
            continue
        chunks.append(ChunkRecord(
            chunk_type="section",
            heading=section.heading,
            content=section.content,
            line_start=section.line_start,
            line_end=section.line_end,
            metadata={"level": section.level},
        ))
    return chunks


def rule_chunks(rules: list[RuleRecord]) -> list[ChunkRecord]:
    chunks = []
    for rule in rules:
        lines = [f"{rule.rule_id}: {rule.rule_text}"]
        if rule.vr_type:
            lines.append(f"Verification: {rule.vr_type}")
        if rule.reference_path:
            lines.append(f"Reference: {rule.reference_path}")
        chunks.append(ChunkRecord(
            chunk_type="rule",
            heading=rule.rule_id,
            content="\n".join(lines),
            metadata={"cr_id": rule.rule_id, "vr_type": rule.vr_type},
        ))
    return chunks


def verification_chunks(verifications: list[VerificationRecord]) -> list[ChunkRecord]:
    chunks = []
    for vr in verifications:
        lines = [f"{vr.vr_type}: {vr.command}"]
        for label, value in (
            ("Description", vr.description),
            ("Expected", vr.expected),
            ("Use when", vr.use_when),
            ("Catches", vr.catches),
        ):
            if value:
                lines.append(f"{label}: {value}")
        chunks.append(ChunkRecord(
            chunk_type="verification",
            heading=vr.vr_type,
            content="\n".join(lines),
            metadata={"vr_type": vr.vr_type},
        ))
    return chunks


def incident_chunks(incidents: list[IncidentRecord]) -> list[ChunkRecord]:
    chunks = []
    for inc in incidents:
        heading = f"Incident #{inc.incident_num}"
        if inc.title:
            heading = f"{heading}: {inc.title}"
        lines = [heading]
        for label, value in (
            ("Date", inc.date),
            ("Type", inc.type),
            ("Description", inc.description),
            ("Root Cause", inc.root_cause),
            ("Prevention", inc.prevention),
            ("CR Added", inc.cr_added),
        ):
            if value:
                lines.append(f"{label}: {value}")
        chunks.append(ChunkRecord(
            chunk_type="incident",
            heading=heading,
            content="\n".join(lines),
            metadata={"incident_num": inc.incident_num},
        ))
    return chunks


def mismatch_chunks(mismatches: list[SchemaMismatchRecord]) -> list[ChunkRecord]:
    chunks = []
    for m in mismatches:
        if m.table_name and m.wrong_column and m.correct_column:
            content = f"{m.table_name}.{m.wrong_column} -> {m.correct_column}"
            if m.note:
                content = f"{content}\n{m.note}"
        else:
            content = m.note or ""
        if not content:
            continue
        chunks.append(ChunkRecord(
            chunk_type="mismatch",
            heading=m.table_name or "Known Schema Mismatches",
            content=content,
            metadata={"table_name": m.table_name},
        ))
    return chunks


def correction_chunks(corrections: list[CorrectionRecord]) -> list[ChunkRecord]:
    chunks = []
    for c in corrections:
        lines = [
            f"Wrong: {c.wrong}",
            f"Correction: {c.correction}",
            f"Rule: {c.rule}",
        ]
        if c.cr_rule:
            lines.append(f"CR: {c.cr_rule}")
        chunks.append(ChunkRecord(
            chunk_type="correction",
            heading=f"{c.date} - {c.title}",
            content="\n".join(lines),
            metadata={
                "is_correction": True,
                "date": c.date,
                "title": c.title,
                "cr_rule": c.cr_rule,
            },
        ))
    return chunks


def command_chunk(text: str, rel_path: str, title: str) -> ChunkRecord | None:
    """One chunk holding the head of a command definition file."""
    name = PurePosixPath(rel_path).name
    if name == COMMAND_PREAMBLE_FILE or not text.strip():
        return None
    return ChunkRecord(
        chunk_type="command",
        heading=title,
        content=text[:COMMAND_CHUNK_CHARS],
        line_start=1,
        metadata={"command_name": PurePosixPath(rel_path).stem},
    )


def plan_chunks(text: str) -> list[ChunkRecord]:
    """
    Plan item chunks ("### P1-001: title" sections), the implementation
    status block and a list of the source files the plan mentions.
    """
    chunks = []

    sections_by_line = {s.line_start: s for s in parse_sections(text)}
    for item in parse_plan_items(text):
        section = sections_by_line.get(item.line)
        content = section.content if section and section.content else item.title
        chunks.append(ChunkRecord(
            chunk_type="plan_item",
            heading=f"{item.item_id}: {item.title}",
            content=content,
            line_start=item.line,
            line_end=section.line_end if section else item.line,
            metadata={"plan_item_id": item.item_id, "title": item.title},
        ))

    status = extract_implementation_status(text)
    if status:
        chunks.append(ChunkRecord(
            chunk_type="plan_item",
            heading="IMPLEMENTATION STATUS",
            content=status,
            metadata={"is_status": True},
        ))

    refs = extract_file_references(text)
    if refs:
        chunks.append(ChunkRecord(
            chunk_type="plan_item",
            heading="Referenced Files",
            content="\n".join(refs),
            metadata={"file_refs": refs},
        ))

    return chunks


def build_chunks(
    text: str,
    rel_path: str,
    category: str,
    title: str,
    min_section_chars: int = 10,
    rules: list[RuleRecord] | None = None,
    verifications: list[VerificationRecord] | None = None,
    incidents: list[IncidentRecord] | None = None,
    mismatches: list[SchemaMismatchRecord] | None = None,
    corrections: list[CorrectionRecord] | None = None,
) -> list[ChunkRecord]:
    """
    All chunks for one document, sections first.

    Args:
        text: Document text
        rel_path: Relative document id ("commands/ship.md", "plans/x.md")
        category: Document category from categorize_file
        title: Document title
        rules..corrections: Entities already parsed from the document

    Returns:
        ChunkRecords in insertion order
    """
    chunks = section_chunks(text, min_section_chars)

    chunks.extend(rule_chunks(rules or []))
    chunks.extend(verification_chunks(verifications or []))
    chunks.extend(incident_chunks(incidents or []))
    chunks.extend(mismatch_chunks(mismatches or []))
    chunks.extend(correction_chunks(corrections or []))

    if category == "commands":
        command = command_chunk(text, rel_path, title)
        if command:
            chunks.append(command)

    if category == "plan":
        chunks.extend(plan_chunks(text))

    logger.debug(f"{rel_path}: {len(chunks)} chunks")
    return chunks
