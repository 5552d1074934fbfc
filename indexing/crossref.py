"""
indexing/crossref.py
--------------------
Build cross-reference graph edges for one indexed document.

Entity kinds are a fixed enumeration, each with its own identifier pattern.
Edges come from two sources:

Structured fields (from the entity tables the document owns):
    cr -> vr          enforced_by   (rule's verification column)
    cr -> pattern     references    (rule's reference column)
    incident -> cr    caused        (incident's "CR Added" field)
    correction -> cr  enforces      (correction's CR field)

Chunk text (heading + content):
    owner -> mention  references    owner is the chunk's entity or chunk/<id>
    mention -> mention co_occurs    ordered pairs in first-mention order

Edges are written with INSERT OR IGNORE against the edge uniqueness
constraint, so rebuilding the same document never duplicates edges.
"""

import logging
import re
import sqlite3
from enum import Enum
from pathlib import PurePosixPath

from sqlite import queries


logger = logging.getLogger(__name__)


class EntityKind(Enum):
    """Entity kinds recognized in chunk text, with their identifier patterns."""
    CR = ("cr", r"\bCR-\d+\b")
    VR = ("vr", r"\bVR-[A-Z0-9]+(?:-[A-Z0-9]+)*")
    INCIDENT = ("incident", r"\bIncident\s+#?(\d+)\b")
    PLAN_ITEM = ("plan_item", r"\bP\d+-\d+\b")

    def __init__(self, type_name: str, pattern: str):
        self.type_name = type_name
        flags = re.IGNORECASE if type_name == "incident" else 0
        self.regex = re.compile(pattern, flags)

    def find(self, text: str) -> list[tuple[int, str]]:
        """(position, identifier) for every match in text."""
        found = []
        for match in self.regex.finditer(text):
            entity_id = match.group(1) if self.regex.groups else match.group(0)
            found.append((match.start(), entity_id))
        return found


def find_mentions(text: str) -> list[tuple[str, str]]:
    """
    Distinct (entity_type, entity_id) mentions in order of first appearance.

    "See CR-3 and VR-BUILD; CR-3 again" -> [("cr", "CR-3"), ("vr", "VR-BUILD")]
    """
    if not text:
        return []

    positioned = []
    for kind in EntityKind:
        for pos, entity_id in kind.find(text):
            positioned.append((pos, kind.type_name, entity_id))
    positioned.sort(key=lambda item: item[0])

    return list(dict.fromkeys((etype, eid) for _, etype, eid in positioned))


def chunk_owner(chunk: dict) -> tuple[str, str]:
    """The entity a chunk belongs to, from its metadata, else the chunk itself."""
    meta = chunk.get("metadata") or {}
    if meta.get("cr_id"):
        return "cr", meta["cr_id"]
    if meta.get("incident_num") is not None:
        return "incident", str(meta["incident_num"])
    if meta.get("is_correction") and meta.get("title"):
        return "correction", meta["title"]
    if meta.get("plan_item_id"):
        return "plan_item", meta["plan_item_id"]
    return "chunk", str(chunk["id"])


def _split_vr_types(value: str | None) -> list[str]:
    """Verification ids in a rule's vr column; wildcards like VR-* are skipped."""
    if not value:
        return []
    return [
        part for part in re.split(r"[,\s]+", value)
        if part.startswith("VR-") and part != "VR-*"
    ]


def _pattern_name(reference_path: str | None) -> str | None:
    if not reference_path:
        return None
    name = PurePosixPath(reference_path.strip()).name
    if name.endswith(".md"):
        name = name[:-3]
    return name or None


class _EdgeWriter:
    """Writes edges for one document, skipping self-loops and counting inserts."""

    def __init__(self, conn: sqlite3.Connection, document_id: int):
        self.conn = conn
        self.document_id = document_id
        self.created = 0

    def add(self, source: tuple[str, str], target: tuple[str, str], edge_type: str) -> None:
        if source == target:
            return
        if queries.insert_edge(
            self.conn, source[0], source[1], target[0], target[1], edge_type, self.document_id
        ):
            self.created += 1


def build_cross_references(conn: sqlite3.Connection, document_id: int) -> int:
    """
    Build graph edges for a document's entities and chunks.

    Does not commit; runs inside the caller's per-file transaction.

    Returns:
        Number of edge rows actually inserted
    """
    writer = _EdgeWriter(conn, document_id)

    for rule in queries.get_entity_sources_for_document(conn, document_id, "cr"):
        cr = ("cr", rule["rule_id"])
        for vr_type in _split_vr_types(rule.get("vr_type")):
            writer.add(cr, ("vr", vr_type), "enforced_by")
        pattern = _pattern_name(rule.get("reference_path"))
        if pattern:
            writer.add(cr, ("pattern", pattern), "references")

    cr_regex = EntityKind.CR.regex
    for incident in queries.get_entity_sources_for_document(conn, document_id, "incident"):
        source = ("incident", str(incident["incident_num"]))
        for cr_id in cr_regex.findall(incident.get("cr_added") or ""):
            writer.add(source, ("cr", cr_id), "caused")

    for correction in queries.get_corrections_for_document(conn, document_id):
        if correction.get("cr_rule"):
            writer.add(("correction", correction["title"]), ("cr", correction["cr_rule"]), "enforces")

    for chunk in queries.get_chunks_for_document(conn, document_id):
        text = f"{chunk.get('heading') or ''}\n{chunk['content']}"
        mentions = find_mentions(text)
        if not mentions:
            continue

        owner = chunk_owner(chunk)
        for mention in mentions:
            writer.add(owner, mention, "references")

        for i, first in enumerate(mentions):
            for second in mentions[i + 1:]:
                writer.add(first, second, "co_occurs")

    logger.debug(f"Document {document_id}: {writer.created} edges created")
    return writer.created
