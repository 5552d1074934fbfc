"""
retrieval/lookup.py
-------------------
Identifier and keyword lookups for extracted knowledge entities.

Exact lookups return a dict or None; keyword lookups return lists
(possibly empty). Nothing here writes to the database.
"""

import logging
import re
import sqlite3
from pathlib import PurePosixPath

from sqlite.queries import decode_metadata

from .search import search_knowledge


logger = logging.getLogger(__name__)


def _like(value: str) -> str:
    return f"%{value}%"


def _vr_types(value: str | None) -> list[str]:
    if not value:
        return []
    return [v for v in re.split(r"[,\s]+", value) if v.startswith("VR-") and v != "VR-*"]


# --- Rules ---

def get_rule(conn: sqlite3.Connection, rule_id: str) -> dict | None:
    """
    A rule with its linked verification types, incidents and corrections.

    Incidents are those with a graph edge to the rule or whose "CR Added"
    field names it.
    """
    row = conn.execute("SELECT * FROM knowledge_rules WHERE rule_id = ?", (rule_id,)).fetchone()
    if row is None:
        return None
    rule = dict(row)

    rule["verifications"] = []
    for vr_type in _vr_types(rule.get("vr_type")):
        vr = conn.execute(
            "SELECT * FROM knowledge_verifications WHERE vr_type = ?", (vr_type,)
        ).fetchone()
        if vr:
            rule["verifications"].append(dict(vr))

    linked = conn.execute(
        """
        SELECT DISTINCT source_id FROM knowledge_edges
        WHERE target_type = 'cr' AND target_id = ? AND source_type = 'incident'
        """,
        (rule_id,)
    ).fetchall()
    nums = {int(r["source_id"]) for r in linked if r["source_id"].isdigit()}
    for r in conn.execute(
        "SELECT incident_num, cr_added FROM knowledge_incidents WHERE cr_added LIKE ?",
        (_like(rule_id),)
    ).fetchall():
        if rule_id in re.findall(r"\bCR-\d+\b", r["cr_added"] or ""):
            nums.add(r["incident_num"])

    rule["incidents"] = [
        dict(r) for r in conn.execute(
            f"SELECT * FROM knowledge_incidents WHERE incident_num IN ({','.join('?' for _ in nums)}) "
            "ORDER BY incident_num",
            tuple(nums)
        ).fetchall()
    ] if nums else []

    rule["corrections"] = list_corrections(conn, cr_rule=rule_id)
    return rule


def find_rules(conn: sqlite3.Connection, keyword: str | None = None) -> list[dict]:
    """Rules whose id or text contains keyword; all rules when keyword is empty."""
    if keyword:
        cursor = conn.execute(
            "SELECT * FROM knowledge_rules WHERE rule_text LIKE ? OR rule_id LIKE ? ORDER BY id",
            (_like(keyword), _like(keyword))
        )
    else:
        cursor = conn.execute("SELECT * FROM knowledge_rules ORDER BY id")
    return [dict(row) for row in cursor.fetchall()]


# --- Verification types ---

def get_verification(conn: sqlite3.Connection, vr_type: str) -> dict | None:
    """A verification type with the rules that require it."""
    row = conn.execute(
        "SELECT * FROM knowledge_verifications WHERE vr_type = ?", (vr_type,)
    ).fetchone()
    if row is None:
        return None
    vr = dict(row)
    vr["rules"] = [
        dict(r) for r in conn.execute(
            "SELECT rule_id, rule_text, vr_type FROM knowledge_rules WHERE vr_type LIKE ? ORDER BY id",
            (_like(vr_type),)
        ).fetchall()
        if vr_type in _vr_types(r["vr_type"])
    ]
    return vr


def find_verifications(conn: sqlite3.Connection, situation: str | None = None) -> list[dict]:
    """Verification types whose id, use-when or catches text mentions situation."""
    if situation:
        pattern = _like(situation)
        cursor = conn.execute(
            """
            SELECT * FROM knowledge_verifications
            WHERE use_when LIKE ? OR vr_type LIKE ? OR catches LIKE ? OR description LIKE ?
            ORDER BY vr_type
            """,
            (pattern, pattern, pattern, pattern)
        )
    else:
        cursor = conn.execute("SELECT * FROM knowledge_verifications ORDER BY vr_type")
    return [dict(row) for row in cursor.fetchall()]


# --- Incidents ---

def get_incident(conn: sqlite3.Connection, incident_num: int) -> dict | None:
    """An incident with the rules it links to."""
    row = conn.execute(
        "SELECT * FROM knowledge_incidents WHERE incident_num = ?", (int(incident_num),)
    ).fetchone()
    if row is None:
        return None
    incident = dict(row)
    incident["rules"] = [
        dict(r) for r in conn.execute(
            """
            SELECT DISTINCT kr.rule_id, kr.rule_text
            FROM knowledge_edges ke
            JOIN knowledge_rules kr ON kr.rule_id = ke.target_id
            WHERE ke.source_type = 'incident' AND ke.source_id = ? AND ke.target_type = 'cr'
            ORDER BY kr.id
            """,
            (str(incident["incident_num"]),)
        ).fetchall()
    ]
    return incident


def find_incidents(
    conn: sqlite3.Connection,
    keyword: str | None = None,
    incident_type: str | None = None,
) -> list[dict]:
    """Incidents matching a keyword and/or type, ordered by number."""
    sql = "SELECT * FROM knowledge_incidents WHERE 1=1"
    params: list = []

    if keyword:
        sql += """ AND (description LIKE ? OR prevention LIKE ? OR root_cause LIKE ?
                   OR type LIKE ? OR title LIKE ?)"""
        params.extend([_like(keyword)] * 5)
    if incident_type:
        sql += " AND type LIKE ?"
        params.append(_like(incident_type))

    sql += " ORDER BY incident_num"
    return [dict(row) for row in conn.execute(sql, params).fetchall()]


# --- Schema mismatches ---

def check_schema(
    conn: sqlite3.Connection,
    table: str | None = None,
    column: str | None = None,
) -> list[dict]:
    """
    Known schema mismatches for a table and/or a wrong column name.

    With neither argument, every recorded mismatch.
    """
    sql = "SELECT * FROM knowledge_schema_mismatches WHERE 1=1"
    params: list = []
    if table:
        sql += " AND table_name = ?"
        params.append(table)
    if column:
        sql += " AND (wrong_column = ? OR note LIKE ?)"
        params.extend([column, _like(column)])
    sql += " ORDER BY table_name, id"
    return [dict(row) for row in conn.execute(sql, params).fetchall()]


# --- Corrections ---

def list_corrections(conn: sqlite3.Connection, cr_rule: str | None = None) -> list[dict]:
    """Active corrections, newest first; optionally only those enforcing cr_rule."""
    if cr_rule:
        cursor = conn.execute(
            "SELECT * FROM knowledge_corrections WHERE cr_rule = ? ORDER BY date DESC, id DESC",
            (cr_rule,)
        )
    else:
        cursor = conn.execute("SELECT * FROM knowledge_corrections ORDER BY date DESC, id DESC")
    return [dict(row) for row in cursor.fetchall()]


# --- Plans ---

def find_plans(
    conn: sqlite3.Connection,
    keyword: str | None = None,
    file: str | None = None,
    status: str | None = None,
) -> list[dict]:
    """
    Plan documents. Filters are tried in order: file, keyword, status.

    Args:
        keyword: Full-text match within plan chunks
        file: Plans whose referenced files include this file name
        status: Plans whose implementation status block mentions this text

    Returns:
        Dicts with file_path, title, description
    """
    if file:
        cursor = conn.execute(
            """
            SELECT DISTINCT kd.file_path, kd.title, kd.description
            FROM knowledge_chunks kc
            JOIN knowledge_documents kd ON kd.id = kc.document_id
            WHERE kd.category = 'plan' AND kc.heading = 'Referenced Files' AND kc.content LIKE ?
            ORDER BY kd.file_path DESC
            """,
            (_like(PurePosixPath(file).name),)
        )
        return [dict(row) for row in cursor.fetchall()]

    if keyword:
        plans = {}
        for hit in search_knowledge(conn, keyword, category="plan", limit=50):
            plans.setdefault(hit["file_path"], {
                "file_path": hit["file_path"],
                "title": hit["title"],
            })
        return list(plans.values())

    if status:
        cursor = conn.execute(
            """
            SELECT DISTINCT kd.file_path, kd.title, kd.description
            FROM knowledge_chunks kc
            JOIN knowledge_documents kd ON kd.id = kc.document_id
            WHERE kd.category = 'plan' AND kc.heading = 'IMPLEMENTATION STATUS' AND kc.content LIKE ?
            ORDER BY kd.file_path DESC
            """,
            (_like(status),)
        )
        return [dict(row) for row in cursor.fetchall()]

    cursor = conn.execute(
        "SELECT file_path, title, description FROM knowledge_documents WHERE category = 'plan' ORDER BY file_path"
    )
    return [dict(row) for row in cursor.fetchall()]


def get_plan(conn: sqlite3.Connection, name: str) -> dict | None:
    """A plan by (partial) file name, with its items, status block and referenced files."""
    row = conn.execute(
        """
        SELECT id, file_path, title, description FROM knowledge_documents
        WHERE category = 'plan' AND file_path LIKE ?
        ORDER BY file_path LIMIT 1
        """,
        (_like(name),)
    ).fetchone()
    if row is None:
        return None

    plan = dict(row)
    plan["items"] = []
    plan["status"] = None
    plan["file_refs"] = []

    for chunk in conn.execute(
        "SELECT heading, content, metadata FROM knowledge_chunks "
        "WHERE document_id = ? AND chunk_type = 'plan_item' ORDER BY id",
        (plan["id"],)
    ).fetchall():
        meta = decode_metadata(chunk["metadata"])
        if meta.get("plan_item_id"):
            plan["items"].append({
                "item_id": meta["plan_item_id"],
                "title": meta.get("title"),
                "content": chunk["content"],
            })
        elif meta.get("is_status"):
            plan["status"] = chunk["content"]
        elif meta.get("file_refs"):
            plan["file_refs"] = list(meta["file_refs"])

    return plan


# --- Commands ---

def get_command(conn: sqlite3.Connection, name: str) -> dict | None:
    """
    A command definition by name (file stem) or title.

    Falls back to the first sections of a commands-category document whose
    path contains the name when no command chunk matches.

    Returns:
        Dict with name, file_path, title, description, content
    """
    rows = conn.execute(
        """
        SELECT kc.heading, kc.content, kc.metadata, kd.file_path, kd.title, kd.description
        FROM knowledge_chunks kc
        JOIN knowledge_documents kd ON kd.id = kc.document_id
        WHERE kc.chunk_type = 'command'
        ORDER BY kd.file_path
        """
    ).fetchall()
    for row in rows:
        command_name = decode_metadata(row["metadata"]).get("command_name")
        if name in (command_name, row["heading"]):
            return {
                "name": command_name or row["heading"],
                "file_path": row["file_path"],
                "title": row["title"],
                "description": row["description"],
                "content": row["content"],
            }

    doc = conn.execute(
        """
        SELECT id, file_path, title, description FROM knowledge_documents
        WHERE category = 'commands' AND file_path LIKE ?
        ORDER BY file_path LIMIT 1
        """,
        (_like(name),)
    ).fetchone()
    if doc is None:
        return None

    sections = conn.execute(
        "SELECT heading, content FROM knowledge_chunks "
        "WHERE document_id = ? AND chunk_type = 'section' ORDER BY line_start LIMIT 3",
        (doc["id"],)
    ).fetchall()
    return {
        "name": name,
        "file_path": doc["file_path"],
        "title": doc["title"],
        "description": doc["description"],
        "content": "\n\n".join(
            f"### {s['heading']}\n{s['content']}" if s["heading"] else s["content"]
            for s in sections
        ),
    }


def find_commands(conn: sqlite3.Connection, keyword: str | None = None) -> list[dict]:
    """Command chunks whose title or text mentions keyword; all commands without one."""
    sql = """
        SELECT kc.heading, kc.content, kc.metadata, kd.file_path, kd.description
        FROM knowledge_chunks kc
        JOIN knowledge_documents kd ON kd.id = kc.document_id
        WHERE kc.chunk_type = 'command'
    """
    params: list = []
    if keyword:
        sql += " AND (kc.content LIKE ? OR kc.heading LIKE ?)"
        params.extend([_like(keyword), _like(keyword)])
    sql += " ORDER BY kc.heading"

    commands = []
    for row in conn.execute(sql, params).fetchall():
        commands.append({
            "name": decode_metadata(row["metadata"]).get("command_name") or row["heading"],
            "title": row["heading"],
            "file_path": row["file_path"],
            "description": row["description"],
            "content": row["content"],
        })
    return commands


# --- Patterns ---

PATTERN_CATEGORIES = ("patterns", "reference", "root")

# Quick-reference docs are consulted for every domain
PATTERN_QUICKREF = "patterns-quickref"

PATTERN_SECTION_DOCS = 2
PATTERN_TOPIC_LIMIT = 10
PATTERN_FALLBACK_LIMIT = 5


def find_patterns(conn: sqlite3.Connection, domain: str, topic: str | None = None) -> dict:
    """
    Pattern guidance for a domain, optionally narrowed to a topic.

    Pattern, reference and root documents whose path mentions the domain
    (or the patterns quick reference) are the domain docs. With a topic,
    their chunks are searched for it; without one, the sections of the
    first two domain docs are listed. When that finds nothing, a search
    over the whole corpus for "domain topic" is used instead.

    Returns:
        Dict with domain, topic, documents (file paths), sections (dicts
        with heading, content, chunk_type, file_path) and fallback (True
        when the sections came from the corpus-wide search)
    """
    if not domain:
        raise ValueError("domain is required")

    placeholders = ",".join("?" for _ in PATTERN_CATEGORIES)
    candidates = conn.execute(
        f"SELECT id, file_path FROM knowledge_documents WHERE category IN ({placeholders}) ORDER BY file_path",
        PATTERN_CATEGORIES
    ).fetchall()
    needles = (domain.lower(), PATTERN_QUICKREF)
    docs = [row for row in candidates if any(n in row["file_path"].lower() for n in needles)]

    result = {
        "domain": domain,
        "topic": topic,
        "documents": [row["file_path"] for row in docs],
        "sections": [],
        "fallback": False,
    }

    if docs and topic:
        hits = search_knowledge(
            conn, topic, limit=PATTERN_TOPIC_LIMIT, document_ids=[row["id"] for row in docs]
        )
        result["sections"] = [_pattern_section(hit) for hit in hits]
    elif docs:
        for doc in docs[:PATTERN_SECTION_DOCS]:
            for chunk in conn.execute(
                "SELECT heading, content, chunk_type FROM knowledge_chunks "
                "WHERE document_id = ? AND chunk_type = 'section' ORDER BY line_start",
                (doc["id"],)
            ).fetchall():
                result["sections"].append(_pattern_section({**dict(chunk), "file_path": doc["file_path"]}))

    if not result["sections"]:
        query = f"{domain} {topic}" if topic else domain
        hits = search_knowledge(conn, query, limit=PATTERN_FALLBACK_LIMIT)
        result["sections"] = [_pattern_section(hit) for hit in hits]
        result["fallback"] = True
        logger.debug(f"No domain pattern sections for {domain!r}; searched the corpus instead")

    return result


def _pattern_section(row: dict) -> dict:
    return {
        "heading": row.get("heading"),
        "content": row["content"],
        "chunk_type": row["chunk_type"],
        "file_path": row["file_path"],
    }
