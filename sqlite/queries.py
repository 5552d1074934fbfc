"""
sqlite/queries.py
-----------------
CRUD operations for the knowledge database.

Document, chunk and entity writes do not commit: the indexer wraps all
writes for one file in a single `with conn:` transaction. Run tracking and
meta writes commit immediately.
"""
import json
import sqlite3
from datetime import datetime


# --- Documents ---

def get_document_by_path(conn: sqlite3.Connection, file_path: str) -> dict | None:
    """Get a document row by its relative file path."""
    cursor = conn.execute(
        "SELECT * FROM knowledge_documents WHERE file_path = ?",
        (file_path,)
    )
    row = cursor.fetchone()
    return dict(row) if row else None


def get_document_paths(conn: sqlite3.Connection) -> dict[str, int]:
    """Map every indexed file path to its document id."""
    cursor = conn.execute("SELECT id, file_path FROM knowledge_documents")
    return {row["file_path"]: row["id"] for row in cursor.fetchall()}


def count_documents(conn: sqlite3.Connection) -> int:
    """Number of indexed documents."""
    cursor = conn.execute("SELECT COUNT(*) FROM knowledge_documents")
    return cursor.fetchone()[0]


def insert_document(conn: sqlite3.Connection, doc: dict) -> int:
    """
    Insert a new document row.

    Args:
        doc: Dict with keys: file_path, category, title, description,
             content_hash, indexed_at, indexed_at_epoch

    Returns:
        Row ID of the document
    """
    cursor = conn.execute(
        """
        INSERT INTO knowledge_documents
            (file_path, category, title, description, content_hash, indexed_at, indexed_at_epoch)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            doc["file_path"],
            doc["category"],
            doc["title"],
            doc.get("description"),
            doc["content_hash"],
            doc["indexed_at"],
            doc["indexed_at_epoch"],
        )
    )
    return cursor.lastrowid


def update_document(conn: sqlite3.Connection, document_id: int, doc: dict) -> None:
    """Replace the metadata of an existing document in place."""
    conn.execute(
        """
        UPDATE knowledge_documents
        SET category = ?, title = ?, description = ?, content_hash = ?,
            indexed_at = ?, indexed_at_epoch = ?
        WHERE id = ?
        """,
        (
            doc["category"],
            doc["title"],
            doc.get("description"),
            doc["content_hash"],
            doc["indexed_at"],
            doc["indexed_at_epoch"],
            document_id,
        )
    )


def clear_document_content(conn: sqlite3.Connection, document_id: int) -> None:
    """
    Remove every row derived from a document's content.

    Chunks are deleted explicitly so the FTS delete trigger fires while the
    parent document still exists. Rules, verifications and incidents are
    handled by replace_entity_sources since other documents may define them.
    """
    conn.execute("DELETE FROM knowledge_edges WHERE document_id = ?", (document_id,))
    conn.execute("DELETE FROM knowledge_chunks WHERE document_id = ?", (document_id,))
    conn.execute("DELETE FROM knowledge_corrections WHERE document_id = ?", (document_id,))
    conn.execute("DELETE FROM knowledge_schema_mismatches WHERE document_id = ?", (document_id,))


def delete_document(conn: sqlite3.Connection, document_id: int) -> None:
    """Delete a document and everything it owns."""
    clear_document_content(conn, document_id)
    for entity_type in ENTITY_TABLES:
        replace_entity_sources(conn, entity_type, document_id, [])
    conn.execute("DELETE FROM knowledge_documents WHERE id = ?", (document_id,))


# --- Chunks ---

def insert_chunk(conn: sqlite3.Connection, document_id: int, chunk: dict) -> int:
    """
    Insert a chunk. The FTS insert trigger indexes it in the same transaction.

    Args:
        chunk: Dict with keys: chunk_type, heading, content, line_start,
               line_end, metadata (dict)

    Returns:
        Chunk row ID
    """
    cursor = conn.execute(
        """
        INSERT INTO knowledge_chunks
            (document_id, chunk_type, heading, content, line_start, line_end, metadata)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            document_id,
            chunk["chunk_type"],
            chunk.get("heading"),
            chunk["content"],
            chunk.get("line_start"),
            chunk.get("line_end"),
            json.dumps(chunk.get("metadata") or {}),
        )
    )
    return cursor.lastrowid


def get_chunks_for_document(conn: sqlite3.Connection, document_id: int) -> list[dict]:
    """Get all chunks of a document in insertion order, metadata decoded."""
    cursor = conn.execute(
        "SELECT * FROM knowledge_chunks WHERE document_id = ? ORDER BY id",
        (document_id,)
    )
    chunks = []
    for row in cursor.fetchall():
        chunk = dict(row)
        chunk["metadata"] = decode_metadata(chunk.get("metadata"))
        chunks.append(chunk)
    return chunks


def decode_metadata(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


# --- Rules (CR) ---

def upsert_rule(conn: sqlite3.Connection, rule: dict, document_id: int) -> None:
    """Insert or update a rule by rule_id."""
    conn.execute(
        """
        INSERT INTO knowledge_rules (rule_id, rule_text, vr_type, reference_path, severity, document_id)
        VALUES (?, ?, ?, ?, COALESCE(?, 'HIGH'), ?)
        ON CONFLICT(rule_id) DO UPDATE SET
            rule_text = excluded.rule_text,
            vr_type = excluded.vr_type,
            reference_path = excluded.reference_path,
            severity = excluded.severity,
            document_id = excluded.document_id
        """,
        (
            rule["rule_id"],
            rule["rule_text"],
            rule.get("vr_type"),
            rule.get("reference_path"),
            rule.get("severity"),
            document_id,
        )
    )


def get_rules_for_document(conn: sqlite3.Connection, document_id: int) -> list[dict]:
    cursor = conn.execute(
        "SELECT * FROM knowledge_rules WHERE document_id = ? ORDER BY id",
        (document_id,)
    )
    return [dict(row) for row in cursor.fetchall()]


# --- Verification types (VR) ---

def upsert_verification(conn: sqlite3.Connection, vr: dict, document_id: int) -> None:
    """Insert or update a verification type by vr_type."""
    conn.execute(
        """
        INSERT INTO knowledge_verifications
            (vr_type, command, description, expected, use_when, catches, category, document_id)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(vr_type) DO UPDATE SET
            command = excluded.command,
            description = excluded.description,
            expected = excluded.expected,
            use_when = excluded.use_when,
            catches = excluded.catches,
            category = excluded.category,
            document_id = excluded.document_id
        """,
        (
            vr["vr_type"],
            vr["command"],
            vr.get("description"),
            vr.get("expected"),
            vr.get("use_when"),
            vr.get("catches"),
            vr.get("category"),
            document_id,
        )
    )


# --- Incidents ---

def upsert_incident(conn: sqlite3.Connection, incident: dict, document_id: int) -> None:
    """Insert or update an incident by incident_num."""
    conn.execute(
        """
        INSERT INTO knowledge_incidents
            (incident_num, date, type, title, description, prevention,
             cr_added, root_cause, user_quote, document_id)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(incident_num) DO UPDATE SET
            date = excluded.date,
            type = excluded.type,
            title = excluded.title,
            description = excluded.description,
            prevention = excluded.prevention,
            cr_added = excluded.cr_added,
            root_cause = excluded.root_cause,
            user_quote = excluded.user_quote,
            document_id = excluded.document_id
        """,
        (
            incident["incident_num"],
            incident.get("date"),
            incident.get("type"),
            incident.get("title"),
            incident.get("description"),
            incident.get("prevention"),
            incident.get("cr_added"),
            incident.get("root_cause"),
            incident.get("user_quote"),
            document_id,
        )
    )


# --- Entity sources ---

# Entity type -> (table, key column); the key column doubles as the record field
ENTITY_TABLES = {
    "cr": ("knowledge_rules", "rule_id"),
    "vr": ("knowledge_verifications", "vr_type"),
    "incident": ("knowledge_incidents", "incident_num"),
}


def replace_entity_sources(
    conn: sqlite3.Connection,
    entity_type: str,
    document_id: int,
    records: list[dict],
    file_path: str | None = None,
    source_rank: int = 0,
) -> None:
    """
    Replace a document's definitions of one entity type.

    Every key the document defined before or defines now is re-resolved, so
    an entity another document still defines survives, and one nobody
    defines any more is deleted.
    """
    _, key_column = ENTITY_TABLES[entity_type]
    cursor = conn.execute(
        "SELECT entity_key FROM knowledge_entity_sources WHERE entity_type = ? AND document_id = ?",
        (entity_type, document_id)
    )
    affected = {row["entity_key"] for row in cursor.fetchall()}

    conn.execute(
        "DELETE FROM knowledge_entity_sources WHERE entity_type = ? AND document_id = ?",
        (entity_type, document_id)
    )
    for record in records:
        key = str(record[key_column])
        conn.execute(
            """
            INSERT OR REPLACE INTO knowledge_entity_sources
                (entity_type, entity_key, document_id, source_rank, file_path, payload)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (entity_type, key, document_id, source_rank, file_path, json.dumps(record))
        )
        affected.add(key)

    for key in sorted(affected):
        resolve_entity(conn, entity_type, key)


def resolve_entity(conn: sqlite3.Connection, entity_type: str, entity_key: str) -> None:
    """Write the winning definition of an entity, or delete it when none is left."""
    table, key_column = ENTITY_TABLES[entity_type]
    cursor = conn.execute(
        """
        SELECT document_id, payload FROM knowledge_entity_sources
        WHERE entity_type = ? AND entity_key = ?
        ORDER BY source_rank, file_path
        LIMIT 1
        """,
        (entity_type, entity_key)
    )
    row = cursor.fetchone()
    if row is None:
        key = int(entity_key) if entity_type == "incident" else entity_key
        conn.execute(f"DELETE FROM {table} WHERE {key_column} = ?", (key,))
        return

    upsert = {"cr": upsert_rule, "vr": upsert_verification, "incident": upsert_incident}[entity_type]
    upsert(conn, json.loads(row["payload"]), row["document_id"])


def get_entity_sources_for_document(conn: sqlite3.Connection, document_id: int, entity_type: str) -> list[dict]:
    """A document's own definitions of one entity type, in insertion order."""
    cursor = conn.execute(
        """
        SELECT payload FROM knowledge_entity_sources
        WHERE entity_type = ? AND document_id = ?
        ORDER BY rowid
        """,
        (entity_type, document_id)
    )
    return [json.loads(row["payload"]) for row in cursor.fetchall()]


# --- Schema mismatches ---

def insert_schema_mismatch(conn: sqlite3.Connection, mismatch: dict, document_id: int) -> int:
    cursor = conn.execute(
        """
        INSERT INTO knowledge_schema_mismatches
            (table_name, wrong_column, correct_column, note, document_id)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            mismatch.get("table_name"),
            mismatch.get("wrong_column"),
            mismatch.get("correct_column"),
            mismatch.get("note"),
            document_id,
        )
    )
    return cursor.lastrowid


# --- Corrections ---

def insert_correction(conn: sqlite3.Connection, correction: dict, document_id: int) -> int:
    cursor = conn.execute(
        """
        INSERT INTO knowledge_corrections
            (date, title, wrong, correction, rule, cr_rule, document_id)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            correction["date"],
            correction["title"],
            correction.get("wrong"),
            correction.get("correction"),
            correction.get("rule"),
            correction.get("cr_rule"),
            document_id,
        )
    )
    return cursor.lastrowid


def get_corrections_for_document(conn: sqlite3.Connection, document_id: int) -> list[dict]:
    cursor = conn.execute(
        "SELECT * FROM knowledge_corrections WHERE document_id = ? ORDER BY id",
        (document_id,)
    )
    return [dict(row) for row in cursor.fetchall()]


# --- Edges ---

def insert_edge(
    conn: sqlite3.Connection,
    source_type: str,
    source_id: str,
    target_type: str,
    target_id: str,
    edge_type: str,
    document_id: int,
) -> bool:
    """
    Insert an edge, ignoring duplicates.

    Returns:
        True if a new row was written
    """
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO knowledge_edges
            (source_type, source_id, target_type, target_id, edge_type, document_id)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (source_type, str(source_id), target_type, str(target_id), edge_type, document_id)
    )
    return cursor.rowcount == 1


def get_outgoing_edges(conn: sqlite3.Connection, entity_type: str, entity_id: str) -> list[dict]:
    cursor = conn.execute(
        """
        SELECT DISTINCT target_type, target_id, edge_type
        FROM knowledge_edges
        WHERE source_type = ? AND source_id = ?
        ORDER BY id
        """,
        (entity_type, str(entity_id))
    )
    return [dict(row) for row in cursor.fetchall()]


def get_incoming_edges(conn: sqlite3.Connection, entity_type: str, entity_id: str) -> list[dict]:
    cursor = conn.execute(
        """
        SELECT DISTINCT source_type, source_id, edge_type
        FROM knowledge_edges
        WHERE target_type = ? AND target_id = ?
        ORDER BY id
        """,
        (entity_type, str(entity_id))
    )
    return [dict(row) for row in cursor.fetchall()]


# --- Meta ---

def get_meta(conn: sqlite3.Connection, key: str) -> str | None:
    cursor = conn.execute("SELECT value FROM knowledge_meta WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row["value"] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO knowledge_meta (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, str(value))
    )
    conn.commit()


# --- Index runs ---

def create_index_run(conn: sqlite3.Connection, run_type: str) -> int:
    """
    Create a new index run.

    Args:
        run_type: 'full', 'forced', or 'single_file'

    Returns:
        Run ID
    """
    cursor = conn.execute(
        """
        INSERT INTO knowledge_index_runs (run_type, started_at, status)
        VALUES (?, ?, 'running')
        """,
        (run_type, datetime.now().isoformat())
    )
    conn.commit()
    return cursor.lastrowid


def update_index_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: str | None = None,
    **stats
) -> None:
    """
    Update index run status and stats.

    Args:
        run_id: Run ID to update
        status: New status ('running', 'completed', 'failed', 'interrupted')
        **stats: Stats to update (files_indexed, chunks_created, etc.)
    """
    updates = []
    values = []

    if status:
        updates.append("status = ?")
        values.append(status)
        if status in ('completed', 'failed', 'interrupted'):
            updates.append("completed_at = ?")
            values.append(datetime.now().isoformat())

    for key, value in stats.items():
        updates.append(f"{key} = ?")
        values.append(value)

    if updates:
        values.append(run_id)
        conn.execute(
            f"UPDATE knowledge_index_runs SET {', '.join(updates)} WHERE id = ?",
            tuple(values)
        )
        conn.commit()


def get_latest_run(conn: sqlite3.Connection) -> dict | None:
    """Get the most recent index run."""
    cursor = conn.execute("SELECT * FROM knowledge_index_runs ORDER BY id DESC LIMIT 1")
    row = cursor.fetchone()
    return dict(row) if row else None


def log_index_error(
    conn: sqlite3.Connection,
    file_path: str,
    error_type: str,
    error_message: str,
    run_id: int | None = None,
    stack_trace: str | None = None,
) -> None:
    """Record a per-file indexing error."""
    conn.execute(
        """
        INSERT INTO knowledge_index_errors
        (run_id, file_path, error_type, error_message, stack_trace, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (run_id, file_path, error_type, error_message, stack_trace,
         datetime.now().isoformat())
    )
    conn.commit()


def get_run_errors(conn: sqlite3.Connection, run_id: int | None = None) -> list[dict]:
    """Get index errors, optionally for one run."""
    if run_id is not None:
        cursor = conn.execute(
            "SELECT * FROM knowledge_index_errors WHERE run_id = ? ORDER BY id",
            (run_id,)
        )
    else:
        cursor = conn.execute("SELECT * FROM knowledge_index_errors ORDER BY id")
    return [dict(row) for row in cursor.fetchall()]


# --- Statistics ---

def get_knowledge_stats(conn: sqlite3.Connection) -> dict:
    """Row counts for every knowledge table."""
    stats = {}
    for key, table in (
        ("documents", "knowledge_documents"),
        ("chunks", "knowledge_chunks"),
        ("rules", "knowledge_rules"),
        ("verifications", "knowledge_verifications"),
        ("incidents", "knowledge_incidents"),
        ("schema_mismatches", "knowledge_schema_mismatches"),
        ("corrections", "knowledge_corrections"),
        ("edges", "knowledge_edges"),
    ):
        cursor = conn.execute(f"SELECT COUNT(*) FROM {table}")
        stats[key] = cursor.fetchone()[0]

    cursor = conn.execute(
        "SELECT category, COUNT(*) as count FROM knowledge_documents GROUP BY category"
    )
    stats["by_category"] = {row["category"]: row["count"] for row in cursor.fetchall()}
    return stats
