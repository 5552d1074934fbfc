"""
retrieval/search.py
-------------------
Full-text search over knowledge chunks (FTS5).

User queries are never passed to MATCH verbatim: each word becomes a
quoted FTS5 string, so operators and punctuation in the query can't
produce syntax errors.
"""

import logging
import re
import sqlite3

from sqlite.queries import decode_metadata


logger = logging.getLogger(__name__)


DEFAULT_LIMIT = 10
MAX_LIMIT = 50

# Bare FTS5 operators, dropped when they appear as whole tokens
FTS_OPERATORS = {"AND", "OR", "NOT", "NEAR"}

WORD_REGEX = re.compile(r"\w")


def sanitize_fts_query(query: str | None) -> str | None:
    """
    Turn free text into a safe FTS5 query.

    'BigInt "serialization" OR (error*' -> '"BigInt" "serialization" "error"'

    Returns:
        The quoted query, or None when nothing searchable remains
    """
    if not query:
        return None

    terms = []
    for token in query.split():
        token = token.replace('"', "")
        if token in FTS_OPERATORS:
            continue
        # Strip FTS syntax characters at the edges: (term) term* ^term col:
        token = token.strip("()*^:+-{}")
        if not token or not WORD_REGEX.search(token):
            continue
        terms.append(f'"{token}"')

    return " ".join(terms) if terms else None


def _clamp_limit(limit: int | None) -> int:
    if not limit or limit < 1:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


def search_knowledge(
    conn: sqlite3.Connection,
    query: str,
    category: str | None = None,
    chunk_type: str | None = None,
    limit: int = DEFAULT_LIMIT,
    document_ids: list[int] | None = None,
) -> list[dict]:
    """
    Search chunk headings and content, best matches first.

    Args:
        conn: Knowledge database connection
        query: Free text
        category: Only chunks from documents in this category
        chunk_type: Only chunks of this type
        limit: Maximum results (capped at 50)
        document_ids: Only chunks from these documents

    Returns:
        List of dicts: chunk_id, heading, content, chunk_type, metadata,
        file_path, category, title, rank. [] for empty or unusable queries.
    """
    fts_query = sanitize_fts_query(query)
    if fts_query is None:
        return []

    sql = """
        SELECT kc.id AS chunk_id, kc.heading, kc.content, kc.chunk_type, kc.metadata,
               kd.file_path, kd.category, kd.title,
               knowledge_fts.rank AS rank
        FROM knowledge_fts
        JOIN knowledge_chunks kc ON kc.id = knowledge_fts.rowid
        JOIN knowledge_documents kd ON kd.id = kc.document_id
        WHERE knowledge_fts MATCH ?
    """
    params: list = [fts_query]

    if category:
        sql += " AND kd.category = ?"
        params.append(category)
    if chunk_type:
        sql += " AND kc.chunk_type = ?"
        params.append(chunk_type)
    if document_ids:
        sql += f" AND kc.document_id IN ({','.join('?' for _ in document_ids)})"
        params.extend(document_ids)

    sql += " ORDER BY rank LIMIT ?"
    params.append(_clamp_limit(limit))

    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.OperationalError as e:
        logger.warning(f"FTS query failed for {query!r}: {e}")
        return []

    results = []
    for row in rows:
        result = dict(row)
        result["metadata"] = decode_metadata(result.get("metadata"))
        results.append(result)
    return results
