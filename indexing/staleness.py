"""
indexing/staleness.py
---------------------
Decide whether a full index pass is needed.

Uses file metadata only (existence, modification time); file contents are
never read here.
"""

import logging
import sqlite3

from kbindex.config import KnowledgePaths, get_knowledge_paths
from sqlite import queries

from .discover import discover_files


logger = logging.getLogger(__name__)


def is_knowledge_stale(conn: sqlite3.Connection, paths: KnowledgePaths | None = None) -> bool:
    """
    True when the index no longer reflects the corpus on disk.

    Stale when any of:
    - no documents have been indexed
    - last_index_epoch is missing or not a number
    - a tracked file was modified after last_index_epoch (ms, strictly newer)
    - a tracked file has no document row
    - an indexed document's file no longer exists
    """
    paths = paths or get_knowledge_paths()

    indexed = queries.get_document_paths(conn)
    if not indexed:
        logger.debug("Stale: no documents indexed")
        return True

    raw_epoch = queries.get_meta(conn, "last_index_epoch")
    try:
        last_epoch = int(raw_epoch)
    except (TypeError, ValueError):
        logger.debug(f"Stale: invalid last_index_epoch {raw_epoch!r}")
        return True

    on_disk = set()
    for abs_path, rel in discover_files(paths):
        on_disk.add(rel)
        if rel not in indexed:
            logger.debug(f"Stale: new file {rel}")
            return True
        try:
            mtime_ms = int(abs_path.stat().st_mtime * 1000)
        except OSError:
            return True
        if mtime_ms > last_epoch:
            logger.debug(f"Stale: {rel} modified after last index")
            return True

    removed = set(indexed) - on_disk
    if removed:
        logger.debug(f"Stale: {len(removed)} indexed files removed")
        return True

    return False
