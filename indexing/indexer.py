"""
indexing/indexer.py
-------------------
Index a markdown knowledge corpus into the knowledge database.

For each discovered file:
1. Hash the file bytes (sha256) and compare with the stored content_hash
2. Unchanged: skip. New or changed: classify, parse, chunk
3. Replace the document's chunks, entities and edges in ONE transaction
4. Build cross-reference edges for the document inside that transaction

Rules, verification types and incidents may be defined by more than one
document; each definition is kept per document and the entity row holds the
winner (lowest source rank, then file path), so an incremental pass ends
in the same state as a full rebuild.

Documents whose files disappeared are purged. Per-file failures are logged,
recorded in knowledge_index_errors and counted; they never abort the pass
and never leave a half-written document behind.

Usage:
    from indexing.indexer import index_all_knowledge, index_if_stale

    stats = index_all_knowledge(conn)
    stats = index_if_stale(conn)   # zero stats when nothing changed
"""

import hashlib
import logging
import sqlite3
import time
import traceback
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path, PurePosixPath

from kbindex.config import KnowledgePaths, get_knowledge_paths
from sqlite import queries

from .chunk import ChunkRecord, build_chunks
from .classify import categorize_file
from .crossref import build_cross_references
from .discover import discover_files
from .parsers import (
    CorrectionRecord,
    IncidentRecord,
    RuleRecord,
    SchemaMismatchRecord,
    VerificationRecord,
    extract_description,
    extract_title,
    parse_corrections,
    parse_incidents,
    parse_rule_table,
    parse_schema_mismatches,
    parse_verification_table,
)
from .staleness import is_knowledge_stale


logger = logging.getLogger(__name__)


STAT_KEYS = (
    "files_indexed",
    "chunks_created",
    "edges_created",
    "failures",
    "files_skipped",
    "files_removed",
)


def empty_stats() -> dict:
    return {key: 0 for key in STAT_KEYS}


def hash_content(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def now_epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ParsedDocument:
    """Everything extracted from one file, ready to persist."""
    file_path: str
    category: str
    title: str
    description: str | None
    content_hash: str
    rules: list[RuleRecord] = field(default_factory=list)
    verifications: list[VerificationRecord] = field(default_factory=list)
    incidents: list[IncidentRecord] = field(default_factory=list)
    mismatches: list[SchemaMismatchRecord] = field(default_factory=list)
    corrections: list[CorrectionRecord] = field(default_factory=list)
    chunks: list[ChunkRecord] = field(default_factory=list)
    # Verification types from a dedicated reference beat those in a rule source
    verification_rank: int = 0


def _matches_source(rel_path: str, names: list[str]) -> bool:
    name = PurePosixPath(rel_path).name.lower()
    return any(name == source.lower() for source in names)


def parse_document(
    text: str,
    abs_path: Path,
    rel_path: str,
    content_hash: str,
    paths: KnowledgePaths,
) -> ParsedDocument:
    """
    Classify and parse one document.

    Structured parsers run only on their source files (matched by file
    name): rule sources yield rules, verification types and schema
    mismatches; verification sources yield verification types; incident
    logs yield incidents; corrections files yield corrections.
    """
    category = categorize_file(abs_path, paths)
    doc = ParsedDocument(
        file_path=rel_path,
        category=category,
        title=extract_title(text, abs_path),
        description=extract_description(text),
        content_hash=content_hash,
    )

    if _matches_source(rel_path, paths.rule_sources):
        doc.rules = parse_rule_table(text)
        doc.verifications = parse_verification_table(text)
        doc.mismatches = parse_schema_mismatches(text)
        doc.verification_rank = 1

    if _matches_source(rel_path, paths.verification_sources):
        doc.verifications = parse_verification_table(text)
        doc.verification_rank = 0

    if _matches_source(rel_path, paths.incident_logs):
        doc.incidents = parse_incidents(text)

    if _matches_source(rel_path, paths.corrections_files):
        doc.corrections = parse_corrections(text, paths.active_heading, paths.archive_heading)

    doc.chunks = build_chunks(
        text,
        rel_path,
        category,
        doc.title,
        min_section_chars=paths.min_section_chars,
        rules=doc.rules,
        verifications=doc.verifications,
        incidents=doc.incidents,
        mismatches=doc.mismatches,
        corrections=doc.corrections,
    )
    return doc


def write_document(conn: sqlite3.Connection, doc: ParsedDocument, existing_id: int | None) -> tuple[int, int, int]:
    """
    Persist a parsed document, replacing whatever it produced before.

    Does not commit; callers wrap it in `with conn:`.

    Returns:
        (document_id, chunks_created, edges_created)
    """
    row = {
        "file_path": doc.file_path,
        "category": doc.category,
        "title": doc.title,
        "description": doc.description,
        "content_hash": doc.content_hash,
        "indexed_at": datetime.now().isoformat(),
        "indexed_at_epoch": now_epoch_ms(),
    }

    if existing_id is None:
        document_id = queries.insert_document(conn, row)
    else:
        # Keep the document id stable; drop everything derived from the old content
        document_id = existing_id
        queries.clear_document_content(conn, document_id)
        queries.update_document(conn, document_id, row)

    queries.replace_entity_sources(
        conn, "cr", document_id, [asdict(r) for r in doc.rules], doc.file_path
    )
    queries.replace_entity_sources(
        conn, "vr", document_id, [asdict(v) for v in doc.verifications], doc.file_path,
        source_rank=doc.verification_rank,
    )
    queries.replace_entity_sources(
        conn, "incident", document_id, [asdict(i) for i in doc.incidents], doc.file_path
    )

    for mismatch in doc.mismatches:
        queries.insert_schema_mismatch(conn, asdict(mismatch), document_id)

    for correction in doc.corrections:
        queries.insert_correction(conn, asdict(correction), document_id)

    for chunk in doc.chunks:
        queries.insert_chunk(conn, document_id, chunk.to_dict())

    edges = build_cross_references(conn, document_id)
    return document_id, len(doc.chunks), edges


def index_file(
    conn: sqlite3.Connection,
    abs_path: Path,
    rel_path: str,
    paths: KnowledgePaths,
    force: bool = False,
) -> tuple[int, int] | None:
    """
    Index one file if its content changed.

    Reading, parsing and writing happen before and inside a single
    transaction; any exception rolls the file's writes back and propagates.

    Returns:
        (chunks_created, edges_created), or None when the file is unchanged
    """
    data = abs_path.read_bytes()
    content_hash = hash_content(data)

    existing = queries.get_document_by_path(conn, rel_path)
    if existing and existing["content_hash"] == content_hash and not force:
        return None

    text = data.decode("utf-8")
    doc = parse_document(text, abs_path, rel_path, content_hash, paths)

    with conn:
        _, chunks, edges = write_document(conn, doc, existing["id"] if existing else None)

    logger.debug(f"Indexed {rel_path}: {chunks} chunks, {edges} edges")
    return chunks, edges


def _record_failure(conn, rel_path: str, run_id: int, e: Exception) -> None:
    error_type = "read_error" if isinstance(e, (OSError, UnicodeDecodeError)) else "index_error"
    logger.error(f"Failed to index {rel_path}: {e}")
    queries.log_index_error(
        conn, rel_path, error_type, str(e), run_id, stack_trace=traceback.format_exc()
    )


def index_all_knowledge(
    conn: sqlite3.Connection,
    paths: KnowledgePaths | None = None,
    force: bool = False,
) -> dict:
    """
    Index every knowledge file that changed since the last pass.

    Args:
        conn: Initialized knowledge database connection
        paths: Corpus locations (defaults to get_knowledge_paths())
        force: Re-index files even when their hash is unchanged

    Returns:
        Stats dict: files_indexed, chunks_created, edges_created, failures,
        files_skipped, files_removed
    """
    paths = paths or get_knowledge_paths()
    stats = empty_stats()

    logger.info("=" * 60)
    logger.info(f"Knowledge indexing: {paths.project_root}")
    logger.info("=" * 60)

    run_id = queries.create_index_run(conn, "forced" if force else "full")
    logger.info(f"Created index run #{run_id}")

    files = discover_files(paths)
    logger.info(f"Discovered {len(files)} markdown files")

    try:
        for abs_path, rel_path in files:
            try:
                result = index_file(conn, abs_path, rel_path, paths, force=force)
            except Exception as e:
                stats["failures"] += 1
                _record_failure(conn, rel_path, run_id, e)
                continue

            if result is None:
                stats["files_skipped"] += 1
                continue

            chunks, edges = result
            stats["files_indexed"] += 1
            stats["chunks_created"] += chunks
            stats["edges_created"] += edges

        # Purge documents whose files are gone
        current = {rel for _, rel in files}
        for rel_path, document_id in queries.get_document_paths(conn).items():
            if rel_path in current:
                continue
            with conn:
                queries.delete_document(conn, document_id)
            stats["files_removed"] += 1
            logger.info(f"Removed {rel_path}")

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        queries.update_index_run(conn, run_id, status="interrupted", **_run_stats(stats, files))
        raise

    # Timestamp taken AFTER the pass so files edited mid-pass read as stale
    if stats["failures"] == 0:
        queries.set_meta(conn, "last_index_epoch", str(now_epoch_ms()))
        queries.set_meta(conn, "last_index_time", datetime.now().isoformat())
        queries.set_meta(conn, "files_indexed", str(queries.count_documents(conn)))
    else:
        logger.warning(f"{stats['failures']} files failed; index epoch not advanced")

    queries.update_index_run(conn, run_id, status="completed", **_run_stats(stats, files))

    logger.info("\n" + "=" * 60)
    logger.info("Indexing Complete!")
    logger.info(f"  Files indexed:  {stats['files_indexed']}")
    logger.info(f"  Files skipped:  {stats['files_skipped']}")
    logger.info(f"  Files removed:  {stats['files_removed']}")
    logger.info(f"  Chunks created: {stats['chunks_created']}")
    logger.info(f"  Edges created:  {stats['edges_created']}")
    logger.info(f"  Failures:       {stats['failures']}")
    logger.info("=" * 60)

    return stats


def _run_stats(stats: dict, files: list) -> dict:
    return {
        "files_discovered": len(files),
        "files_indexed": stats["files_indexed"],
        "files_skipped": stats["files_skipped"],
        "files_removed": stats["files_removed"],
        "chunks_created": stats["chunks_created"],
        "edges_created": stats["edges_created"],
        "error_count": stats["failures"],
    }


def index_if_stale(conn: sqlite3.Connection, paths: KnowledgePaths | None = None) -> dict:
    """Run a full pass only when the index is stale; otherwise zero stats, no writes."""
    paths = paths or get_knowledge_paths()
    if not is_knowledge_stale(conn, paths):
        logger.info("Knowledge index is fresh, nothing to do")
        return empty_stats()
    return index_all_knowledge(conn, paths)


# ============================================================================
# Corrections
# ============================================================================

CORRECTION_TITLE_CHARS = 60


def format_correction_entry(
    wrong: str,
    correction: str,
    rule: str,
    cr_rule: str | None = None,
    entry_date: date | None = None,
) -> str:
    """Markdown block for one correction, titled by the first 60 chars of the rule."""
    entry_date = entry_date or date.today()
    title = rule.strip()[:CORRECTION_TITLE_CHARS].strip()
    lines = [
        f"### {entry_date.isoformat()} - {title}",
        f"- **Wrong**: {wrong}",
        f"- **Correction**: {correction}",
        f"- **Rule**: {rule}",
    ]
    if cr_rule:
        lines.append(f"- **CR**: {cr_rule}")
    return "\n".join(lines) + "\n"


def insert_correction_entry(existing: str, entry: str, active_heading: str, archive_heading: str) -> str:
    """
    Place an entry at the end of the active section.

    Before the archive heading when present; otherwise appended, with the
    active heading created for a new log.
    """
    lines = existing.splitlines(keepends=True)
    archive = archive_heading.strip().lower()
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("#") and stripped.lstrip("#").strip().lower() == archive:
            before = "".join(lines[:i]).rstrip("\n")
            after = "".join(lines[i:])
            return f"{before}\n\n{entry}\n{after}"

    if not existing.strip():
        return f"# Corrections\n\n## {active_heading}\n\n{entry}"
    body = existing.rstrip("\n")
    return f"{body}\n\n{entry}"


def record_correction(
    conn: sqlite3.Connection,
    wrong: str,
    correction: str,
    rule: str,
    cr_rule: str | None = None,
    paths: KnowledgePaths | None = None,
) -> Path:
    """
    Append a correction to the corrections log and re-index that file.

    The log lives in the memory directory under the first configured
    corrections file name.

    Returns:
        Path of the corrections log
    """
    if not (wrong and correction and rule):
        raise ValueError("wrong, correction and rule are all required")

    paths = paths or get_knowledge_paths()
    log_path = paths.memory_dir / paths.corrections_files[0]
    log_path.parent.mkdir(parents=True, exist_ok=True)

    existing = log_path.read_text(encoding="utf-8") if log_path.exists() else ""
    entry = format_correction_entry(wrong, correction, rule, cr_rule)
    log_path.write_text(
        insert_correction_entry(existing, entry, paths.active_heading, paths.archive_heading),
        encoding="utf-8",
    )
    logger.info(f"Correction recorded in {log_path}")

    rel_path = "memory/" + log_path.relative_to(paths.memory_dir).as_posix()
    run_id = queries.create_index_run(conn, "single_file")
    try:
        result = index_file(conn, log_path, rel_path, paths)
    except Exception as e:
        _record_failure(conn, rel_path, run_id, e)
        queries.update_index_run(conn, run_id, status="failed", error_count=1)
        raise

    chunks, edges = result or (0, 0)
    queries.update_index_run(
        conn, run_id, status="completed",
        files_discovered=1, files_indexed=1 if result else 0,
        chunks_created=chunks, edges_created=edges,
    )
    return log_path
