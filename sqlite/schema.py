"""
sqlite/schema.py
----------------
Database schema definitions for the knowledge base.

SCHEMA_VERSION history:
- v1: Documents, chunks, rules, verifications, incidents, entity sources,
      schema mismatches, corrections, edges, meta, FTS5 index, index run
      tracking (index_runs, index_errors)
"""

SCHEMA_VERSION = 1

# ============================================================================
# Core knowledge tables
# ============================================================================

# Documents table - one row per indexed markdown file
DOCUMENTS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path TEXT UNIQUE NOT NULL,    -- Relative id: "CLAUDE.md", "plans/x.md", "memory/y.md"
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    content_hash TEXT NOT NULL,        -- sha256 of file bytes
    indexed_at TEXT NOT NULL,
    indexed_at_epoch INTEGER NOT NULL  -- Milliseconds
);
"""

# Chunks table - heading-delimited or structured slices of a document
CHUNKS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id INTEGER NOT NULL,
    chunk_type TEXT NOT NULL CHECK(chunk_type IN (
        'section', 'rule', 'verification', 'incident', 'mismatch',
        'command', 'plan_item', 'correction'
    )),
    heading TEXT,
    content TEXT NOT NULL,
    line_start INTEGER,
    line_end INTEGER,
    metadata TEXT DEFAULT '{}',        -- JSON object

    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE CASCADE
);
"""

# Canonical rules (CR-N)
RULES_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    rule_id TEXT UNIQUE NOT NULL,
    rule_text TEXT NOT NULL,
    vr_type TEXT,
    reference_path TEXT,
    severity TEXT DEFAULT 'HIGH',
    document_id INTEGER,               -- Winning entry in knowledge_entity_sources

    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE SET NULL
);
"""

# Verification types (VR-*)
VERIFICATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_verifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    vr_type TEXT UNIQUE NOT NULL,
    command TEXT NOT NULL,
    description TEXT,
    expected TEXT,
    use_when TEXT,
    catches TEXT,
    category TEXT,
    document_id INTEGER,

    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE SET NULL
);
"""

# Incidents - keyed by incident number
INCIDENTS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_incidents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    incident_num INTEGER UNIQUE NOT NULL,
    date TEXT,
    type TEXT,
    title TEXT,
    description TEXT,
    prevention TEXT,
    cr_added TEXT,
    root_cause TEXT,
    user_quote TEXT,
    document_id INTEGER,

    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE SET NULL
);
"""

# Every definition of a rule, verification type or incident, one row per
# defining document. The entity tables hold the winning definition.
ENTITY_SOURCES_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_entity_sources (
    entity_type TEXT NOT NULL CHECK(entity_type IN ('cr', 'vr', 'incident')),
    entity_key TEXT NOT NULL,
    document_id INTEGER NOT NULL,
    source_rank INTEGER NOT NULL DEFAULT 0,  -- Lower wins; ties go to file_path order
    file_path TEXT NOT NULL,
    payload TEXT NOT NULL,             -- JSON of the parsed record

    PRIMARY KEY (entity_type, entity_key, document_id),
    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE CASCADE
);
"""

# Schema mismatch notes - may legitimately be empty
SCHEMA_MISMATCHES_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_schema_mismatches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT,
    wrong_column TEXT,
    correct_column TEXT,
    note TEXT,
    document_id INTEGER NOT NULL,

    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE CASCADE
);
"""

# Cross-reference graph (derived, rebuilt per document)
EDGES_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_edges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    target_type TEXT NOT NULL,
    target_id TEXT NOT NULL,
    edge_type TEXT NOT NULL,           -- 'references', 'co_occurs', 'enforced_by', 'caused', 'enforces'
    document_id INTEGER NOT NULL,      -- Document whose content produced the edge

    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE CASCADE,
    UNIQUE (source_type, source_id, target_type, target_id, edge_type, document_id)
);
"""

# Key/value state (last_index_epoch, last_index_time, files_indexed)
META_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# Full-text index over chunk text, rowid = knowledge_chunks.id
FTS_TABLE = """
CREATE VIRTUAL TABLE IF NOT EXISTS knowledge_fts USING fts5(
    heading, content, chunk_type, file_path
);
"""

# Triggers keep knowledge_fts in lockstep with knowledge_chunks
FTS_TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS kc_fts_insert AFTER INSERT ON knowledge_chunks BEGIN
        INSERT INTO knowledge_fts(rowid, heading, content, chunk_type, file_path)
        SELECT new.id, new.heading, new.content, new.chunk_type, kd.file_path
        FROM knowledge_documents kd WHERE kd.id = new.document_id;
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS kc_fts_delete AFTER DELETE ON knowledge_chunks BEGIN
        DELETE FROM knowledge_fts WHERE rowid = old.id;
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS kc_fts_update AFTER UPDATE ON knowledge_chunks BEGIN
        DELETE FROM knowledge_fts WHERE rowid = old.id;
        INSERT INTO knowledge_fts(rowid, heading, content, chunk_type, file_path)
        SELECT new.id, new.heading, new.content, new.chunk_type, kd.file_path
        FROM knowledge_documents kd WHERE kd.id = new.document_id;
    END;
    """,
]

# ============================================================================
# Corrections and run tracking
# ============================================================================

# Corrections extracted from the active section of a corrections log
CORRECTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_corrections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    title TEXT NOT NULL,
    wrong TEXT,
    correction TEXT,
    rule TEXT,
    cr_rule TEXT,                      -- NULL when the entry has no CR field
    document_id INTEGER NOT NULL,

    FOREIGN KEY (document_id) REFERENCES knowledge_documents(id) ON DELETE CASCADE
);
"""

# Index runs - tracks indexing passes
INDEX_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_index_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_type TEXT NOT NULL CHECK(run_type IN ('full', 'forced', 'single_file')),
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed', 'interrupted')),

    -- Stats
    files_discovered INTEGER DEFAULT 0,
    files_indexed INTEGER DEFAULT 0,
    files_skipped INTEGER DEFAULT 0,
    files_removed INTEGER DEFAULT 0,
    chunks_created INTEGER DEFAULT 0,
    edges_created INTEGER DEFAULT 0,
    error_count INTEGER DEFAULT 0
);
"""

# Index errors - per-file failures
INDEX_ERRORS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_index_errors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER,
    file_path TEXT NOT NULL,
    error_type TEXT NOT NULL,          -- 'read_error', 'index_error'
    error_message TEXT,
    stack_trace TEXT,
    created_at TEXT NOT NULL,

    FOREIGN KEY (run_id) REFERENCES knowledge_index_runs(id) ON DELETE CASCADE
);
"""

TABLES = [
    DOCUMENTS_TABLE,
    CHUNKS_TABLE,
    RULES_TABLE,
    VERIFICATIONS_TABLE,
    INCIDENTS_TABLE,
    ENTITY_SOURCES_TABLE,
    SCHEMA_MISMATCHES_TABLE,
    CORRECTIONS_TABLE,
    EDGES_TABLE,
    META_TABLE,
    FTS_TABLE,
    INDEX_RUNS_TABLE,
    INDEX_ERRORS_TABLE,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_kd_category ON knowledge_documents(category);",
    "CREATE INDEX IF NOT EXISTS idx_kc_doc ON knowledge_chunks(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_kc_type ON knowledge_chunks(chunk_type);",
    "CREATE INDEX IF NOT EXISTS idx_kc_heading ON knowledge_chunks(heading);",
    "CREATE INDEX IF NOT EXISTS idx_kr_doc ON knowledge_rules(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_kv_doc ON knowledge_verifications(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_ki_type ON knowledge_incidents(type);",
    "CREATE INDEX IF NOT EXISTS idx_ki_cr ON knowledge_incidents(cr_added);",
    "CREATE INDEX IF NOT EXISTS idx_kes_doc ON knowledge_entity_sources(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_ksm_table ON knowledge_schema_mismatches(table_name);",
    "CREATE INDEX IF NOT EXISTS idx_kcorr_doc ON knowledge_corrections(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_kcorr_cr ON knowledge_corrections(cr_rule);",
    "CREATE INDEX IF NOT EXISTS idx_ke_source ON knowledge_edges(source_type, source_id);",
    "CREATE INDEX IF NOT EXISTS idx_ke_target ON knowledge_edges(target_type, target_id);",
    "CREATE INDEX IF NOT EXISTS idx_ke_doc ON knowledge_edges(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_kir_status ON knowledge_index_runs(status);",
    "CREATE INDEX IF NOT EXISTS idx_kie_run ON knowledge_index_errors(run_id);",
]
