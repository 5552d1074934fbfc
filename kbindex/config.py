"""
kbindex/config.py
-----------------
Shared configuration for all kbindex modules.

Loads settings from environment variables with sensible defaults.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()


def _env_list(name: str, default: list[str]) -> list[str]:
    """Read a comma-separated list from the environment."""
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment, falling back on bad values."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


# Project root whose knowledge directory is indexed
PROJECT_ROOT = Path(os.getenv("KB_PROJECT_ROOT", Path.cwd())).resolve()

# Name of the knowledge directory at the project root
KB_DIR_NAME = os.getenv("KB_DIR_NAME", ".claude")

# SQLite database path
DB_PATH = Path(os.getenv("KB_DB_PATH", PROJECT_ROOT / ".kbindex" / "knowledge.db"))

# Log directory
LOG_DIR = Path(os.getenv("KB_LOG_DIR", PROJECT_ROOT / "logs"))

# ============================================================================
# Corpus layout
# ============================================================================

# First-level directories under the knowledge directory that are categories
KNOWLEDGE_CATEGORIES = _env_list("KB_CATEGORIES", [
    "patterns", "commands", "incidents", "reference", "protocols",
    "checklists", "playbooks", "critical", "scripts", "status",
    "templates", "loop-state", "session-state", "agents",
])

# Docs paths containing any of these fragments are not indexed
EXCLUDE_PATTERNS = _env_list("KB_EXCLUDE_PATTERNS", ["/ARCHIVE/", "/SESSION-HISTORY/"])

# Directory segment markers used by the classifier
PLANS_MARKER = "plans"
MEMORY_MARKER = "memory"

# ============================================================================
# Structured sources
# ============================================================================

# Files carrying the canonical rule (CR) and verification (VR) tables
RULE_SOURCE_FILES = _env_list("KB_RULE_SOURCES", ["CLAUDE.md"])
VERIFICATION_SOURCE_FILES = _env_list("KB_VERIFICATION_SOURCES", ["vr-verification-reference.md"])
INCIDENT_LOG_FILES = _env_list("KB_INCIDENT_LOGS", ["incident-log.md"])
CORRECTIONS_FILES = _env_list("KB_CORRECTIONS_FILES", ["corrections.md"])

# Correction log boundaries (heading text, case-insensitive)
CORRECTIONS_ACTIVE_HEADING = os.getenv("KB_CORRECTIONS_ACTIVE_HEADING", "Active Prevention Rules")
CORRECTIONS_ARCHIVE_HEADING = os.getenv("KB_CORRECTIONS_ARCHIVE_HEADING", "Archived")

# Sections with this many characters or fewer are not stored as chunks
MIN_SECTION_CHARS = _env_int("KB_MIN_SECTION_CHARS", 10)

# Upper bound for graph traversal depth
GRAPH_MAX_DEPTH = _env_int("KB_GRAPH_MAX_DEPTH", 3)


@dataclass
class KnowledgePaths:
    """Resolved locations and source-file conventions for one corpus."""
    project_root: Path
    knowledge_dir: Path
    memory_dir: Path
    plans_dir: Path
    docs_dir: Path
    db_path: Path
    kb_dir_name: str = KB_DIR_NAME
    categories: list[str] = field(default_factory=lambda: list(KNOWLEDGE_CATEGORIES))
    exclude_patterns: list[str] = field(default_factory=lambda: list(EXCLUDE_PATTERNS))
    rule_sources: list[str] = field(default_factory=lambda: list(RULE_SOURCE_FILES))
    verification_sources: list[str] = field(default_factory=lambda: list(VERIFICATION_SOURCE_FILES))
    incident_logs: list[str] = field(default_factory=lambda: list(INCIDENT_LOG_FILES))
    corrections_files: list[str] = field(default_factory=lambda: list(CORRECTIONS_FILES))
    active_heading: str = CORRECTIONS_ACTIVE_HEADING
    archive_heading: str = CORRECTIONS_ARCHIVE_HEADING
    min_section_chars: int = MIN_SECTION_CHARS


def default_memory_dir(project_root: Path, kb_dir_name: str = KB_DIR_NAME) -> Path:
    """
    User-level memory directory scoped to a project.

    ~/.claude/projects/-home-user-myproject/memory
    """
    project_key = str(project_root).replace("\\", "/").replace("/", "-")
    return Path.home() / kb_dir_name / "projects" / project_key / "memory"


def get_knowledge_paths(project_root: Path | str | None = None) -> KnowledgePaths:
    """
    Resolve corpus locations for a project.

    Environment overrides (KB_MEMORY_DIR, KB_PLANS_DIR, KB_DOCS_DIR, KB_DB_PATH)
    only apply when indexing the configured PROJECT_ROOT.

    Args:
        project_root: Root to index (defaults to PROJECT_ROOT)

    Returns:
        KnowledgePaths with absolute directories
    """
    root = Path(project_root).resolve() if project_root else PROJECT_ROOT
    use_env = root == PROJECT_ROOT

    def _override(name: str, default: Path) -> Path:
        value = os.getenv(name) if use_env else None
        return Path(value).resolve() if value else default

    return KnowledgePaths(
        project_root=root,
        knowledge_dir=root / KB_DIR_NAME,
        memory_dir=_override("KB_MEMORY_DIR", default_memory_dir(root)),
        plans_dir=_override("KB_PLANS_DIR", root / "docs" / "plans"),
        docs_dir=_override("KB_DOCS_DIR", root / "docs"),
        db_path=DB_PATH if use_env else root / ".kbindex" / "knowledge.db",
    )
