"""
indexing/classify.py
--------------------
Map a knowledge file path to its category.

Categories:
- plan: under the plans directory, or any "plans" directory segment
- memory: under the memory directory, or any "memory" directory segment
- <docs sub-category>: under the docs directory, named by the first of
  DOCS_SUBCATEGORIES found in the path below it (architecture, security,
  database-docs, ...), else docs
- <category>: first sub-directory of the knowledge directory when it is a
  configured knowledge category (patterns, commands, incidents, ...)
- root: files directly inside the knowledge directory
- other: everything else
"""

from pathlib import Path, PurePosixPath

from kbindex.config import KnowledgePaths, MEMORY_MARKER, PLANS_MARKER


# Docs sub-directories, checked in order against the lower-cased path below
# the docs directory; the first fragment found names the category
DOCS_SUBCATEGORIES = [
    ("architecture", "architecture"),
    ("security", "security"),
    ("deployment", "deployment"),
    ("testing", "testing"),
    ("database", "database-docs"),
    ("audit", "audit"),
    ("analysis", "analysis"),
    ("development-intelligence", "dev-intelligence"),
    ("reports", "reports"),
    ("strategy", "strategy"),
]


def docs_category(rel_from_docs: str) -> str:
    """Category for a path relative to the docs directory."""
    rel = rel_from_docs.lower()
    for fragment, category in DOCS_SUBCATEGORIES:
        if fragment in rel:
            return category
    return "docs"


def _is_under(path: PurePosixPath, base: Path) -> bool:
    base_posix = PurePosixPath(base.as_posix())
    return path == base_posix or base_posix in path.parents


def categorize_file(file_path: Path | str, paths: KnowledgePaths) -> str:
    """
    Categorize a file by its location. Pure function of the path.

    Relative paths are resolved against the project root. Plans win over
    docs so docs/plans/x.md is a plan; a memory marker anywhere in the
    directory segments wins over everything but plans so memory caches
    rooted outside the project still classify.
    """
    raw = Path(file_path)
    if not raw.is_absolute():
        raw = paths.project_root / raw
    path = PurePosixPath(raw.as_posix())

    # Markers above the project root (e.g. /srv/memory/project) don't count
    root = PurePosixPath(paths.project_root.as_posix())
    parent = path.parent
    if _is_under(parent, paths.project_root):
        parent = parent.relative_to(root)
    dir_segments = [segment.lower() for segment in parent.parts]

    # Plans checked FIRST - docs/plans/ would otherwise be docs
    if _is_under(path, paths.plans_dir) or PLANS_MARKER in dir_segments:
        return "plan"

    if _is_under(path, paths.memory_dir) or MEMORY_MARKER in dir_segments:
        return "memory"

    if _is_under(path, paths.docs_dir):
        rel = path.relative_to(PurePosixPath(paths.docs_dir.as_posix()))
        return docs_category(rel.as_posix())

    if _is_under(path, paths.knowledge_dir):
        rel = path.relative_to(PurePosixPath(paths.knowledge_dir.as_posix()))
        if len(rel.parts) == 1:
            return "root"
        first_dir = rel.parts[0]
        if first_dir in paths.categories:
            return first_dir
        return "other"

    return "other"
