"""
indexing/discover.py
--------------------
Find the markdown files that make up a knowledge corpus.

Roots, each mapped to a relative document id prefix:
    knowledge dir (.claude/)   "<rel>"
    memory dir                 "memory/<rel>"
    plans dir (docs/plans/)    "plans/<rel>"
    docs dir (docs/)           "docs/<rel>"   (minus plans and excluded paths)
"""

import logging
from pathlib import Path

from kbindex.config import KnowledgePaths


logger = logging.getLogger(__name__)


# Directory names never descended into
SKIP_DIRS = {"node_modules", ".git"}

# Parents whose "archive" sub-directory holds superseded state files
ARCHIVED_STATE_DIRS = {"session-state", "status"}


def _skip(rel_parts: tuple[str, ...]) -> bool:
    dirs = rel_parts[:-1]
    if any(part in SKIP_DIRS for part in dirs):
        return True
    for parent, child in zip(dirs, dirs[1:]):
        if parent in ARCHIVED_STATE_DIRS and child.lower() == "archive":
            return True
    return False


def _walk(root: Path, prefix: str) -> list[tuple[Path, str]]:
    if not root.is_dir():
        logger.debug(f"Skipping missing directory: {root}")
        return []

    found = []
    for path in sorted(root.rglob("*.md")):
        if not path.is_file():
            continue
        rel = path.relative_to(root)
        if _skip(rel.parts):
            continue
        found.append((path, prefix + rel.as_posix()))
    return found


def discover_files(paths: KnowledgePaths) -> list[tuple[Path, str]]:
    """
    All indexable markdown files.

    Returns:
        (absolute path, relative document id) pairs, each file once,
        in root order then path order
    """
    files = []
    seen = set()

    def _add(candidates: list[tuple[Path, str]]) -> None:
        for abs_path, rel in candidates:
            key = abs_path.resolve()
            if key in seen:
                continue
            seen.add(key)
            files.append((abs_path, rel))

    _add(_walk(paths.knowledge_dir, ""))
    _add(_walk(paths.memory_dir, "memory/"))
    _add(_walk(paths.plans_dir, "plans/"))

    plans_root = paths.plans_dir.resolve()
    docs = []
    for abs_path, rel in _walk(paths.docs_dir, "docs/"):
        # Match against the document id so paths above the docs dir don't count
        marked = "/" + rel
        if plans_root in abs_path.resolve().parents or "/plans/" in marked:
            continue
        if any(pattern in marked for pattern in paths.exclude_patterns):
            continue
        docs.append((abs_path, rel))
    _add(docs)

    return files
