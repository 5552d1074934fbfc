"""
tests/conftest.py
-----------------
Shared fixtures: a throwaway project corpus and knowledge database.
"""

from pathlib import Path

import pytest

from kbindex.config import KnowledgePaths
from sqlite.connection import init_db


RULES_MD = """\
# Project Rules

Rules every session must follow before claiming work is complete.

## Canonical Rules

| ID | Rule | VR | Reference |
|----|------|----|-----------|
| CR-1 | Never claim state without proof | VR-FILE | [evidence](patterns/evidence.md) |
| CR-2 | Check the schema before writing queries | VR-SCHEMA | |
| CR-3 | Run the build before claiming done | VR-BUILD | |

## Verification Types

| Type | Command | Expected | Use When |
|------|---------|----------|----------|
| VR-BUILD | `npm run build` | Exit 0 | Before claiming done |
| VR-SCHEMA | `psql -c "\\d table"` | Columns listed | Before writing queries |

### Known Schema Mismatches

| Table | Wrong Column | Correct Column |
|-------|--------------|----------------|
| users | name | full_name |

---

## Notes

Other guidance for this project lives in the patterns directory.
"""

INCIDENT_LOG_MD = """\
# Incident Log

## Incident #1: Claimed build passed without running it

- **Date**: 2026-01-10
- **Type**: false-claim
- **Gap Found**: Reported a green build that was never run
- **Prevention**: Always run VR-BUILD before reporting
- **CR Added**: CR-3

## Incident #2: Queried a column that does not exist

- **Date**: 2026-01-12
- **Type**: schema
- **Gap Found**: Used users.name instead of users.full_name
- **Prevention**: Check the schema first
- **CR Added**: CR-2
"""

CORRECTIONS_MD = """\
# Corrections

## Active Prevention Rules

### 2026-01-15 - Verify files exist
- **Wrong**: Claimed the config file existed
- **Correction**: Listed the directory first
- **Rule**: Never claim a file exists without checking
- **CR**: CR-1

### 2026-01-16 - Keep answers short
- **Wrong**: Wrote a long answer
- **Correction**: Wrote a short answer
- **Rule**: Be brief

## Archived

### 2025-12-01 - Old entry
- **Wrong**: Something old
- **Correction**: Something better
- **Rule**: An old rule
"""


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def paths(tmp_path) -> KnowledgePaths:
    """Corpus locations inside tmp_path; nothing written yet."""
    root = tmp_path / "project"
    (root / ".claude").mkdir(parents=True)
    return KnowledgePaths(
        project_root=root,
        knowledge_dir=root / ".claude",
        memory_dir=tmp_path / "home" / "memory",
        plans_dir=root / "docs" / "plans",
        docs_dir=root / "docs",
        db_path=tmp_path / "knowledge.db",
    )


@pytest.fixture
def corpus(paths) -> KnowledgePaths:
    """A small corpus covering every structured source."""
    write(paths.knowledge_dir / "CLAUDE.md", RULES_MD)
    write(paths.knowledge_dir / "incidents" / "incident-log.md", INCIDENT_LOG_MD)
    write(paths.memory_dir / "corrections.md", CORRECTIONS_MD)
    write(
        paths.knowledge_dir / "patterns" / "evidence.md",
        "# Evidence Patterns\n\n## Proof\n\nShow command output for every claim (CR-1).\n",
    )
    return paths


@pytest.fixture
def conn(paths):
    connection = init_db(paths.db_path)
    yield connection
    connection.close()
