"""
kbindex - Markdown knowledge base indexer and cross-reference graph.

Indexes a project's knowledge directory (rules, verification types,
incident logs, corrections, plans, docs) into SQLite with FTS5 search.

Usage:
    kbindex index            # Index changed files
    kbindex search "query"   # Full-text search
    kbindex graph cr CR-1    # Cross-reference neighbourhood
"""

__version__ = "0.1.0"
