"""
retrieval - Read-only queries over the knowledge database.

- search: FTS5 full-text search
- lookup: Rules, verification types, incidents, schema checks, corrections, plans
- graph: Bounded cross-reference traversal
"""
