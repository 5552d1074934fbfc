"""
sqlite/
-------
Knowledge database schema, connection management and queries.
"""
