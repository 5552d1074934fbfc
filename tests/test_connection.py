"""
tests/test_connection.py
------------------------
Tests for knowledge database initialization.

Run with: python -m pytest tests/test_connection.py -v
"""

from sqlite.connection import init_db
from sqlite.schema import SCHEMA_VERSION


def _tables(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger')").fetchall()
    return {row[0] for row in rows}


class TestInitDb:
    """Tests for init_db."""

    def test_fresh_database(self, tmp_path):
        conn = init_db(tmp_path / "kb.db")
        assert SCHEMA_VERSION == 1
        assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        assert {
            "knowledge_documents",
            "knowledge_entity_sources",
            "knowledge_corrections",
            "knowledge_index_runs",
            "knowledge_fts",
            "kc_fts_insert",
        } <= _tables(conn)
        conn.close()

    def test_reopen_keeps_data(self, tmp_path):
        conn = init_db(tmp_path / "kb.db")
        conn.execute("INSERT INTO knowledge_meta (key, value) VALUES ('k', 'v')")
        conn.commit()
        conn.close()

        conn = init_db(tmp_path / "kb.db")
        assert conn.execute("SELECT value FROM knowledge_meta WHERE key = 'k'").fetchone()[0] == "v"
        conn.close()

    def test_other_version_left_alone(self, tmp_path, caplog):
        path = tmp_path / "kb.db"
        conn = init_db(path)
        conn.execute("PRAGMA user_version = 7")
        conn.close()

        conn = init_db(path)
        assert conn.execute("PRAGMA user_version").fetchone()[0] == 7
        assert "expected v1" in caplog.text
        conn.close()
