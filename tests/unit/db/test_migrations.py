"""Tests for the forward-only migration runner."""

from __future__ import annotations

import sqlite3

import pytest

import contextkb.db.migrations as migrations_module
from contextkb.db.connection import Database
from contextkb.db.migrations import MIGRATIONS, run_migrations


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    db = Database(tmp_path / "test.db")
    return db.connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


# --- Bootstrap ---

def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


# --- Idempotency ---

def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Tables created ---

@pytest.mark.parametrize(
    "table",
    ["sources", "knowledge_chunks", "conversation_sources", "conversations", "messages",
     "folders", "folder_conversations", "message_embeddings"],
)
def test_run_migrations_creates_table(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


def test_run_migrations_creates_no_virtual_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    virtual = conn.execute(
        "SELECT name FROM sqlite_master WHERE sql LIKE '%VIRTUAL TABLE%'"
    ).fetchall()
    assert virtual == []
    conn.close()


# --- Constraints ---

def test_source_hash_unique(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    conn.execute("INSERT INTO sources (id, hash, type) VALUES ('a', 'h', 'pdf')")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO sources (id, hash, type) VALUES ('b', 'h', 'pdf')")
    conn.close()


def test_chunk_index_unique_per_source(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    conn.execute("INSERT INTO sources (id, hash, type) VALUES ('s', 'h', 'text')")
    conn.execute(
        "INSERT INTO knowledge_chunks (id, source_id, content, vector, chunk_index) "
        "VALUES ('c1', 's', 'x', '[1.0]', 0)"
    )
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO knowledge_chunks (id, source_id, content, vector, chunk_index) "
            "VALUES ('c2', 's', 'y', '[1.0]', 0)"
        )
    conn.close()


# --- Incremental application ---

def test_run_migrations_upgrades_v1_database(tmp_path):
    """A database created at v1 gains the conversation tables on the next run."""
    conn = _fresh_conn(tmp_path)
    original = migrations_module.MIGRATIONS
    migrations_module.MIGRATIONS = original[:1]
    try:
        run_migrations(conn)
        assert not _table_exists(conn, "messages")
    finally:
        migrations_module.MIGRATIONS = original

    run_migrations(conn)
    assert _table_exists(conn, "messages")
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    assert versions == [1, 2]
    conn.close()


def test_run_migrations_applies_only_pending(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL, "
        "applied_at DATETIME NOT NULL DEFAULT (datetime('now')))"
    )
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.commit()

    original = migrations_module.MIGRATIONS
    migrations_module.MIGRATIONS = [
        (1, "CREATE TABLE IF NOT EXISTS v1_marker (x INTEGER);"),
        (2, "CREATE TABLE IF NOT EXISTS v2_marker (x INTEGER);"),
    ]
    try:
        run_migrations(conn)
        assert _table_exists(conn, "v2_marker")
        assert not _table_exists(conn, "v1_marker")
    finally:
        migrations_module.MIGRATIONS = original
    conn.close()
