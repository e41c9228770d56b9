"""Forward-only migration runner for the contextkb schema.

Vectors live in plain TEXT columns (JSON arrays) and are compared with
sqlite-vec's ``vec_distance_cosine``; no vec0 virtual tables are needed.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id              TEXT PRIMARY KEY,
    hash            TEXT NOT NULL UNIQUE,
    type            TEXT NOT NULL,
    name            TEXT NOT NULL DEFAULT '',
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS knowledge_chunks (
    id              TEXT PRIMARY KEY,
    source_id       TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    content         TEXT NOT NULL,
    vector          TEXT NOT NULL,
    chunk_index     INTEGER NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{}',
    UNIQUE (source_id, chunk_index)
);

CREATE TABLE IF NOT EXISTS conversation_sources (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    source_id       TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    message_id      TEXT,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_knowledge_chunks_source ON knowledge_chunks(source_id);
CREATE INDEX IF NOT EXISTS idx_conversation_sources_conversation
    ON conversation_sources(conversation_id);
CREATE INDEX IF NOT EXISTS idx_conversation_sources_message
    ON conversation_sources(message_id);
"""

_V2_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id                              TEXT PRIMARY KEY,
    title                           TEXT NOT NULL DEFAULT 'Untitled',
    active_referenced_conversations TEXT NOT NULL DEFAULT '[]',
    active_referenced_folders       TEXT NOT NULL DEFAULT '[]',
    created_at                      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS messages (
    id                       TEXT PRIMARY KEY,
    conversation_id          TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role                     TEXT NOT NULL,
    content                  TEXT NOT NULL,
    timestamp                INTEGER NOT NULL,
    version_of               TEXT,
    version_number           INTEGER NOT NULL DEFAULT 1,
    referenced_conversations TEXT NOT NULL DEFAULT '[]',
    referenced_folders       TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS folders (
    id      TEXT PRIMARY KEY,
    name    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS folder_conversations (
    folder_id       TEXT NOT NULL REFERENCES folders(id) ON DELETE CASCADE,
    conversation_id TEXT NOT NULL,
    PRIMARY KEY (folder_id, conversation_id)
);

CREATE TABLE IF NOT EXISTS message_embeddings (
    message_id      TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    content         TEXT NOT NULL,
    vector          TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_version_of ON messages(version_of);
CREATE INDEX IF NOT EXISTS idx_message_embeddings_conversation
    ON message_embeddings(conversation_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
