"""Repository for sources, knowledge chunks, conversation links and message vectors.

Single interface for the vector-store side of contextkb. Similarity is
computed in SQL with sqlite-vec's ``vec_distance_cosine``; score = 1 - distance.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from typing import Any

from contextkb.db.models import Chunk, RankedChunk, RankedMessage, Source, SourceLink
from contextkb.db.vectors import decode_vector, encode_vector


class SourceConflictError(Exception):
    """Raised when a source with the same hash already exists."""

    def __init__(self, hash: str) -> None:
        super().__init__(f"Source with hash {hash[:16]}… already exists")
        self.hash = hash


class Repository:
    """Data access layer for the knowledge-base entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use. Statements are serialised with a lock so
    searches can be issued from worker threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see contextkb.db.schema.initialize).
        """
        self._conn = conn
        self._lock = threading.RLock()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _write(self, sql: str, params: tuple | list = ()) -> None:
        with self._lock:
            self._conn.execute(sql, params)
            self._conn.commit()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def get_source_by_hash(self, hash: str) -> Source | None:
        """Return the source with content hash *hash*, or None if not found."""
        row = self._fetchone(
            "SELECT id, hash, type, name, metadata, created_at FROM sources WHERE hash = ?",
            (hash,),
        )
        return _row_to_source(row) if row else None

    def get_source(self, source_id: str) -> Source | None:
        row = self._fetchone(
            "SELECT id, hash, type, name, metadata, created_at FROM sources WHERE id = ?",
            (source_id,),
        )
        return _row_to_source(row) if row else None

    def create_source(
        self,
        hash: str,
        type: str,
        name: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Insert a new source and return its id.

        Raises:
            SourceConflictError: If a source with *hash* already exists
                (the UNIQUE constraint on ``sources.hash`` arbitrates races).
        """
        source_id = str(uuid.uuid4())
        try:
            self._write(
                "INSERT INTO sources (id, hash, type, name, metadata) VALUES (?, ?, ?, ?, ?)",
                (source_id, hash, type, name, json.dumps(metadata or {})),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc).upper():
                raise
            raise SourceConflictError(hash) from exc
        return source_id

    def list_sources(self) -> list[Source]:
        """Return all sources ordered by creation time (oldest first)."""
        rows = self._fetchall(
            "SELECT id, hash, type, name, metadata, created_at FROM sources ORDER BY created_at, rowid"
        )
        return [_row_to_source(r) for r in rows]

    # ------------------------------------------------------------------
    # Knowledge chunks
    # ------------------------------------------------------------------

    def get_knowledge_chunks(self, source_id: str) -> list[Chunk]:
        """Return every chunk of *source_id* ordered by ``chunk_index``."""
        rows = self._fetchall(
            """
            SELECT id, source_id, content, vector, chunk_index, metadata
            FROM knowledge_chunks WHERE source_id = ? ORDER BY chunk_index
            """,
            (source_id,),
        )
        return [_row_to_chunk(r) for r in rows]

    def add_knowledge_chunk(self, chunk: Chunk) -> str:
        """Insert *chunk* (vector included). Returns the new chunk id."""
        chunk_id = chunk.id or str(uuid.uuid4())
        self._write(
            """
            INSERT INTO knowledge_chunks (id, source_id, content, vector, chunk_index, metadata)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                chunk_id,
                chunk.source_id,
                chunk.content,
                encode_vector(chunk.vector),
                chunk.chunk_index,
                json.dumps(chunk.metadata),
            ),
        )
        chunk.id = chunk_id
        return chunk_id

    def append_knowledge_chunk(self, chunk: Chunk) -> int:
        """Insert *chunk* at the next free index of its source. Returns that index.

        The index is computed by the INSERT itself, so writers on other
        connections to the same file never claim the same one.
        ``chunk.chunk_index`` is ignored on input and set on return.
        """
        chunk_id = chunk.id or str(uuid.uuid4())
        with self._lock:
            self._write(
                """
                INSERT INTO knowledge_chunks (id, source_id, content, vector, chunk_index, metadata)
                SELECT ?, ?, ?, ?, COALESCE(MAX(chunk_index), -1) + 1, ?
                FROM knowledge_chunks WHERE source_id = ?
                """,
                (
                    chunk_id,
                    chunk.source_id,
                    chunk.content,
                    encode_vector(chunk.vector),
                    json.dumps(chunk.metadata),
                    chunk.source_id,
                ),
            )
            row = self._fetchone(
                "SELECT chunk_index FROM knowledge_chunks WHERE id = ?", (chunk_id,)
            )
        chunk.id = chunk_id
        chunk.chunk_index = row[0]
        return row[0]

    def count_chunks(self, source_id: str | None = None) -> int:
        if source_id is None:
            return self._fetchone("SELECT COUNT(*) FROM knowledge_chunks")[0]
        return self._fetchone(
            "SELECT COUNT(*) FROM knowledge_chunks WHERE source_id = ?", (source_id,)
        )[0]

    def search_knowledge_base(
        self,
        source_ids: list[str],
        query_vector: list[float],
        limit: int = 10,
        min_score: float = 0.0,
    ) -> list[RankedChunk]:
        """Rank chunks of *source_ids* by cosine similarity to *query_vector*.

        Sources without chunks simply contribute nothing.
        """
        ids = list(dict.fromkeys(source_ids))
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        rows = self._fetchall(
            f"""
            SELECT * FROM (
                SELECT id, source_id, content, chunk_index, metadata,
                       1.0 - vec_distance_cosine(vector, ?) AS score
                FROM knowledge_chunks
                WHERE source_id IN ({placeholders})
            )
            WHERE score >= ?
            ORDER BY score DESC
            LIMIT ?
            """,
            [encode_vector(query_vector), *ids, min_score, limit],
        )
        return [
            RankedChunk(
                id=r["id"],
                source_id=r["source_id"],
                content=r["content"],
                chunk_index=r["chunk_index"],
                score=r["score"],
                metadata=json.loads(r["metadata"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Conversation ↔ source links
    # ------------------------------------------------------------------

    def link_source_to_conversation(
        self, conversation_id: str, source_id: str, message_id: str | None = None
    ) -> str:
        """Attach *source_id* to *conversation_id* (optionally scoped to a message)."""
        link_id = str(uuid.uuid4())
        self._write(
            """
            INSERT INTO conversation_sources (id, conversation_id, source_id, message_id)
            VALUES (?, ?, ?, ?)
            """,
            (link_id, conversation_id, source_id, message_id),
        )
        return link_id

    def get_sources_for_conversation(self, conversation_id: str) -> list[SourceLink]:
        rows = self._fetchall(
            """
            SELECT id, conversation_id, source_id, message_id, created_at
            FROM conversation_sources WHERE conversation_id = ?
            ORDER BY created_at, rowid
            """,
            (conversation_id,),
        )
        return [
            SourceLink(
                id=r["id"],
                conversation_id=r["conversation_id"],
                source_id=r["source_id"],
                message_id=r["message_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def count_links(self) -> int:
        return self._fetchone("SELECT COUNT(*) FROM conversation_sources")[0]

    # ------------------------------------------------------------------
    # Message embeddings
    # ------------------------------------------------------------------

    def add_message_embedding(
        self,
        message_id: str,
        conversation_id: str,
        content: str,
        vector: list[float],
    ) -> None:
        """Upsert the embedding of one message."""
        self._write(
            """
            INSERT INTO message_embeddings (message_id, conversation_id, content, vector)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(message_id) DO UPDATE SET
                content = excluded.content,
                vector = excluded.vector,
                created_at = datetime('now')
            """,
            (message_id, conversation_id, content, encode_vector(vector)),
        )

    def has_message_embedding(self, message_id: str) -> bool:
        return (
            self._fetchone(
                "SELECT 1 FROM message_embeddings WHERE message_id = ?", (message_id,)
            )
            is not None
        )

    def count_message_embeddings(self, conversation_ids: list[str] | None = None) -> int:
        if conversation_ids is None:
            return self._fetchone("SELECT COUNT(*) FROM message_embeddings")[0]
        if not conversation_ids:
            return 0
        placeholders = ",".join("?" * len(conversation_ids))
        return self._fetchone(
            f"SELECT COUNT(*) FROM message_embeddings WHERE conversation_id IN ({placeholders})",
            list(conversation_ids),
        )[0]

    def search_multiple_conversations(
        self,
        conversation_ids: list[str],
        query_vector: list[float],
        limit: int = 10,
        min_score: float = 0.0,
    ) -> list[RankedMessage]:
        """Rank embedded messages of *conversation_ids* by cosine similarity."""
        ids = list(dict.fromkeys(conversation_ids))
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        rows = self._fetchall(
            f"""
            SELECT * FROM (
                SELECT message_id, conversation_id, content,
                       1.0 - vec_distance_cosine(vector, ?) AS score
                FROM message_embeddings
                WHERE conversation_id IN ({placeholders})
            )
            WHERE score >= ?
            ORDER BY score DESC
            LIMIT ?
            """,
            [encode_vector(query_vector), *ids, min_score, limit],
        )
        return [
            RankedMessage(
                message_id=r["message_id"],
                conversation_id=r["conversation_id"],
                content=r["content"],
                score=r["score"],
            )
            for r in rows
        ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        hash=row["hash"],
        type=row["type"],
        name=row["name"],
        metadata=json.loads(row["metadata"]),
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        source_id=row["source_id"],
        content=row["content"],
        vector=decode_vector(row["vector"]),
        chunk_index=row["chunk_index"],
        metadata=json.loads(row["metadata"]),
    )
