"""Source registry: content-addressed source dedup, chunk ingestion, linking.

Two ingestion paths:

``ingest_processed_source``
    Pre-chunked uploads arriving in batches. The source hash is derived from
    the file's identity (name, storage key, conversation, message), not from
    chunk content, so every batch of one upload lands on the same Source.

``add_source``
    Full text available up front. The hash covers the whole content; the text
    is chunked and embedded only when the Source is new.

Source creation is optimistic: insert, and on a uniqueness conflict re-read by
hash and adopt the row that won.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from contextkb.config import ContextKBConfig
from contextkb.db.conversations import ConversationStore
from contextkb.db.models import SOURCE_TYPES, ParentChildMetadata, TextChunkMetadata
from contextkb.db.repository import Repository, SourceConflictError
from contextkb.ingest import batch_chunks, extractor_for, source_type_for
from contextkb.ingest.base import ProcessedChunk
from contextkb.ingest.chunking import chunk_text, chunk_with_parent_child
from contextkb.ingest.embedding_writer import EmbeddingWriter
from contextkb.ingest.pdf import PdfExtractor
from contextkb.rag.llm_client import EmbeddingClient
from contextkb.rag.retriever import retrieve_source_context


@dataclass
class SourceDescriptor:
    """Identity of an uploaded file whose chunks arrive in batches."""

    name: str
    type: str
    r2_key: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class KnowledgeSource:
    """A source whose full text is already available."""

    type: str
    content: str
    name: str
    metadata: dict[str, Any] = field(default_factory=dict)


def processed_source_hash(
    name: str, r2_key: str, conversation_id: str, message_id: str | None
) -> str:
    """Stable SHA-256 identity of one upload, shared by all of its batches."""
    identity = f"{name}:{r2_key}:{conversation_id}:{message_id or ''}"
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _check_type(source_type: str) -> None:
    if source_type not in SOURCE_TYPES:
        raise ValueError(
            f"Unknown source type {source_type!r}; expected one of {sorted(SOURCE_TYPES)}"
        )


class KnowledgeBaseService:
    """Owns source deduplication, chunk embedding and conversation links.

    Args:
        repo: Vector-store repository.
        conversations: Conversation store (needed for message indexing and
            active-path context).
        embedder: Embedding client.
        config: Full configuration; ingestion, retrieval and embedding
            sections are used.
    """

    def __init__(
        self,
        repo: Repository,
        conversations: ConversationStore,
        embedder: EmbeddingClient,
        config: ContextKBConfig | None = None,
    ) -> None:
        self._repo = repo
        self._conversations = conversations
        self._embedder = embedder
        self._config = config or ContextKBConfig()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_processed_source(
        self,
        conversation_id: str,
        source: SourceDescriptor,
        chunks: list[ProcessedChunk],
        message_id: str | None = None,
        is_first_batch: bool = True,
    ) -> str:
        """Store one batch of a pre-chunked upload. Returns the source id.

        Any embedding or storage failure propagates to the caller.
        """
        _check_type(source.type)
        logger.info(
            f"Ingesting batch of {len(chunks)} chunks for '{source.name}' "
            f"(first batch: {is_first_batch})"
        )

        hash = processed_source_hash(source.name, source.r2_key, conversation_id, message_id)
        source_id, created = self._get_or_create_source(
            hash,
            source.type,
            source.name,
            {**source.metadata, "r2Key": source.r2_key},
        )
        if not created:
            logger.debug(f"Appending to existing source {source_id}")

        if is_first_batch:
            self._repo.link_source_to_conversation(conversation_id, source_id, message_id)

        self._writer().write(source_id, chunks)
        logger.info(f"Ingested batch into source {source_id}")
        return source_id

    def add_source(
        self,
        conversation_id: str,
        source: KnowledgeSource,
        message_id: str | None = None,
        small_to_big: bool = False,
    ) -> str:
        """Register full-text *source*, chunking and embedding it only if new.

        With *small_to_big*, child chunks are embedded and carry their
        parent's text in metadata for retrieval-time expansion.
        """
        _check_type(source.type)
        hash = content_hash(source.content)
        source_id, created = self._get_or_create_source(
            hash, source.type, source.name, source.metadata
        )

        if created and source.content.strip():
            chunks = (
                self._parent_child_chunks(source.content)
                if small_to_big
                else self._text_chunks(source.content)
            )
            logger.debug(f"Chunked '{source.name}' into {len(chunks)} parts")
            self._writer().write(source_id, chunks)
        elif not created:
            logger.info(f"Reusing existing source {source_id} for '{source.name}'")

        self._repo.link_source_to_conversation(conversation_id, source_id, message_id)
        return source_id

    def ingest_file(
        self,
        conversation_id: str,
        path: str | Path,
        message_id: str | None = None,
        r2_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Extract *path* and ingest it batch by batch, like an upload worker would.

        Raises:
            ValueError: If the file type is unsupported or nothing was extracted.
        """
        path = Path(path)
        ingestion = self._config.ingestion
        extractor = extractor_for(path, ingestion.chunk_size, ingestion.overlap)
        if extractor is None:
            raise ValueError(f"Unsupported file type: {path.suffix!r}")

        document_metadata: dict[str, Any] = {}
        if isinstance(extractor, PdfExtractor):
            document = extractor.process(path)
            chunks = document.chunks
            document_metadata = {
                "pageCount": document.page_count,
                "extractedPages": document.extracted_pages,
                "hasStructure": document.has_structure,
            }
        else:
            chunks = extractor.extract(path)
        if not chunks:
            raise ValueError(f"No text could be extracted from {path}")

        descriptor = SourceDescriptor(
            name=path.name,
            type=source_type_for(path),
            r2_key=r2_key if r2_key is not None else str(path.resolve()),
            metadata={
                "size": path.stat().st_size,
                **document_metadata,
                **(metadata or {}),
            },
        )
        batches = batch_chunks(chunks, ingestion.batch_chars)
        source_id = ""
        for number, batch in enumerate(batches, start=1):
            logger.debug(f"Batch {number}/{len(batches)} for {path.name}")
            source_id = self.ingest_processed_source(
                conversation_id,
                descriptor,
                batch,
                message_id=message_id,
                is_first_batch=number == 1,
            )
        return source_id

    def index_messages(self, conversation_id: str) -> int:
        """Embed active-path messages that have no embedding yet. Returns how many."""
        indexed = 0
        for msg in self._conversations.get_messages(conversation_id).messages:
            if msg.role == "system" or not msg.content.strip():
                continue
            if self._repo.has_message_embedding(msg.id):
                continue
            vector = self._embedder.get_embeddings(msg.content)
            self._repo.add_message_embedding(msg.id, conversation_id, msg.content, vector)
            indexed += 1
        logger.info(f"Indexed {indexed} messages of conversation {conversation_id}")
        return indexed

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get_context(
        self,
        conversation_id: str,
        query: str,
        target_message_id: str | None = None,
    ) -> str:
        """Excerpts from the sources active on the current path; "" on any failure."""
        return retrieve_source_context(
            conversation_id,
            query,
            self._repo,
            self._conversations,
            self._embedder,
            self._config,
            target_message_id=target_message_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_or_create_source(
        self, hash: str, type: str, name: str, metadata: dict[str, Any]
    ) -> tuple[str, bool]:
        """Return ``(source_id, created)``; a lost creation race adopts the winner."""
        existing = self._repo.get_source_by_hash(hash)
        if existing is not None:
            return existing.id, False

        try:
            return self._repo.create_source(hash, type, name, metadata), True
        except SourceConflictError:
            winner = self._repo.get_source_by_hash(hash)
            if winner is None:
                raise
            logger.debug(f"Concurrent create for {hash[:16]}…; adopting {winner.id}")
            return winner.id, False

    def _writer(self) -> EmbeddingWriter:
        return EmbeddingWriter(
            self._repo,
            self._embedder,
            concurrency=self._config.ingestion.embed_concurrency,
        )

    def _text_chunks(self, content: str) -> list[ProcessedChunk]:
        ingestion = self._config.ingestion
        return [
            ProcessedChunk(
                content=segment,
                metadata=TextChunkMetadata(char_count=len(segment)),
            )
            for segment in chunk_text(content, ingestion.chunk_size, ingestion.overlap)
        ]

    def _parent_child_chunks(self, content: str) -> list[ProcessedChunk]:
        ingestion = self._config.ingestion
        result = chunk_with_parent_child(
            content, parent_size=ingestion.parent_size, child_size=ingestion.child_size
        )
        parents = {p.id: p for p in result.parents}
        return [
            ProcessedChunk(
                content=child.content,
                metadata=ParentChildMetadata(
                    parent_id=child.parent_id,
                    parent_index=parents[child.parent_id].chunk_index,
                    parent_content=parents[child.parent_id].content,
                    child_index=child.chunk_index,
                ),
            )
            for child in result.children
        ]
