"""Source-context retriever: dense search over the sources active on a path.

Pipeline:
  1. Resolve the sources whose links are active on the conversation path.
  2. Embed the query (bounded by the embedding timeout).
  3. Rank chunks of those sources by cosine similarity.
  4. Expand small-to-big hits to their parent text, once per parent.
  5. Render numbered excerpt blocks.

Retrieval is best-effort: failures are logged and yield an empty context.
"""

from __future__ import annotations

from loguru import logger

from contextkb.config import ContextKBConfig
from contextkb.db.conversations import ConversationStore
from contextkb.db.models import ParentChildMetadata, RankedChunk, parse_chunk_metadata
from contextkb.db.repository import Repository
from contextkb.rag.active_path import get_active_sources_for_path
from contextkb.rag.llm_client import EmbeddingClient

EXCERPT_SEPARATOR = "\n\n---\n\n"


def expand_parents(chunks: list[RankedChunk]) -> list[str]:
    """Excerpt texts for *chunks*, best-first.

    Child hits are replaced by their parent's text; a parent already emitted
    is not repeated. Other chunks are returned as stored.
    """
    excerpts: list[str] = []
    seen_parents: set[tuple[str, str]] = set()
    for chunk in chunks:
        meta = parse_chunk_metadata(chunk.metadata)
        if isinstance(meta, ParentChildMetadata):
            key = (chunk.source_id, meta.parent_id)
            if key in seen_parents:
                continue
            seen_parents.add(key)
            excerpts.append(meta.parent_content)
        else:
            excerpts.append(chunk.content)
    return excerpts


def format_excerpts(excerpts: list[str]) -> str:
    return EXCERPT_SEPARATOR.join(
        f"[Source Content - Excerpt {i}]\n{text}" for i, text in enumerate(excerpts, start=1)
    )


def retrieve_source_context(
    conversation_id: str,
    query: str,
    repo: Repository,
    conversations: ConversationStore,
    embedder: EmbeddingClient,
    config: ContextKBConfig,
    target_message_id: str | None = None,
) -> str:
    """Return formatted excerpts relevant to *query*, or "" if none or on failure.

    Args:
        conversation_id: Conversation whose active sources are searched.
        query: Free-text query.
        repo: Vector-store repository.
        conversations: Conversation store.
        embedder: Embedding client for the query vector.
        config: Retrieval and embedding settings.
        target_message_id: Restrict the path to messages up to this one.
    """
    try:
        source_ids = get_active_sources_for_path(
            conversation_id, repo, conversations, target_message_id
        )
        if not source_ids:
            logger.info(f"No active sources for conversation {conversation_id}")
            return ""

        vector = embedder.get_embeddings(query, timeout_ms=config.embedding.timeout_ms)
        chunks = repo.search_knowledge_base(
            source_ids,
            vector,
            limit=config.retrieval.source_context_limit,
            min_score=config.retrieval.source_context_min_score,
        )
        logger.debug(f"{len(chunks)} chunks matched across {len(source_ids)} sources")
        if not chunks:
            return ""
        return format_excerpts(expand_parents(chunks))
    except Exception as exc:
        logger.error(f"Source context retrieval failed for {conversation_id}: {exc}")
        return ""
