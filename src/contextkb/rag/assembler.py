"""Context assembler: referenced conversations rendered under a token budget.

Strategies, chosen by estimated size (1 token ≈ 4 characters):
  full        Every referenced message fits; include all, role-labelled.
  compressed  Too large; rank message embeddings against the last user
              message and greedily keep the best until the budget is reached.
  truncated   Too large and nothing is embedded; keep messages in
              conversation order until the budget is reached.
  none        Nothing referenced, or assembly failed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from loguru import logger

from contextkb.config import ContextKBConfig
from contextkb.db.conversations import ConversationStore
from contextkb.db.models import ConversationRef, FolderRef, Message
from contextkb.db.repository import Repository
from contextkb.rag.llm_client import EmbeddingClient
from contextkb.rag.resolver import (
    KnowledgeBaseHits,
    resolve_knowledge_base,
    search_resolved_knowledge_base,
)
from contextkb.rag.retriever import expand_parents, format_excerpts


@dataclass
class AssembledContext:
    text: str = ""
    strategy: str = "none"  # full | compressed | truncated | none
    estimated_tokens: int = 0
    included_tokens: int = 0
    included_messages: int = 0


@dataclass
class _ConversationMessages:
    conversation_id: str
    title: str
    messages: list[Message]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _header(title: str) -> str:
    return f'\n### Context from: "{title}"\n\n'


def _labelled(msg: Message) -> str:
    label = "User" if msg.role == "user" else "Assistant"
    return f"**{label}**: {msg.content}\n\n"


def referenced_conversation_ids(
    conversation_id: str,
    conversations: ConversationStore,
    referenced_conversations: list[ConversationRef] | None = None,
    referenced_folders: list[FolderRef] | None = None,
) -> list[str]:
    """Ids of the conversations whose messages form the context.

    The conversation's own active references take precedence over the ones
    passed in, per kind, when they are non-empty. Folders expand to their
    members; unknown folders are skipped.
    """
    refs = list(referenced_conversations or [])
    folders = list(referenced_folders or [])
    conversation = conversations.get_conversation(conversation_id)
    if conversation is not None:
        if conversation.active_referenced_conversations:
            refs = conversation.active_referenced_conversations
        if conversation.active_referenced_folders:
            folders = conversation.active_referenced_folders

    ids = [ref.id for ref in refs]
    for folder_ref in folders:
        folder = conversations.get_folder(folder_ref.id)
        if folder is None:
            logger.warning(f"Referenced folder {folder_ref.id} not found")
            continue
        ids.extend(folder.conversation_ids)
    return ids


def _load_messages(ids: list[str], conversations: ConversationStore) -> list[_ConversationMessages]:
    loaded = []
    for conversation_id in ids:
        conversation = conversations.get_conversation(conversation_id)
        messages = conversations.get_messages(conversation_id).messages
        loaded.append(
            _ConversationMessages(
                conversation_id=conversation_id,
                title=conversation.title if conversation else "Untitled",
                messages=[m for m in messages if m.role != "system"],
            )
        )
    return loaded


def _last_user_message(conversation_id: str, conversations: ConversationStore) -> Message | None:
    for msg in reversed(conversations.get_messages(conversation_id).messages):
        if msg.role == "user" and msg.content.strip():
            return msg
    return None


def build_context(
    conversation_id: str,
    repo: Repository,
    conversations: ConversationStore,
    embedder: EmbeddingClient,
    config: ContextKBConfig,
    referenced_conversations: list[ConversationRef] | None = None,
    referenced_folders: list[FolderRef] | None = None,
) -> AssembledContext:
    """Assemble context from the conversations referenced by *conversation_id*.

    Args:
        conversation_id: Conversation the context is being built for.
        repo: Repository holding message embeddings.
        conversations: Conversation store.
        embedder: Embedding client, used only when compressing.
        config: Token budget and compression settings.
        referenced_conversations: References sent with the current message.
        referenced_folders: Folder references sent with the current message.

    Returns:
        AssembledContext. Failures are logged and produce an empty context.
    """
    try:
        ids = referenced_conversation_ids(
            conversation_id, conversations, referenced_conversations, referenced_folders
        )
        if not ids:
            logger.debug(f"No context references for {conversation_id}")
            return AssembledContext()

        loaded = _load_messages(ids, conversations)
        total_chars = sum(len(m.content) for c in loaded for m in c.messages)
        estimated = math.ceil(total_chars / 4)
        limit = config.context.token_limit
        logger.debug(f"Context for {conversation_id}: ~{estimated} tokens from {len(ids)} conversations")

        if estimated < limit:
            return _full(loaded, estimated)

        logger.info(f"Context too large ({estimated} tokens); compressing")
        query = _last_user_message(conversation_id, conversations)
        if query is None or repo.count_message_embeddings(ids) == 0:
            logger.warning("No embeddings available for compression; truncating")
            return _truncated(loaded, estimated, limit)
        return _compressed(loaded, query, ids, estimated, repo, embedder, config)
    except Exception as exc:
        logger.error(f"Context assembly failed for {conversation_id}: {exc}")
        return AssembledContext()


def _full(loaded: list[_ConversationMessages], estimated: int) -> AssembledContext:
    text = ""
    count = 0
    for group in loaded:
        text += _header(group.title)
        for msg in group.messages:
            text += _labelled(msg)
            count += 1
    return AssembledContext(
        text=text,
        strategy="full",
        estimated_tokens=estimated,
        included_tokens=estimated,
        included_messages=count,
    )


def _compressed(
    loaded: list[_ConversationMessages],
    query: Message,
    ids: list[str],
    estimated: int,
    repo: Repository,
    embedder: EmbeddingClient,
    config: ContextKBConfig,
) -> AssembledContext:
    vector = embedder.get_embeddings(query.content, timeout_ms=config.embedding.timeout_ms)
    ranked = repo.search_multiple_conversations(
        ids,
        vector,
        limit=config.context.compression_limit,
        min_score=config.context.compression_min_score,
    )
    titles = {group.conversation_id: group.title for group in loaded}

    current = 0
    grouped: dict[str, list[str]] = {}
    count = 0
    for hit in ranked:
        tokens = estimate_tokens(hit.content)
        if current + tokens >= config.context.token_limit:
            break
        grouped.setdefault(titles.get(hit.conversation_id, "Unknown"), []).append(hit.content)
        current += tokens
        count += 1

    text = ""
    for title, excerpts in grouped.items():
        text += _header(title)
        for excerpt in excerpts:
            text += f"- {excerpt}\n\n"
    logger.info(f"Compressed context to {current} tokens ({count} messages)")
    return AssembledContext(
        text=text,
        strategy="compressed",
        estimated_tokens=estimated,
        included_tokens=current,
        included_messages=count,
    )


def _truncated(loaded: list[_ConversationMessages], estimated: int, limit: int) -> AssembledContext:
    text = ""
    current = 0
    count = 0
    for group in loaded:
        text += _header(group.title)
        for msg in group.messages:
            tokens = estimate_tokens(msg.content)
            if current + tokens >= limit:
                break
            text += _labelled(msg)
            current += tokens
            count += 1
        if current >= limit:
            break
    return AssembledContext(
        text=text,
        strategy="truncated",
        estimated_tokens=estimated,
        included_tokens=current,
        included_messages=count,
    )


def build_rag_context(
    conversation_id: str,
    query: str,
    repo: Repository,
    conversations: ConversationStore,
    embedder: EmbeddingClient,
    config: ContextKBConfig,
) -> str:
    """Retrieval-only context over the conversation's whole knowledge base.

    Matching messages are grouped under their conversation's title; matching
    source chunks follow as numbered excerpts. Best-effort: "" on failure.
    """
    try:
        kb = resolve_knowledge_base(conversation_id, repo, conversations)
        vector = embedder.get_embeddings(query, timeout_ms=config.embedding.timeout_ms)
        hits = search_resolved_knowledge_base(
            kb,
            vector,
            repo,
            message_limit=config.retrieval.message_limit,
            source_limit=config.retrieval.source_limit,
            min_score=config.retrieval.rag_min_score,
        )
        return _format_hits(hits, conversations)
    except Exception as exc:
        logger.error(f"Knowledge base retrieval failed for {conversation_id}: {exc}")
        return ""


def _format_hits(hits: KnowledgeBaseHits, conversations: ConversationStore) -> str:
    titles: dict[str, str] = {}
    grouped: dict[str, list[str]] = {}
    for hit in hits.messages:
        if hit.conversation_id not in titles:
            conversation = conversations.get_conversation(hit.conversation_id)
            titles[hit.conversation_id] = conversation.title if conversation else "Unknown Conversation"
        grouped.setdefault(titles[hit.conversation_id], []).append(hit.content)

    text = ""
    for title, snippets in grouped.items():
        text += _header(title)
        for snippet in snippets:
            text += f"- {snippet}\n\n"
    if hits.chunks:
        text += "\n### Attached sources\n\n" + format_excerpts(expand_parents(hits.chunks)) + "\n"
    return text
