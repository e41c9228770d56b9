"""Knowledge base resolver: the transitive closure of conversation references.

A conversation's knowledge base is itself, its linked sources, and every
conversation it references directly, through a folder, or through another
referenced conversation. The walk is depth-first with a visited set so cyclic
references terminate.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from loguru import logger

from contextkb.db.conversations import ConversationStore
from contextkb.db.models import RankedChunk, RankedMessage
from contextkb.db.repository import Repository


@dataclass
class Resolution:
    """How each conversation in a knowledge base was reached."""

    direct_conversation: str
    referenced_conversations: list[str] = field(default_factory=list)
    referenced_folders: list[str] = field(default_factory=list)
    transitive_conversations: list[str] = field(default_factory=list)


@dataclass
class ResolvedKnowledgeBase:
    conversation_ids: list[str]
    source_ids: list[str]
    resolution: Resolution


@dataclass
class KnowledgeBaseHits:
    messages: list[RankedMessage] = field(default_factory=list)
    chunks: list[RankedChunk] = field(default_factory=list)


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


def resolve_knowledge_base(
    conversation_id: str,
    repo: Repository,
    conversations: ConversationStore,
    visited: set[str] | None = None,
) -> ResolvedKnowledgeBase:
    """Collect every conversation and source reachable from *conversation_id*.

    All stored messages are scanned for references, including versions that
    are no longer on the active path, so a conversation stays reachable once
    it has been referenced.

    Args:
        conversation_id: Starting conversation.
        repo: Repository holding source links.
        conversations: Conversation store holding messages and folders.
        visited: Conversations already walked by the caller; they contribute
            nothing. Updated in place.

    Returns:
        ResolvedKnowledgeBase with ids in discovery order.
    """
    visited = visited if visited is not None else set()
    resolution = Resolution(direct_conversation=conversation_id)
    conversation_ids: list[str] = []
    source_ids: list[str] = []

    # (conversation id, reached from the start conversation's own messages)
    stack: list[tuple[str, bool]] = [(conversation_id, False)]
    while stack:
        current, direct = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        conversation_ids.append(current)
        if current != conversation_id and not direct:
            _append_unique(resolution.transitive_conversations, current)

        for link in repo.get_sources_for_conversation(current):
            _append_unique(source_ids, link.source_id)

        ref_ids: list[str] = []
        folder_ids: list[str] = []
        for msg in conversations.get_all_messages(current):
            for ref in msg.referenced_conversations:
                _append_unique(ref_ids, ref.id)
            for folder_ref in msg.referenced_folders:
                _append_unique(folder_ids, folder_ref.id)

        at_start = current == conversation_id
        if at_start:
            resolution.referenced_conversations.extend(ref_ids)
            resolution.referenced_folders.extend(folder_ids)

        # Referenced conversations are walked before folder members.
        discovered: list[tuple[str, bool]] = [(ref_id, at_start) for ref_id in ref_ids]
        for folder_id in folder_ids:
            try:
                folder = conversations.get_folder(folder_id)
            except Exception as exc:
                logger.warning(f"Skipping folder {folder_id}: {exc}")
                continue
            if folder is None:
                logger.warning(f"Skipping unknown folder {folder_id}")
                continue
            discovered.extend((member, False) for member in folder.conversation_ids)

        # Reversed so the first discovered conversation is walked first.
        for item in reversed(discovered):
            if item[0] not in visited:
                stack.append(item)

    logger.debug(
        f"Resolved {conversation_id}: {len(conversation_ids)} conversations, "
        f"{len(source_ids)} sources"
    )
    return ResolvedKnowledgeBase(
        conversation_ids=conversation_ids,
        source_ids=source_ids,
        resolution=resolution,
    )


def search_resolved_knowledge_base(
    kb: ResolvedKnowledgeBase,
    query_vector: list[float],
    repo: Repository,
    message_limit: int = 15,
    source_limit: int = 10,
    min_score: float = 0.25,
) -> KnowledgeBaseHits:
    """Search the knowledge base's messages and source chunks in parallel.

    Empty scopes are skipped. Results come back exactly as the store ranked them.
    """
    with ThreadPoolExecutor(max_workers=2) as pool:
        messages_future = (
            pool.submit(
                repo.search_multiple_conversations,
                kb.conversation_ids,
                query_vector,
                message_limit,
                min_score,
            )
            if kb.conversation_ids
            else None
        )
        chunks_future = (
            pool.submit(
                repo.search_knowledge_base,
                kb.source_ids,
                query_vector,
                source_limit,
                min_score,
            )
            if kb.source_ids
            else None
        )
        return KnowledgeBaseHits(
            messages=messages_future.result() if messages_future else [],
            chunks=chunks_future.result() if chunks_future else [],
        )
