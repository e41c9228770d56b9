"""Active-path source filter.

A source linked to a specific message is visible only while that message's
version group is part of the current conversation path. Editing a message keeps
sources attached to any of its versions visible; abandoning a branch hides them.
Conversation-wide links (no message) are always active.
"""

from __future__ import annotations

from loguru import logger

from contextkb.db.conversations import ConversationStore
from contextkb.db.models import Message
from contextkb.db.repository import Repository


def current_path(
    conversation_id: str,
    conversations: ConversationStore,
    target_message_id: str | None = None,
) -> list[Message]:
    """Active path of *conversation_id*, truncated after *target_message_id* if it is on it."""
    path = conversations.get_messages(conversation_id).messages
    if target_message_id is None:
        return path
    for position, msg in enumerate(path):
        if msg.id == target_message_id:
            return path[: position + 1]
    return path


def expand_version_ids(messages: list[Message], conversations: ConversationStore) -> set[str]:
    """Ids of *messages* plus every version sharing a root with an edited one."""
    ids: set[str] = set()
    for msg in messages:
        ids.add(msg.id)
        if not msg.is_version:
            continue
        try:
            versions = conversations.get_message_versions(msg.root_id)
        except Exception as exc:
            logger.warning(f"Could not load versions of message {msg.id}: {exc}")
            continue
        ids.update(v.id for v in versions)
    return ids


def get_active_sources_for_path(
    conversation_id: str,
    repo: Repository,
    conversations: ConversationStore,
    target_message_id: str | None = None,
) -> list[str]:
    """Return ids of sources whose links are active on the current path.

    Args:
        conversation_id: Conversation whose links are filtered.
        repo: Repository holding the source links.
        conversations: Conversation store holding the messages.
        target_message_id: If on the path, messages after it are ignored.

    Returns:
        Deduplicated source ids in link order.
    """
    path = current_path(conversation_id, conversations, target_message_id)
    active_ids = expand_version_ids(path, conversations)

    source_ids: list[str] = []
    seen: set[str] = set()
    for link in repo.get_sources_for_conversation(conversation_id):
        if link.message_id is not None and link.message_id not in active_ids:
            continue
        if link.source_id not in seen:
            seen.add(link.source_id)
            source_ids.append(link.source_id)

    logger.debug(
        f"{len(source_ids)} active sources for conversation {conversation_id} "
        f"({len(path)} messages on path)"
    )
    return source_ids
