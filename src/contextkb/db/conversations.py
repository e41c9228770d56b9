"""Conversation store: messages, edit versions, folders.

Conversations are owned by the host chat application; contextkb reads them to
resolve references and active paths. The writer methods exist so the host (and
the CLI importer) can populate the same database.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
import uuid
from dataclasses import asdict

from contextkb.db.models import (
    Conversation,
    ConversationRef,
    Folder,
    FolderRef,
    Message,
    MessagePage,
)


def filter_active_versions(messages: list[Message]) -> list[Message]:
    """Keep the highest ``version_number`` per version root, ordered by timestamp."""
    groups: dict[str, Message] = {}
    for msg in messages:
        current = groups.get(msg.root_id)
        if current is None or msg.version_number > current.version_number:
            groups[msg.root_id] = msg
    return sorted(groups.values(), key=lambda m: m.timestamp)


class ConversationStore:
    """Read/write access to conversations, messages and folders."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(
        self, title: str = "Untitled", conversation_id: str | None = None
    ) -> str:
        conversation_id = conversation_id or str(uuid.uuid4())
        with self._lock:
            self._conn.execute(
                "INSERT INTO conversations (id, title) VALUES (?, ?)",
                (conversation_id, title),
            )
            self._conn.commit()
        return conversation_id

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT id, title, active_referenced_conversations,
                       active_referenced_folders, created_at
                FROM conversations WHERE id = ?
                """,
                (conversation_id,),
            ).fetchone()
        if row is None:
            return None
        return Conversation(
            id=row["id"],
            title=row["title"],
            active_referenced_conversations=_load_conversation_refs(
                row["active_referenced_conversations"]
            ),
            active_referenced_folders=_load_folder_refs(row["active_referenced_folders"]),
            created_at=row["created_at"],
        )

    def set_active_references(
        self,
        conversation_id: str,
        conversations: list[ConversationRef] | None = None,
        folders: list[FolderRef] | None = None,
    ) -> None:
        """Persist conversation-level references that apply to every turn."""
        with self._lock:
            self._conn.execute(
                """
                UPDATE conversations
                SET active_referenced_conversations = ?, active_referenced_folders = ?
                WHERE id = ?
                """,
                (
                    json.dumps([asdict(r) for r in conversations or []]),
                    json.dumps([asdict(r) for r in folders or []]),
                    conversation_id,
                ),
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        message_id: str | None = None,
        timestamp: int | None = None,
        referenced_conversations: list[ConversationRef] | None = None,
        referenced_folders: list[FolderRef] | None = None,
    ) -> Message:
        msg = Message(
            id=message_id or str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            timestamp=timestamp if timestamp is not None else time.time_ns() // 1_000_000,
            referenced_conversations=list(referenced_conversations or []),
            referenced_folders=list(referenced_folders or []),
        )
        self._insert_message(msg)
        return msg

    def create_message_version(
        self,
        message_id: str,
        content: str,
        *,
        new_message_id: str | None = None,
        referenced_conversations: list[ConversationRef] | None = None,
        referenced_folders: list[FolderRef] | None = None,
    ) -> Message:
        """Store an edited version of *message_id*; it becomes the active version.

        Raises:
            KeyError: If *message_id* does not exist.
        """
        original = self.get_message(message_id)
        if original is None:
            raise KeyError(f"Message not found: {message_id}")
        versions = self.get_message_versions(original.root_id)
        msg = Message(
            id=new_message_id or str(uuid.uuid4()),
            conversation_id=original.conversation_id,
            role=original.role,
            content=content,
            timestamp=original.timestamp,
            version_of=original.root_id,
            version_number=max(v.version_number for v in versions) + 1,
            referenced_conversations=list(referenced_conversations or []),
            referenced_folders=list(referenced_folders or []),
        )
        self._insert_message(msg)
        return msg

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", (message_id,)
            ).fetchone()
        return _row_to_message(row) if row else None

    def get_all_messages(self, conversation_id: str) -> list[Message]:
        """Every stored message of the conversation, edited-away versions included."""
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ? ORDER BY timestamp, version_number
                """,
                (conversation_id,),
            ).fetchall()
        return [_row_to_message(r) for r in rows]

    def get_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> MessagePage:
        """Return the active path (one active version per version group).

        ``cursor`` is the opaque value of a previous page's ``next_cursor``.
        """
        path = filter_active_versions(self.get_all_messages(conversation_id))
        start = int(cursor) if cursor else 0
        if limit is None:
            return MessagePage(messages=path[start:])
        end = start + limit
        next_cursor = str(end) if end < len(path) else None
        return MessagePage(messages=path[start:end], next_cursor=next_cursor)

    def get_message_versions(self, root_id: str) -> list[Message]:
        """All versions sharing *root_id* (the root itself included), oldest first."""
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE id = ? OR version_of = ? ORDER BY version_number
                """,
                (root_id, root_id),
            ).fetchall()
        return [_row_to_message(r) for r in rows]

    def _insert_message(self, msg: Message) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO messages (
                    id, conversation_id, role, content, timestamp, version_of,
                    version_number, referenced_conversations, referenced_folders
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    msg.id,
                    msg.conversation_id,
                    msg.role,
                    msg.content,
                    msg.timestamp,
                    msg.version_of,
                    msg.version_number,
                    json.dumps([asdict(r) for r in msg.referenced_conversations]),
                    json.dumps([asdict(r) for r in msg.referenced_folders]),
                ),
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def create_folder(self, name: str, folder_id: str | None = None) -> str:
        folder_id = folder_id or str(uuid.uuid4())
        with self._lock:
            self._conn.execute(
                "INSERT INTO folders (id, name) VALUES (?, ?)", (folder_id, name)
            )
            self._conn.commit()
        return folder_id

    def add_conversation_to_folder(self, folder_id: str, conversation_id: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT OR IGNORE INTO folder_conversations (folder_id, conversation_id)
                VALUES (?, ?)
                """,
                (folder_id, conversation_id),
            )
            self._conn.commit()

    def get_folder(self, folder_id: str) -> Folder | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name FROM folders WHERE id = ?", (folder_id,)
            ).fetchone()
            if row is None:
                return None
            members = self._conn.execute(
                """
                SELECT conversation_id FROM folder_conversations
                WHERE folder_id = ? ORDER BY rowid
                """,
                (folder_id,),
            ).fetchall()
        return Folder(
            id=row["id"],
            name=row["name"],
            conversation_ids=[m["conversation_id"] for m in members],
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

_MESSAGE_COLUMNS = (
    "id, conversation_id, role, content, timestamp, version_of, version_number, "
    "referenced_conversations, referenced_folders"
)


def _load_conversation_refs(raw: str | None) -> list[ConversationRef]:
    return [
        ConversationRef(id=r["id"], title=r.get("title", ""))
        for r in json.loads(raw or "[]")
    ]


def _load_folder_refs(raw: str | None) -> list[FolderRef]:
    return [FolderRef(id=r["id"], name=r.get("name", "")) for r in json.loads(raw or "[]")]


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        timestamp=row["timestamp"],
        version_of=row["version_of"],
        version_number=row["version_number"],
        referenced_conversations=_load_conversation_refs(row["referenced_conversations"]),
        referenced_folders=_load_folder_refs(row["referenced_folders"]),
    )
