"""contextkb import — load a conversation export (JSON) into the database.

Expected shape::

    {
      "id": "conv-1",
      "title": "Design review",
      "active_referenced_conversations": [{"id": "conv-0", "title": "..."}],
      "active_referenced_folders": [{"id": "f-1", "name": "..."}],
      "messages": [
        {"id": "m1", "role": "user", "content": "...", "timestamp": 1700000000000,
         "referenced_conversations": [...], "referenced_folders": [...]},
        {"id": "m1-v2", "version_of": "m1", "content": "edited ..."}
      ],
      "folders": [{"id": "f-1", "name": "Research", "conversation_ids": ["conv-1"]}]
    }

Messages with ``version_of`` are stored as edits of that message. With
--index, active-path messages are embedded for retrieval afterwards.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Annotated, Any

import typer

from contextkb.cli.errors import err_invalid_import
from contextkb.cli.session import (
    console,
    load_cli_config,
    make_embedder,
    open_session,
    resolve_db_path,
)
from contextkb.db.conversations import ConversationStore
from contextkb.db.models import ConversationRef, FolderRef
from contextkb.ingest.registry import KnowledgeBaseService


class ConversationImportError(ValueError):
    """The export file does not have the expected shape."""


def import_cmd(
    file: Annotated[Path, typer.Argument(help="Conversation export (JSON).")],
    index: Annotated[
        bool,
        typer.Option("--index", help="Embed the imported messages for retrieval."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (created if missing)."),
    ] = None,
) -> None:
    """Import a conversation, its message versions and folders from FILE."""
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(err_invalid_import(str(file), str(exc)))
        raise typer.Exit(1)

    cfg = load_cli_config()
    embedder = make_embedder(cfg) if index else None
    session = open_session(resolve_db_path(db, cfg), create=True)
    try:
        try:
            conversation_id, count = import_conversation(data, session.conversations)
        except (ConversationImportError, KeyError) as exc:
            console.print(err_invalid_import(str(file), str(exc)))
            raise typer.Exit(1)
        console.print(f"[green]✓[/] Imported {count} messages into [bold]{conversation_id}[/]")

        if embedder is not None:
            service = KnowledgeBaseService(session.repo, session.conversations, embedder, cfg)
            indexed = service.index_messages(conversation_id)
            console.print(f"[green]✓[/] Embedded {indexed} messages")
    finally:
        session.close()


def import_conversation(data: Any, conversations: ConversationStore) -> tuple[str, int]:
    """Store the conversation described by *data*. Returns ``(id, messages stored)``.

    Raises:
        ConversationImportError: If required fields are missing or malformed.
        KeyError: If a version refers to a message that was never stored.
    """
    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        raise ConversationImportError("missing 'messages' list")
    conversation_id = data.get("id")
    if not conversation_id:
        raise ConversationImportError("missing conversation 'id'")

    if conversations.get_conversation(conversation_id) is None:
        conversations.create_conversation(
            data.get("title") or "Untitled", conversation_id=conversation_id
        )
    conversations.set_active_references(
        conversation_id,
        _conversation_refs(data.get("active_referenced_conversations")),
        _folder_refs(data.get("active_referenced_folders")),
    )

    # Messages without a timestamp keep their file order.
    base_ts = time.time_ns() // 1_000_000
    count = 0
    for raw in data["messages"]:
        if not isinstance(raw, dict) or "content" not in raw:
            raise ConversationImportError(f"message without content: {raw!r}")
        refs = _conversation_refs(raw.get("referenced_conversations"))
        folders = _folder_refs(raw.get("referenced_folders"))
        if raw.get("version_of"):
            conversations.create_message_version(
                raw["version_of"],
                raw["content"],
                new_message_id=raw.get("id"),
                referenced_conversations=refs,
                referenced_folders=folders,
            )
        else:
            conversations.add_message(
                conversation_id,
                raw.get("role", "user"),
                raw["content"],
                message_id=raw.get("id"),
                timestamp=raw.get("timestamp", base_ts + count),
                referenced_conversations=refs,
                referenced_folders=folders,
            )
        count += 1

    for folder in data.get("folders") or []:
        folder_id = folder.get("id")
        if not folder_id:
            raise ConversationImportError("folder without 'id'")
        if conversations.get_folder(folder_id) is None:
            conversations.create_folder(folder.get("name") or folder_id, folder_id=folder_id)
        for member in folder.get("conversation_ids") or []:
            conversations.add_conversation_to_folder(folder_id, member)

    return conversation_id, count


def _conversation_refs(raw: Any) -> list[ConversationRef]:
    return [ConversationRef(id=r["id"], title=r.get("title", "")) for r in raw or []]


def _folder_refs(raw: Any) -> list[FolderRef]:
    return [FolderRef(id=r["id"], name=r.get("name", "")) for r in raw or []]
