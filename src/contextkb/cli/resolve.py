"""contextkb resolve — show the knowledge base a conversation can reach."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from contextkb.cli.errors import err_conversation_not_found
from contextkb.cli.session import console, load_cli_config, open_session, resolve_db_path
from contextkb.rag.active_path import get_active_sources_for_path
from contextkb.rag.resolver import resolve_knowledge_base


def resolve_cmd(
    conversation: Annotated[str, typer.Argument(help="Conversation id.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database."),
    ] = None,
) -> None:
    """List the conversations and sources in CONVERSATION's knowledge base."""
    cfg = load_cli_config()
    session = open_session(resolve_db_path(db, cfg))
    try:
        if session.conversations.get_conversation(conversation) is None:
            console.print(err_conversation_not_found(conversation))
            raise typer.Exit(1)

        kb = resolve_knowledge_base(conversation, session.repo, session.conversations)
        active = set(get_active_sources_for_path(conversation, session.repo, session.conversations))

        res = kb.resolution
        lines = [
            f"Conversation:  [bold]{res.direct_conversation}[/]",
            f"Referenced:    {', '.join(res.referenced_conversations) or '[dim](none)[/]'}",
            f"Folders:       {', '.join(res.referenced_folders) or '[dim](none)[/]'}",
            f"Transitive:    {', '.join(res.transitive_conversations) or '[dim](none)[/]'}",
        ]
        console.print(Panel("\n".join(lines), title="[bold]Resolution[/]", expand=False))

        table = Table(title="Conversations", show_header=True)
        table.add_column("Id")
        table.add_column("Title")
        table.add_column("Embedded", justify="right")
        for conversation_id in kb.conversation_ids:
            conv = session.conversations.get_conversation(conversation_id)
            table.add_row(
                conversation_id,
                conv.title if conv else "[dim](unknown)[/]",
                str(session.repo.count_message_embeddings([conversation_id])),
            )
        console.print(table)

        sources = Table(title="Sources", show_header=True)
        sources.add_column("Id")
        sources.add_column("Name")
        sources.add_column("Type")
        sources.add_column("Chunks", justify="right")
        sources.add_column("Active", justify="center")
        for source_id in kb.source_ids:
            source = session.repo.get_source(source_id)
            sources.add_row(
                source_id,
                source.name if source else "[dim](missing)[/]",
                source.type if source else "",
                str(session.repo.count_chunks(source_id)),
                "[green]✓[/]" if source_id in active else "[dim]–[/]",
            )
        console.print(sources)
    finally:
        session.close()
