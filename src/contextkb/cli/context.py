"""contextkb context — print the context assembled for a conversation.

Without --query: the referenced-conversation context (full, compressed or
truncated to the token budget). With --query: additionally the excerpts from
sources active on the conversation path and, with --rag, the retrieval pass
over the whole resolved knowledge base.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.text import Text

from contextkb.cli.errors import err_conversation_not_found
from contextkb.cli.session import (
    console,
    load_cli_config,
    make_embedder,
    open_session,
    resolve_db_path,
)
from contextkb.ingest.registry import KnowledgeBaseService
from contextkb.rag.assembler import build_context, build_rag_context


def context_cmd(
    conversation: Annotated[str, typer.Argument(help="Conversation id.")],
    query: Annotated[
        str | None,
        typer.Option("--query", "-q", help="Query for source excerpts."),
    ] = None,
    message: Annotated[
        str | None,
        typer.Option("--message", "-m", help="Only consider the path up to this message."),
    ] = None,
    rag: Annotated[
        bool,
        typer.Option("--rag", help="Also search the whole resolved knowledge base."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database."),
    ] = None,
) -> None:
    """Print the context that would accompany the next turn of CONVERSATION."""
    cfg = load_cli_config()
    embedder = make_embedder(cfg)
    session = open_session(resolve_db_path(db, cfg))
    try:
        if session.conversations.get_conversation(conversation) is None:
            console.print(err_conversation_not_found(conversation))
            raise typer.Exit(1)

        assembled = build_context(
            conversation, session.repo, session.conversations, embedder, cfg
        )
        console.print(
            Panel(
                _body(assembled.text, "no referenced conversations"),
                title=(
                    f"[bold]Referenced context[/] [dim]({assembled.strategy}, "
                    f"{assembled.included_tokens:,}/{assembled.estimated_tokens:,} tokens, "
                    f"{assembled.included_messages} messages)[/]"
                ),
            )
        )

        if query:
            service = KnowledgeBaseService(session.repo, session.conversations, embedder, cfg)
            excerpts = service.get_context(conversation, query, target_message_id=message)
            console.print(
                Panel(
                    _body(excerpts, "no matching source excerpts"),
                    title="[bold]Source excerpts[/]",
                )
            )
            if rag:
                retrieved = build_rag_context(
                    conversation, query, session.repo, session.conversations, embedder, cfg
                )
                console.print(
                    Panel(
                        _body(retrieved, "no knowledge base matches"),
                        title="[bold]Knowledge base matches[/]",
                    )
                )
    finally:
        session.close()


def _body(text: str, empty: str) -> Text | str:
    # Context text is printed literally; brackets in it are not rich markup.
    return Text(text.strip()) if text.strip() else f"[dim]({empty})[/]"
