"""contextkb status command.

Shows the database location and knowledge base statistics: sources by type,
stored chunks, conversation links and embedded messages.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from contextkb.cli.session import console, load_cli_config, open_session, resolve_db_path
from contextkb.config import ContextKBConfig
from contextkb.db.repository import Repository


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database."),
    ] = None,
) -> None:
    """Show knowledge base statistics."""
    cfg = load_cli_config()
    db_path = resolve_db_path(db, cfg)

    _show_project_panel(db_path, cfg)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  contextkb init",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    session = open_session(db_path)
    try:
        _show_knowledge_panel(session.repo)
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_project_panel(db_path: Path, cfg: ContextKBConfig) -> None:
    db_info = f"{db_path}"
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        db_info = f"{db_path} ({size_mb:.1f} MB)"

    lines = [
        f"Database:   {db_info}",
        f"Embedding:  {cfg.embedding.model}",
        f"Budget:     {cfg.context.token_limit:,} tokens",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))


def _show_knowledge_panel(repo: Repository) -> None:
    sources = repo.list_sources()
    by_type = Counter(s.type for s in sources)

    lines = [
        f"Sources: [bold]{len(sources)}[/]  |  "
        f"Chunks: [bold]{repo.count_chunks():,}[/]  |  "
        f"Links: [bold]{repo.count_links()}[/]  |  "
        f"Embedded messages: [bold]{repo.count_message_embeddings():,}[/]"
    ]
    if not sources:
        lines.append("[dim]No sources ingested yet.[/]")
        console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Type", style="bold")
    table.add_column("Sources", justify="right")
    for source_type, count in sorted(by_type.items()):
        table.add_row(source_type, str(count))

    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))
    console.print(table)
