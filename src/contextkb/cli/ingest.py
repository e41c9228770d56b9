"""contextkb ingest — extract files and attach them to a conversation.

Each file is extracted by extension (PDF or text-like), split into upload
batches, and stored through the source registry exactly as a batched upload
would be: one source per file, chunks appended batch by batch, one link to
the conversation (scoped to --message when given).

Directories expand to their supported files (--recursive for subdirs).
"""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import SpinnerColumn, Progress, TextColumn

from contextkb.cli.errors import err_ingest_failed, err_no_paths, err_unsupported_file
from contextkb.cli.session import (
    console,
    load_cli_config,
    make_embedder,
    open_session,
    resolve_db_path,
)
from contextkb.ingest import SUPPORTED_EXTENSIONS
from contextkb.ingest.registry import KnowledgeBaseService

_MAX_DEPTH = 10


def ingest_cmd(
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="Files or directories to ingest."),
    ] = None,
    conversation: Annotated[
        str,
        typer.Option("--conversation", "-c", help="Conversation the sources belong to."),
    ] = "",
    message: Annotated[
        str | None,
        typer.Option("--message", "-m", help="Scope the sources to one message."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (created if missing)."),
    ] = None,
    recursive: Annotated[
        bool,
        typer.Option("--recursive", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
) -> None:
    """Ingest files into a conversation's knowledge base."""
    if not conversation:
        console.print("[red]Error:[/] --conversation is required.")
        raise typer.Exit(1)

    files = _expand_paths(paths or [], recursive=recursive, exclude=exclude or [])
    if not files:
        console.print(err_no_paths())
        raise typer.Exit(1)

    cfg = load_cli_config()
    embedder = make_embedder(cfg)
    session = open_session(resolve_db_path(db, cfg), create=True)
    failures = 0
    try:
        if session.conversations.get_conversation(conversation) is None:
            session.conversations.create_conversation(conversation_id=conversation)
            console.print(f"[dim]Created conversation {conversation}[/]")
        service = KnowledgeBaseService(session.repo, session.conversations, embedder, cfg)
        for path in files:
            if not _ingest_one(service, path, conversation, message):
                failures += 1
    finally:
        session.close()

    if failures:
        raise typer.Exit(1)


def _ingest_one(
    service: KnowledgeBaseService, path: Path, conversation: str, message: str | None
) -> bool:
    console.print(f"\n[bold]→ {path}[/]")
    if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        console.print(err_unsupported_file(str(path), sorted(SUPPORTED_EXTENSIONS)))
        return True

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    ) as prog:
        prog.add_task("Extracting and embedding…", total=None)
        try:
            source_id = service.ingest_file(conversation, path, message_id=message)
        except Exception as exc:
            console.print(err_ingest_failed(str(path), str(exc)))
            return False

    console.print(f"  [green]✓[/] Stored as source [bold]{source_id}[/]")
    return True


# ------------------------------------------------------------------
# Directory expansion
# ------------------------------------------------------------------


def _expand_paths(paths: list[Path], recursive: bool, exclude: list[str]) -> list[Path]:
    """Expand directories to supported files; keep explicit files as given."""
    result: list[Path] = []
    for path in paths:
        if path.is_dir():
            result.extend(_walk(path, recursive, exclude, depth=0))
        elif not _excluded(path, exclude):
            result.append(path)
    return result


def _walk(directory: Path, recursive: bool, exclude: list[str], depth: int) -> list[Path]:
    found: list[Path] = []
    for entry in sorted(directory.iterdir()):
        if _excluded(entry, exclude):
            continue
        if entry.is_dir():
            if recursive and depth < _MAX_DEPTH:
                found.extend(_walk(entry, recursive, exclude, depth + 1))
        elif entry.suffix.lower() in SUPPORTED_EXTENSIONS:
            found.append(entry)
    return found


def _excluded(path: Path, exclude: list[str]) -> bool:
    return any(fnmatch.fnmatch(path.name, pattern) for pattern in exclude)
