"""contextkb init — create a knowledge base in a project directory.

Creates:
  .contextkb.db             — empty database with schema
  contextkb.yaml            — project config template (skipped if present)
  ~/.contextkb/config.yaml  — global defaults (created once, mode 0o600)

Appends the database and project config to an existing .gitignore.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from contextkb.cli.session import console
from contextkb.config import ensure_global_config
from contextkb.db.connection import Database
from contextkb.db.schema import initialize

_DB_NAME = ".contextkb.db"
_PROJECT_CONFIG_NAME = "contextkb.yaml"

_PROJECT_CONFIG_TEMPLATE = """\
# contextkb project configuration. Values here override ~/.contextkb/config.yaml.
# API keys belong in environment variables, never in this file.

embedding:
  model: openai/text-embedding-3-small
  timeout_ms: 10000

ingestion:
  chunk_size: 1000
  overlap: 200
  embed_concurrency: 5

retrieval:
  message_limit: 15
  source_limit: 10
  min_score: 0.25

context:
  token_limit: 50000

logging:
  level: WARNING
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Re-initialize without asking."),
    ] = False,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Initialize a contextkb database and config in PROJECT_DIR."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / _DB_NAME
    if db_path.exists() and not yes:
        console.print(f"[yellow]⚠[/]  {db_path} already exists.")
        if not typer.confirm("Re-initialize? Existing data is preserved.", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    console.print(f"\n[bold]Initializing contextkb in {project_dir} …[/]\n")
    _create_database(db_path)
    _create_project_config(project_dir)
    _update_gitignore(project_dir)

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ Knowledge base initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. contextkb import <conversation.json>             (load a conversation)")
    console.print("  2. contextkb ingest --conversation <id> <files>     (attach sources)")
    console.print("  3. contextkb context <id> --query '...'             (inspect context)")


def _create_database(db_path: Path) -> None:
    conn = Database(db_path).connect()
    initialize(conn)
    conn.close()
    console.print(f"  [green]✓[/] {db_path.name}")


def _create_project_config(project_dir: Path) -> None:
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists():
        console.print(f"  [dim]↷ {_PROJECT_CONFIG_NAME} exists — left unchanged[/]")
        return
    target.write_text(_PROJECT_CONFIG_TEMPLATE, encoding="utf-8")
    console.print(f"  [green]✓[/] {_PROJECT_CONFIG_NAME}")


def _update_gitignore(project_dir: Path) -> None:
    """Add contextkb entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [_DB_NAME, f"{_DB_NAME}-wal", f"{_DB_NAME}-shm"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8").splitlines()
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# contextkb\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with contextkb entries)")
