"""Shared CLI plumbing: config loading and database/store construction."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from contextkb.cli.errors import err_config, err_no_api_key, err_no_db
from contextkb.config import ConfigError, ContextKBConfig, load_config
from contextkb.db.connection import Database
from contextkb.db.conversations import ConversationStore
from contextkb.db.repository import Repository
from contextkb.db.schema import initialize
from contextkb.rag.llm_client import EmbeddingClient, provider_of, validate_api_key

console = Console()


@dataclass
class Session:
    conn: sqlite3.Connection
    repo: Repository
    conversations: ConversationStore

    def close(self) -> None:
        self.conn.close()


def load_cli_config() -> ContextKBConfig:
    """Load config or exit with an actionable message."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def resolve_db_path(db: Path | None, cfg: ContextKBConfig) -> Path:
    return db if db is not None else Path(cfg.database.path)


def open_session(db_path: Path, create: bool = False) -> Session:
    """Open the database at *db_path*; exit if missing unless *create*."""
    if not create and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return Session(conn=conn, repo=Repository(conn), conversations=ConversationStore(conn))


def make_embedder(cfg: ContextKBConfig) -> EmbeddingClient:
    """Build the embedding client, exiting if the provider key is missing."""
    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(cfg.embedding.model)))
        raise typer.Exit(1)
    return EmbeddingClient(
        model=cfg.embedding.model,
        max_input_chars=cfg.embedding.max_input_chars,
    )
