"""Tests for contextkb status and version commands."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from contextkb.cli.main import app
from contextkb.db.connection import Database
from contextkb.db.models import Chunk
from contextkb.db.repository import Repository
from contextkb.db.schema import initialize

runner = CliRunner()


def _seed(db_path: Path) -> None:
    conn = Database(db_path).connect()
    initialize(conn)
    repo = Repository(conn)
    pdf = repo.create_source("h1", "pdf", "manual.pdf")
    repo.create_source("h2", "text", "notes.txt")
    repo.create_source("h3", "text", "more.txt")
    repo.add_knowledge_chunk(Chunk(source_id=pdf, chunk_index=0, content="x", vector=[1.0, 0.0]))
    repo.link_source_to_conversation("c1", pdf)
    repo.add_message_embedding("m1", "c1", "hello", [1.0, 0.0])
    conn.close()


def test_status_without_database(tmp_path: Path) -> None:
    result = runner.invoke(app, ["status", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 0
    assert "No database found" in result.output
    assert "Embedding:" in result.output


def test_status_empty_database(tmp_path: Path) -> None:
    db_path = tmp_path / ".contextkb.db"
    conn = Database(db_path).connect()
    initialize(conn)
    conn.close()

    result = runner.invoke(app, ["status", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "No sources ingested yet" in result.output


def test_status_counts(tmp_path: Path) -> None:
    db_path = tmp_path / ".contextkb.db"
    _seed(db_path)

    result = runner.invoke(app, ["status", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "Sources: 3" in result.output
    assert "Chunks: 1" in result.output
    assert "Links: 1" in result.output
    assert "Embedded messages: 1" in result.output
    assert "pdf" in result.output


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("contextkb ")


def test_version_option() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "contextkb" in result.output
