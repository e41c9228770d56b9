"""Tests for contextkb init command."""

from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from contextkb.cli.main import app
from contextkb.db.connection import Database
from contextkb.db.schema import CURRENT_VERSION

runner = CliRunner()


def _run_init(tmp_path: Path, *extra: str, input_str: str | None = None):
    global_cfg = tmp_path / "home" / "config.yaml"
    return runner.invoke(
        app,
        ["init", str(tmp_path), "--global-config", str(global_cfg), *extra],
        input=input_str,
    )


def test_init_creates_database(tmp_path: Path) -> None:
    result = _run_init(tmp_path)
    assert result.exit_code == 0, result.output

    db_path = tmp_path / ".contextkb.db"
    assert db_path.exists()
    conn = Database(db_path).connect()
    try:
        assert conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0] == CURRENT_VERSION
    finally:
        conn.close()


def test_init_creates_project_config(tmp_path: Path) -> None:
    _run_init(tmp_path)
    data = yaml.safe_load((tmp_path / "contextkb.yaml").read_text(encoding="utf-8"))
    assert data["embedding"]["model"] == "openai/text-embedding-3-small"
    assert data["context"]["token_limit"] == 50000


def test_init_keeps_existing_project_config(tmp_path: Path) -> None:
    (tmp_path / "contextkb.yaml").write_text("context:\n  token_limit: 10\n", encoding="utf-8")
    _run_init(tmp_path)
    assert "token_limit: 10" in (tmp_path / "contextkb.yaml").read_text(encoding="utf-8")


def test_init_creates_global_config(tmp_path: Path) -> None:
    _run_init(tmp_path)
    assert (tmp_path / "home" / "config.yaml").exists()


def test_init_updates_existing_gitignore(tmp_path: Path) -> None:
    (tmp_path / ".gitignore").write_text("node_modules\n.contextkb.db\n", encoding="utf-8")
    _run_init(tmp_path)

    lines = (tmp_path / ".gitignore").read_text(encoding="utf-8").splitlines()
    assert lines.count(".contextkb.db") == 1
    assert ".contextkb.db-wal" in lines
    assert ".contextkb.db-shm" in lines


def test_init_does_not_create_gitignore(tmp_path: Path) -> None:
    _run_init(tmp_path)
    assert not (tmp_path / ".gitignore").exists()


def test_reinit_asks_and_can_cancel(tmp_path: Path) -> None:
    _run_init(tmp_path)
    result = _run_init(tmp_path, input_str="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output


def test_reinit_with_yes_skips_prompt(tmp_path: Path) -> None:
    _run_init(tmp_path)
    result = _run_init(tmp_path, "--yes")
    assert result.exit_code == 0
    assert "initialized" in result.output
