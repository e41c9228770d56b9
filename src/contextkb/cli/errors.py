"""User-facing CLI error messages.

Each message says what failed on its first line and what to do about it on
the next, formatted with rich markup for ``console.print``.
"""

from __future__ import annotations

from contextkb.rag.llm_client import api_key_env


def err_no_api_key(provider: str) -> str:
    """Provider key missing from the environment.

    Unknown providers get a ``<PROVIDER>_API_KEY`` guess.
    """
    env_var = api_key_env(provider) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}' embeddings.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".contextkb.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  contextkb init"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix contextkb.yaml or ~/.contextkb/config.yaml and retry."
    )


def err_no_paths() -> str:
    return (
        "[red]Error:[/] No files to ingest.\n"
        "  Usage:  contextkb ingest --conversation <id> <file> [<file> ...]"
    )


def err_unsupported_file(path: str, supported: list[str]) -> str:
    return (
        f"[yellow]Skipped:[/] no extractor for '{path}'.\n"
        f"  Supported: {', '.join(supported)}"
    )


def err_conversation_not_found(conversation_id: str) -> str:
    return (
        f"[red]Error:[/] Conversation '{conversation_id}' not found.\n"
        "  Import it first:  contextkb import <conversation.json>"
    )


def err_invalid_import(path: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Cannot import '{path}': {reason}\n"
        "  Expected a JSON object with 'id', 'title' and a 'messages' list."
    )


def err_ingest_failed(path: str, reason: str) -> str:
    """Extraction or embedding failed part-way; earlier chunks stay stored."""
    return (
        f"[red]✗ Ingest failed:[/] '{path}': {reason}\n"
        "  Chunks stored before the failure are kept; re-run to append the rest."
    )
