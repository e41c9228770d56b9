"""Tests for the context assembler."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest

from contextkb.config import ContextCfg, ContextKBConfig
from contextkb.db.models import ConversationRef, FolderRef
from contextkb.ingest.registry import KnowledgeBaseService, KnowledgeSource
from contextkb.rag.assembler import (
    AssembledContext,
    build_context,
    build_rag_context,
    estimate_tokens,
    referenced_conversation_ids,
)

# Each is 40 characters, i.e. 10 estimated tokens.
_NOTES = [
    "Alpha notes about the lighthouse keeper.",
    "Beta notes about the harbour tides now..",
    "Gamma notes about the storm last winter.",
    "Delta notes about the supply boat route.",
]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


@pytest.fixture
def notes(store):
    store.create_conversation("Design notes", conversation_id="ref1")
    store.add_message("ref1", "system", "You are a helpful assistant.", timestamp=0)
    for i, text in enumerate(_NOTES, start=1):
        store.add_message("ref1", "user" if i % 2 else "assistant", text, timestamp=i)
    return "ref1"


@pytest.fixture
def main(store):
    store.create_conversation("Main", conversation_id="main")
    store.add_message("main", "user", "What about the lighthouse keeper?", timestamp=1)
    return "main"


def _config(token_limit: int = 50_000) -> ContextKBConfig:
    return ContextKBConfig(context=ContextCfg(token_limit=token_limit))


def _refs(*ids: str) -> list[ConversationRef]:
    return [ConversationRef(id=i) for i in ids]


# ------------------------------------------------------------------
# referenced_conversation_ids
# ------------------------------------------------------------------


def test_passed_references_used_when_no_active(store, main):
    assert referenced_conversation_ids(main, store, _refs("x", "y")) == ["x", "y"]


def test_active_references_take_precedence(store, main):
    store.set_active_references(main, _refs("active"), [])
    assert referenced_conversation_ids(main, store, _refs("passed")) == ["active"]


def test_folders_expand_and_unknown_skipped(store, main):
    store.create_folder("Research", folder_id="f1")
    store.add_conversation_to_folder("f1", "member1")
    store.add_conversation_to_folder("f1", "member2")
    ids = referenced_conversation_ids(
        main, store, _refs("x"), [FolderRef(id="f1"), FolderRef(id="nope")]
    )
    assert ids == ["x", "member1", "member2"]


# ------------------------------------------------------------------
# build_context
# ------------------------------------------------------------------


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_nothing_referenced(repo, store, embedder, main):
    ctx = build_context(main, repo, store, embedder, _config())
    assert ctx == AssembledContext()


def test_full_context_includes_every_message(repo, store, embedder, main, notes):
    ctx = build_context(main, repo, store, embedder, _config(), _refs(notes))

    assert ctx.strategy == "full"
    assert ctx.included_messages == 4
    assert ctx.estimated_tokens == 40
    assert ctx.text.startswith('\n### Context from: "Design notes"\n\n')
    assert f"**User**: {_NOTES[0]}\n\n" in ctx.text
    assert f"**Assistant**: {_NOTES[1]}\n\n" in ctx.text
    assert "helpful assistant" not in ctx.text
    assert embedder.calls == []


def test_missing_conversation_titled_untitled(repo, store, embedder, main):
    ctx = build_context(main, repo, store, embedder, _config(), _refs("ghost"))
    assert ctx.strategy == "full"
    assert '### Context from: "Untitled"' in ctx.text


def test_compressed_keeps_best_matches_within_budget(repo, store, embedder, main, notes):
    KnowledgeBaseService(repo, store, embedder).index_messages(notes)
    embedder.calls.clear()

    ctx = build_context(main, repo, store, embedder, _config(token_limit=25), _refs(notes))

    assert ctx.strategy == "compressed"
    assert ctx.estimated_tokens == 40
    assert ctx.included_messages == 2
    assert ctx.included_tokens == 20
    assert ctx.text.startswith('\n### Context from: "Design notes"\n\n')
    assert f"- {_NOTES[0]}\n\n" in ctx.text
    assert embedder.calls == ["What about the lighthouse keeper?"]


def test_truncated_when_nothing_embedded(repo, store, embedder, main, notes):
    ctx = build_context(main, repo, store, embedder, _config(token_limit=25), _refs(notes))

    assert ctx.strategy == "truncated"
    assert ctx.included_messages == 2
    assert f"**User**: {_NOTES[0]}" in ctx.text
    assert f"**Assistant**: {_NOTES[1]}" in ctx.text
    assert _NOTES[2] not in ctx.text
    assert embedder.calls == []


def test_truncated_without_user_message(repo, store, embedder, notes):
    store.create_conversation("Quiet", conversation_id="quiet")
    KnowledgeBaseService(repo, store, embedder).index_messages(notes)

    ctx = build_context("quiet", repo, store, embedder, _config(token_limit=25), _refs(notes))
    assert ctx.strategy == "truncated"


def test_failure_yields_empty_context(repo, store, embedder, main, notes):
    with patch.object(store, "get_messages", side_effect=RuntimeError("db closed")):
        ctx = build_context(main, repo, store, embedder, _config(), _refs(notes))
    assert ctx.strategy == "none"
    assert ctx.text == ""


# ------------------------------------------------------------------
# build_rag_context
# ------------------------------------------------------------------


def test_rag_context_groups_messages_and_sources(repo, store, embedder):
    store.create_conversation("Main", conversation_id="main")
    store.add_message(
        "main",
        "user",
        "see the keeper notes",
        timestamp=1,
        referenced_conversations=_refs("ref1"),
    )
    store.create_conversation("Keeper log", conversation_id="ref1")
    store.add_message("ref1", "user", "lighthouse keeper duties", timestamp=1)
    service = KnowledgeBaseService(repo, store, embedder)
    service.index_messages("ref1")
    service.add_source(
        "main", KnowledgeSource(type="text", content="lighthouse keeper duties", name="a")
    )

    text = build_rag_context("main", "lighthouse keeper duties", repo, store, embedder, _config())

    assert '### Context from: "Keeper log"' in text
    assert "- lighthouse keeper duties\n\n" in text
    assert "\n### Attached sources\n\n[Source Content - Excerpt 1]\nlighthouse keeper duties" in text


def test_rag_context_empty_on_failure(repo, store, embedder_factory, main):
    failing = embedder_factory(fail_on="query")
    assert build_rag_context(main, "query", repo, store, failing, _config()) == ""


def test_rag_context_empty_when_title_lookup_fails(repo, store, embedder):
    store.create_conversation("Main", conversation_id="main")
    store.add_message(
        "main", "user", "see notes", timestamp=1, referenced_conversations=_refs("ref1")
    )
    store.create_conversation("Keeper log", conversation_id="ref1")
    store.add_message("ref1", "user", "lighthouse keeper duties", timestamp=1)
    KnowledgeBaseService(repo, store, embedder).index_messages("ref1")

    with patch.object(
        store, "get_conversation", side_effect=sqlite3.OperationalError("disk I/O error")
    ) as lookup:
        text = build_rag_context("main", "lighthouse keeper duties", repo, store, embedder, _config())

    lookup.assert_called_once_with("ref1")
    assert text == ""
