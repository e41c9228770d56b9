"""Tests for knowledge base resolution and the parallel knowledge base search."""

from __future__ import annotations

from unittest.mock import patch

from contextkb.db.models import Chunk, ConversationRef, FolderRef
from contextkb.rag.resolver import (
    Resolution,
    ResolvedKnowledgeBase,
    resolve_knowledge_base,
    search_resolved_knowledge_base,
)


def _conversation(store, cid: str, *, refs=(), folders=(), ts: int = 1) -> None:
    store.create_conversation(cid.upper(), conversation_id=cid)
    store.add_message(
        cid,
        "user",
        f"message in {cid}",
        message_id=f"{cid}-m1",
        timestamp=ts,
        referenced_conversations=[ConversationRef(id=r) for r in refs],
        referenced_folders=[FolderRef(id=f) for f in folders],
    )


# ------------------------------------------------------------------
# resolve_knowledge_base
# ------------------------------------------------------------------


def test_lone_conversation_resolves_to_itself(repo, store):
    _conversation(store, "a")
    source = repo.create_source("h-a", "text", "a.txt")
    repo.link_source_to_conversation("a", source)

    kb = resolve_knowledge_base("a", repo, store)
    assert kb.conversation_ids == ["a"]
    assert kb.source_ids == [source]
    assert kb.resolution == Resolution(direct_conversation="a")


def test_cycle_terminates_and_collects_transitive(repo, store):
    _conversation(store, "a", refs=["b"])
    _conversation(store, "b", refs=["a", "c"])
    _conversation(store, "c")
    s_a = repo.create_source("h-a", "text", "a.txt")
    s_c = repo.create_source("h-c", "text", "c.txt")
    repo.link_source_to_conversation("a", s_a)
    repo.link_source_to_conversation("c", s_c)

    kb = resolve_knowledge_base("a", repo, store)
    assert kb.conversation_ids == ["a", "b", "c"]
    assert kb.source_ids == [s_a, s_c]
    assert kb.resolution.referenced_conversations == ["b"]
    assert kb.resolution.transitive_conversations == ["c"]


def test_shared_source_listed_once(repo, store):
    _conversation(store, "a", refs=["b"])
    _conversation(store, "b")
    shared = repo.create_source("h-shared", "text", "shared.txt")
    repo.link_source_to_conversation("a", shared)
    repo.link_source_to_conversation("b", shared)

    assert resolve_knowledge_base("a", repo, store).source_ids == [shared]


def test_folders_expand_after_direct_refs(repo, store):
    _conversation(store, "a", refs=["b"], folders=["f1", "missing"])
    _conversation(store, "b")
    _conversation(store, "d")
    _conversation(store, "e")
    store.create_folder("Research", folder_id="f1")
    store.add_conversation_to_folder("f1", "d")
    store.add_conversation_to_folder("f1", "e")
    store.add_conversation_to_folder("f1", "a")

    kb = resolve_knowledge_base("a", repo, store)
    assert kb.conversation_ids == ["a", "b", "d", "e"]
    assert kb.resolution.referenced_folders == ["f1", "missing"]
    assert kb.resolution.transitive_conversations == ["d", "e"]


def test_failing_folder_is_skipped(repo, store):
    _conversation(store, "a", refs=["b"], folders=["broken"])
    _conversation(store, "b")
    real_get_folder = store.get_folder

    def _get_folder(folder_id):
        if folder_id == "broken":
            raise RuntimeError("folder table locked")
        return real_get_folder(folder_id)

    with patch.object(store, "get_folder", side_effect=_get_folder):
        kb = resolve_knowledge_base("a", repo, store)
    assert kb.conversation_ids == ["a", "b"]


def test_references_on_edited_away_versions_still_resolve(repo, store):
    _conversation(store, "a", refs=["b"])
    _conversation(store, "b")
    store.create_message_version("a-m1", "edited, no references")

    kb = resolve_knowledge_base("a", repo, store)
    assert kb.conversation_ids == ["a", "b"]


def test_visited_start_yields_empty(repo, store):
    _conversation(store, "a", refs=["b"])
    _conversation(store, "b")

    kb = resolve_knowledge_base("a", repo, store, visited={"a"})
    assert kb.conversation_ids == []
    assert kb.source_ids == []


def test_visited_is_updated_in_place(repo, store):
    _conversation(store, "a", refs=["b"])
    _conversation(store, "b")
    visited: set[str] = set()
    resolve_knowledge_base("a", repo, store, visited=visited)
    assert visited == {"a", "b"}


def test_unknown_conversation_reference_is_harmless(repo, store):
    _conversation(store, "a", refs=["deleted"])
    kb = resolve_knowledge_base("a", repo, store)
    assert kb.conversation_ids == ["a", "deleted"]
    assert kb.source_ids == []


# ------------------------------------------------------------------
# search_resolved_knowledge_base
# ------------------------------------------------------------------


def test_search_returns_messages_and_chunks(repo, store, embedder):
    _conversation(store, "a", refs=["b"])
    _conversation(store, "b")
    repo.add_message_embedding(
        "a-m1", "a", "vector search in sqlite", embedder.get_embeddings("vector search in sqlite")
    )
    repo.add_message_embedding(
        "b-m1", "b", "gardening tips", embedder.get_embeddings("gardening tips")
    )
    source = repo.create_source("h-a", "text", "a.txt")
    repo.link_source_to_conversation("a", source)
    repo.add_knowledge_chunk(
        Chunk(
            source_id=source,
            chunk_index=0,
            content="sqlite vector search extension",
            vector=embedder.get_embeddings("sqlite vector search extension"),
        )
    )

    kb = resolve_knowledge_base("a", repo, store)
    hits = search_resolved_knowledge_base(
        kb, embedder.get_embeddings("vector search in sqlite"), repo, min_score=0.0
    )

    assert hits.messages[0].message_id == "a-m1"
    assert hits.messages[0].score > hits.messages[-1].score
    assert {m.conversation_id for m in hits.messages} == {"a", "b"}
    assert [c.content for c in hits.chunks] == ["sqlite vector search extension"]


def test_search_respects_limits(repo, store, embedder):
    _conversation(store, "a")
    for i in range(5):
        text = f"note {i} about search"
        repo.add_message_embedding(f"m{i}", "a", text, embedder.get_embeddings(text))

    kb = ResolvedKnowledgeBase(["a"], [], Resolution(direct_conversation="a"))
    hits = search_resolved_knowledge_base(
        kb, embedder.get_embeddings("search"), repo, message_limit=2, min_score=0.0
    )
    assert len(hits.messages) == 2


def test_search_skips_empty_scopes(repo, embedder):
    kb = ResolvedKnowledgeBase([], [], Resolution(direct_conversation="a"))
    with (
        patch.object(repo, "search_multiple_conversations") as messages,
        patch.object(repo, "search_knowledge_base") as chunks,
    ):
        hits = search_resolved_knowledge_base(kb, embedder.get_embeddings("q"), repo)

    messages.assert_not_called()
    chunks.assert_not_called()
    assert hits.messages == []
    assert hits.chunks == []
