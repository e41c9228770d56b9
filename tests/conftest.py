"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import os
import threading

import pytest
from loguru import logger

# Keep litellm from fetching its model cost map over the network at import;
# an offline fetch failure can deadlock test collection.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from contextkb.db.connection import Database
from contextkb.db.conversations import ConversationStore
from contextkb.db.repository import Repository
from contextkb.db.schema import initialize

_DIMS = 16


class FakeEmbedder:
    """Deterministic bag-of-words embedder; identical texts get identical vectors.

    Every vector has a constant component so none is all zeros.
    """

    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: list[str] = []
        self.timeouts: list[int | None] = []
        self._fail_on = fail_on
        self._lock = threading.Lock()

    def get_embeddings(self, text: str, timeout_ms: int | None = None) -> list[float]:
        with self._lock:
            self.calls.append(text)
            self.timeouts.append(timeout_ms)
        if self._fail_on is not None and self._fail_on in text:
            raise RuntimeError(f"embedding failed for {text[:20]!r}")
        vector = [0.0] * _DIMS
        vector[0] = 1.0
        for word in text.lower().split():
            bucket = int(hashlib.sha256(word.encode()).hexdigest(), 16) % (_DIMS - 1) + 1
            vector[bucket] += 1.0
        return vector


@pytest.fixture(autouse=True)
def _reset_logging():
    """CLI runs install a stderr sink; drop it so it never outlives the test."""
    yield
    logger.remove()
    logger.disable("contextkb")


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".contextkb.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db) -> Repository:
    return Repository(tmp_db)


@pytest.fixture
def store(tmp_db) -> ConversationStore:
    return ConversationStore(tmp_db)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def embedder_factory():
    """Build FakeEmbedders with custom failure triggers."""
    return FakeEmbedder
