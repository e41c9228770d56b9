"""Base extractor interface for all contextkb document types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from contextkb.db.models import ChunkMetadata, metadata_to_dict
from contextkb.ingest.chunking import chunk_text


@dataclass
class ProcessedChunk:
    """Extracted text ready for embedding, with provenance metadata."""

    content: str
    metadata: ChunkMetadata = field(default_factory=dict)

    def metadata_dict(self) -> dict[str, Any]:
        return metadata_to_dict(self.metadata)


class BaseExtractor(ABC):
    """Abstract base for all extractors.

    Subclasses implement ``extract()`` and may use ``_split()`` for the
    fixed-size fallback path.
    """

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @abstractmethod
    def extract(self, path: str | Path) -> list[ProcessedChunk]:
        """Read *path* and return its chunks in document order.

        Args:
            path: Local file path.

        Returns:
            Ordered list of ProcessedChunk objects (may be empty).
        """

    def _split(self, text: str) -> list[str]:
        """Chunk *text* with this extractor's size and overlap; blank input → []."""
        if not text.strip():
            return []
        return chunk_text(text, chunk_size=self.chunk_size, overlap=self.overlap)


def batch_chunks(chunks: list[ProcessedChunk], max_chars: int) -> list[list[ProcessedChunk]]:
    """Group *chunks* into ingestion batches of at most *max_chars* content each.

    A single chunk larger than *max_chars* gets a batch of its own.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be >= 1")
    batches: list[list[ProcessedChunk]] = []
    current: list[ProcessedChunk] = []
    size = 0
    for chunk in chunks:
        if current and size + len(chunk.content) > max_chars:
            batches.append(current)
            current, size = [], 0
        current.append(chunk)
        size += len(chunk.content)
    if current:
        batches.append(current)
    return batches
