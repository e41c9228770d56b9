"""Embedding writer — bounded-parallel embedding + append-only chunk storage.

For each sub-batch of ``concurrency`` chunks:
1. Embed every chunk concurrently (one embedding call per chunk).
2. Store the chunks on the calling thread, in input order. Each insert
   takes the next free ``chunk_index`` of the source, so concurrent writers
   appending to one source interleave without colliding.

Sub-batches run one after another. A failed embedding aborts the write and
propagates; chunks stored by earlier sub-batches remain.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from loguru import logger

from contextkb.db.models import Chunk
from contextkb.db.repository import Repository
from contextkb.ingest.base import ProcessedChunk
from contextkb.rag.llm_client import EmbeddingClient


class EmbeddingWriter:
    """Write chunks to the DB with their embeddings.

    Args:
        repo: Open Repository instance.
        embedder: Anything with ``get_embeddings(text) -> list[float]``.
        concurrency: Embedding calls in flight per sub-batch.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingClient,
        concurrency: int = 5,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._repo = repo
        self._embedder = embedder
        self._concurrency = concurrency

    def write(
        self,
        source_id: str,
        chunks: list[ProcessedChunk],
        on_progress: Callable[[int], None] | None = None,
    ) -> list[int]:
        """Embed *chunks* and append them to *source_id*. Returns the chunk indices used."""
        if not chunks:
            return []

        total_batches = (len(chunks) + self._concurrency - 1) // self._concurrency
        written: list[int] = []

        with ThreadPoolExecutor(max_workers=self._concurrency) as pool:
            for offset in range(0, len(chunks), self._concurrency):
                batch = chunks[offset : offset + self._concurrency]
                batch_no = offset // self._concurrency + 1
                logger.debug(
                    f"Embedding batch {batch_no}/{total_batches} ({len(batch)} chunks) for {source_id}"
                )

                futures = [pool.submit(self._embedder.get_embeddings, c.content) for c in batch]
                vectors: list[list[float]] = []
                for i, future in enumerate(futures):
                    try:
                        vectors.append(future.result())
                    except Exception:
                        logger.error(
                            f"Failed to embed chunk {offset + i} of this batch for source {source_id}"
                        )
                        raise

                for chunk, vector in zip(batch, vectors):
                    index = self._repo.append_knowledge_chunk(
                        Chunk(
                            source_id=source_id,
                            chunk_index=-1,
                            content=chunk.content,
                            vector=vector,
                            metadata=chunk.metadata_dict(),
                        )
                    )
                    written.append(index)

                if on_progress is not None:
                    on_progress(len(written))

        return written
