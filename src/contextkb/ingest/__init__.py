"""contextkb ingest pipeline — chunking, extractors, embedding writer, source registry."""

from __future__ import annotations

from pathlib import Path

from contextkb.ingest.base import BaseExtractor, ProcessedChunk, batch_chunks
from contextkb.ingest.pdf import PdfExtractor
from contextkb.ingest.plaintext import (
    CODE_EXTENSIONS,
    DATA_EXTENSIONS,
    TEXT_EXTENSIONS,
    PlainTextExtractor,
)

PDF_EXTENSIONS: frozenset[str] = frozenset([".pdf"])
SUPPORTED_EXTENSIONS: frozenset[str] = (
    PDF_EXTENSIONS | TEXT_EXTENSIONS | CODE_EXTENSIONS | DATA_EXTENSIONS
)


def extractor_for(
    path: str | Path, chunk_size: int = 1000, overlap: int = 200
) -> BaseExtractor | None:
    """Return the extractor for *path* by extension, or None if unsupported."""
    ext = Path(path).suffix.lower()
    if ext in PDF_EXTENSIONS:
        return PdfExtractor(chunk_size=chunk_size, overlap=overlap)
    if ext in TEXT_EXTENSIONS | CODE_EXTENSIONS | DATA_EXTENSIONS:
        return PlainTextExtractor(chunk_size=chunk_size, overlap=overlap)
    return None


def source_type_for(path: str | Path) -> str:
    """Source.type recorded for an uploaded file."""
    return "pdf" if Path(path).suffix.lower() in PDF_EXTENSIONS else "text"


__all__ = [
    "BaseExtractor",
    "PdfExtractor",
    "PlainTextExtractor",
    "ProcessedChunk",
    "SUPPORTED_EXTENSIONS",
    "batch_chunks",
    "extractor_for",
    "source_type_for",
]
