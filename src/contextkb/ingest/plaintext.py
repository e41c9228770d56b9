"""Plain text, code and structured-data extractor."""

from __future__ import annotations

from pathlib import Path

from contextkb.db.models import TextChunkMetadata
from contextkb.ingest.base import BaseExtractor, ProcessedChunk

TEXT_EXTENSIONS: frozenset[str] = frozenset(
    [".txt", ".text", ".md", ".markdown", ".rst", ".log"]
)
CODE_EXTENSIONS: frozenset[str] = frozenset(
    [
        ".py", ".js", ".jsx", ".ts", ".tsx", ".go", ".rs", ".java", ".kt",
        ".c", ".h", ".cpp", ".hpp", ".cs", ".rb", ".php", ".swift", ".sh",
        ".sql", ".css", ".scss",
    ]
)
DATA_EXTENSIONS: frozenset[str] = frozenset(
    [".json", ".yaml", ".yml", ".toml", ".csv", ".tsv", ".xml", ".html", ".htm", ".ini"]
)


def file_type_for(path: str | Path) -> str:
    """Return 'code', 'data' or 'text' for *path* based on its extension."""
    ext = Path(path).suffix.lower()
    if ext in CODE_EXTENSIONS:
        return "code"
    if ext in DATA_EXTENSIONS:
        return "data"
    return "text"


class PlainTextExtractor(BaseExtractor):
    """Read a text-like file and split it into overlapping windows.

    Default: 1000 characters / 200 characters overlap.
    """

    def extract(self, path: str | Path) -> list[ProcessedChunk]:
        content = Path(path).read_text(encoding="utf-8", errors="replace")
        return self.extract_text(content, file_type=file_type_for(path))

    def extract_text(self, content: str, file_type: str = "text") -> list[ProcessedChunk]:
        return [
            ProcessedChunk(
                content=segment,
                metadata=TextChunkMetadata(file_type=file_type, char_count=len(segment)),
            )
            for segment in self._split(content)
        ]
