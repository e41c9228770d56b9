"""PDF extractor — per-page text runs, font-size header detection (pypdf).

Strategy:
- Collect text runs page-by-page via ``page.extract_text(visitor_text=...)``,
  recording each run's effective font height.
- A run is a header when its height exceeds the page's median height × 1.2.
  Body runs accumulate under the most recent header into sections.
- Sections up to 1500 characters become one chunk; longer sections are
  re-chunked at 1000/200. Pages without sections fall back to fixed-size
  chunking of the page text.
- Pages that yield no text (scanned images, etc.) contribute no chunks.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from pathlib import Path

import pypdf
from loguru import logger

from contextkb.db.models import PdfChunkMetadata
from contextkb.ingest.base import BaseExtractor, ProcessedChunk
from contextkb.ingest.chunking import chunk_text

_HEADER_RATIO = 1.2
_MIN_HEADER_CHARS = 3
_MAX_SECTION_CHARS = 1500
_DEFAULT_SECTION_TITLE = "Page Content"


@dataclass
class TextRun:
    text: str
    height: float
    eol: bool = False


@dataclass
class Section:
    title: str
    text: str
    type: str  # header | body


@dataclass
class PageStructure:
    full_text: str = ""
    sections: list[Section] = field(default_factory=list)


@dataclass
class ProcessedDocument:
    chunks: list[ProcessedChunk]
    page_count: int
    extracted_pages: int
    has_structure: bool


def parse_page_structure(runs: list[TextRun]) -> PageStructure:
    """Classify *runs* into header-led sections using relative font size."""
    heights = sorted(abs(r.height) for r in runs if r.text.strip())
    if not heights:
        return PageStructure()

    median = statistics.median_high(heights) or 10.0
    threshold = median * _HEADER_RATIO

    full_text = ""
    sections: list[Section] = []
    current: Section | None = None

    for run in runs:
        if not run.text:
            continue
        piece = run.text + ("\n" if run.eol else " ")
        full_text += piece

        stripped = run.text.strip()
        if abs(run.height) > threshold and len(stripped) > _MIN_HEADER_CHARS:
            if current is not None:
                sections.append(current)
            current = Section(title=stripped, text=piece, type="header")
        elif current is not None:
            current.text += piece
        else:
            current = Section(title=_DEFAULT_SECTION_TITLE, text=piece, type="body")

    if current is not None:
        sections.append(current)

    return PageStructure(full_text=full_text, sections=sections)


def chunk_page(page: PageStructure, page_number: int, chunk_size: int = 1000, overlap: int = 200) -> list[ProcessedChunk]:
    """Turn one parsed page into chunks tagged with page provenance."""
    chunks: list[ProcessedChunk] = []

    if not page.sections:
        for segment in chunk_text(page.full_text, chunk_size=chunk_size, overlap=overlap):
            if segment.strip():
                chunks.append(_chunk(segment, page_number, "body", None))
        return chunks

    for section in page.sections:
        if not section.text.strip():
            continue
        if len(section.text) > _MAX_SECTION_CHARS:
            for segment in chunk_text(section.text, chunk_size=chunk_size, overlap=overlap):
                chunks.append(_chunk(segment, page_number, "body", section.title))
        else:
            chunk_type = "header" if section.type == "header" else "body"
            chunks.append(_chunk(section.text, page_number, chunk_type, section.title))
    return chunks


def _chunk(content: str, page_number: int, chunk_type: str, title: str | None) -> ProcessedChunk:
    return ProcessedChunk(
        content=content,
        metadata=PdfChunkMetadata(
            page_start=page_number,
            page_end=page_number,
            chunk_type=chunk_type,
            section_title=title,
            char_count=len(content),
        ),
    )


def _run_height(cm: list[float], tm: list[float], font_size: float) -> float:
    """Effective glyph height: font size scaled by the text and user matrices."""
    scale_tm = math.hypot(tm[2], tm[3]) if tm else 1.0
    scale_cm = math.hypot(cm[2], cm[3]) if cm else 1.0
    return abs(font_size * (scale_tm or 1.0) * (scale_cm or 1.0))


class PdfExtractor(BaseExtractor):
    """Split a PDF document into structure-aware chunks using pypdf.

    Default: 1000 characters / 200 characters overlap for re-chunked sections.
    """

    def extract(self, path: str | Path) -> list[ProcessedChunk]:
        return self.process(path).chunks

    def process(self, path: str | Path) -> ProcessedDocument:
        reader = pypdf.PdfReader(str(path))
        chunks: list[ProcessedChunk] = []
        extracted = 0
        has_structure = False

        for page_number, page in enumerate(reader.pages, start=1):
            runs = self._read_runs(page, page_number)
            structure = parse_page_structure(runs)
            if structure.full_text.strip():
                extracted += 1
            has_structure = has_structure or bool(structure.sections)
            chunks.extend(chunk_page(structure, page_number, self.chunk_size, self.overlap))

        logger.debug(
            f"Extracted {len(chunks)} chunks from {extracted}/{len(reader.pages)} pages of {path}"
        )
        return ProcessedDocument(
            chunks=chunks,
            page_count=len(reader.pages),
            extracted_pages=extracted,
            has_structure=has_structure,
        )

    @staticmethod
    def _read_runs(page: pypdf.PageObject, page_number: int) -> list[TextRun]:
        """Collect text runs of one page; unreadable pages yield no runs."""
        runs: list[TextRun] = []

        def _visit(text, cm, tm, font_dict, font_size) -> None:
            if not text:
                return
            if not text.strip():
                if "\n" in text and runs:
                    runs[-1].eol = True
                return
            eol = text.endswith("\n")
            runs.append(
                TextRun(
                    text=text.rstrip("\n"),
                    height=_run_height(cm, tm, font_size or 0.0),
                    eol=eol,
                )
            )

        try:
            page.extract_text(visitor_text=_visit)
        except Exception as exc:
            logger.warning(f"Skipping unreadable PDF page {page_number}: {exc}")
            return []
        return runs
