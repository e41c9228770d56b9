"""Text chunking: overlapping windows, sentence splitting, small-to-big parent/child.

``chunk_text`` cuts fixed-size windows but pulls each cut back to the nearest
natural break found in the window's tail (paragraph > line > sentence > word).
``chunk_with_parent_child`` builds coarse parents for generation context and
fine sentence-grouped children for precise embedding.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# Break points in priority order; the cut lands right after the first
# character of the delimiter.
_BREAK_DELIMITERS: tuple[str, ...] = ("\n\n", "\n", ". ", " ")

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+(?=[A-Z])|(?<=[.!?])$")
_NEWLINES = re.compile(r"\n+")
_MIN_SENTENCE_CHARS = 10


@dataclass
class SentenceWindow:
    sentence: str  # embedded
    window: str  # handed to the model
    sentence_index: int


@dataclass
class ParentChunk:
    id: str
    content: str
    chunk_index: int


@dataclass
class ChildChunk:
    id: str
    parent_id: str
    content: str
    chunk_index: int  # position within its parent


@dataclass
class ParentChildResult:
    parents: list[ParentChunk] = field(default_factory=list)
    children: list[ChildChunk] = field(default_factory=list)

    def parent(self, parent_id: str) -> ParentChunk:
        for p in self.parents:
            if p.id == parent_id:
                return p
        raise KeyError(parent_id)


def chunk_text(text: str, chunk_size: int = 2000, overlap: int = 200) -> list[str]:
    """Split *text* into overlapping chunks of at most *chunk_size* characters.

    Args:
        text: Input text.
        chunk_size: Maximum characters per chunk.
        overlap: Characters shared between consecutive chunks.

    Returns:
        Ordered list of chunks; ``[]`` for empty input and ``[text]`` when the
        text already fits.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if overlap < 0:
        raise ValueError("overlap must be >= 0")
    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]

    lookback = int(min(chunk_size * 0.1, 100))
    chunks: list[str] = []
    start = 0
    length = len(text)

    while start < length:
        end = start + chunk_size
        if end >= length:
            chunks.append(text[start:])
            break

        search_start = end - lookback
        window = text[search_start:end]
        for delimiter in _BREAK_DELIMITERS:
            pos = window.rfind(delimiter)
            if pos != -1:
                end = search_start + pos + 1
                break

        chunks.append(text[start:end])
        # Always advance, even when overlap >= the chunk just produced.
        start = max(end - overlap, start + 1)

    return chunks


def split_into_sentences(text: str) -> list[str]:
    """Split *text* into sentences; never drops content of non-trivial input.

    A boundary is terminal punctuation followed by whitespace and a capital
    letter (so "Dr. smith" stays together), or terminal punctuation at the end
    of the text. Fragments of 10 characters or fewer are discarded.
    """
    if not text:
        return []

    normalised = _NEWLINES.sub(" ", text)
    sentences = [
        s.strip()
        for s in _SENTENCE_BOUNDARY.split(normalised)
        if len(s.strip()) > _MIN_SENTENCE_CHARS
    ]

    if not sentences and len(text) > _MIN_SENTENCE_CHARS and text.strip():
        return [text.strip()]
    return sentences


def create_sentence_windows(text: str, window_size: int = 2) -> list[SentenceWindow]:
    """Pair each sentence with up to *window_size* neighbours on either side."""
    sentences = split_into_sentences(text)
    windows: list[SentenceWindow] = []
    for i, sentence in enumerate(sentences):
        lo = max(0, i - window_size)
        hi = min(len(sentences), i + window_size + 1)
        windows.append(
            SentenceWindow(
                sentence=sentence,
                window=" ".join(sentences[lo:hi]),
                sentence_index=i,
            )
        )
    return windows


def chunk_with_parent_child(
    text: str,
    parent_size: int = 2000,
    child_size: int = 300,
) -> ParentChildResult:
    """Split *text* into parent chunks and sentence-grouped child chunks.

    Children are what gets embedded; a child hit is answered with its parent.
    """
    if not text:
        return ParentChildResult()

    result = ParentChildResult()

    for parent_index, parent_content in enumerate(
        chunk_text(text, chunk_size=parent_size, overlap=100)
    ):
        parent_id = f"parent-{parent_index}"
        result.parents.append(
            ParentChunk(id=parent_id, content=parent_content, chunk_index=parent_index)
        )

        sentences = split_into_sentences(parent_content)
        if sentences:
            child_texts = _group_sentences(sentences, child_size)
        else:
            child_texts = chunk_text(parent_content, chunk_size=child_size, overlap=50)

        for child_index, child_content in enumerate(child_texts):
            result.children.append(
                ChildChunk(
                    id=f"{parent_id}-child-{child_index}",
                    parent_id=parent_id,
                    content=child_content,
                    chunk_index=child_index,
                )
            )

    return result


def _group_sentences(sentences: list[str], child_size: int) -> list[str]:
    """Greedily pack sentences into groups of roughly *child_size* characters."""
    groups: list[str] = []
    current = ""
    for sentence in sentences:
        if current and len(current) + len(sentence) > child_size:
            groups.append(current.strip())
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current.strip():
        groups.append(current.strip())
    return groups
