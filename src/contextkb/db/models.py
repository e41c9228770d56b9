"""Domain models for the contextkb database layer."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Union

SOURCE_TYPES: frozenset[str] = frozenset(
    ["pdf", "text", "web", "project", "folder_link", "conversation_link"]
)


@dataclass
class Source:
    id: str
    hash: str
    type: str
    name: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None


@dataclass
class Chunk:
    source_id: str
    chunk_index: int
    content: str
    vector: list[float] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None  # set after insert; None for unsaved chunks


@dataclass
class RankedChunk:
    id: str
    source_id: str
    content: str
    chunk_index: int
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceLink:
    """A Source attached to a Conversation, optionally scoped to one Message.

    ``message_id is None`` means the link is global for the conversation.
    """

    id: str
    conversation_id: str
    source_id: str
    message_id: str | None = None
    created_at: str | None = None


@dataclass
class ConversationRef:
    id: str
    title: str = ""


@dataclass
class FolderRef:
    id: str
    name: str = ""


@dataclass
class Message:
    id: str
    conversation_id: str
    role: str
    content: str
    timestamp: int
    version_of: str | None = None
    version_number: int = 1
    referenced_conversations: list[ConversationRef] = field(default_factory=list)
    referenced_folders: list[FolderRef] = field(default_factory=list)

    @property
    def root_id(self) -> str:
        """Id of the first version of this message (itself if never edited)."""
        return self.version_of or self.id

    @property
    def is_version(self) -> bool:
        return self.version_of is not None or self.version_number > 1


@dataclass
class MessagePage:
    messages: list[Message]
    next_cursor: str | None = None


@dataclass
class Conversation:
    id: str
    title: str = "Untitled"
    active_referenced_conversations: list[ConversationRef] = field(default_factory=list)
    active_referenced_folders: list[FolderRef] = field(default_factory=list)
    created_at: str | None = None


@dataclass
class Folder:
    id: str
    name: str
    conversation_ids: list[str] = field(default_factory=list)


@dataclass
class RankedMessage:
    message_id: str
    conversation_id: str
    content: str
    score: float


# ------------------------------------------------------------------
# Chunk metadata, tagged by ``kind``
# ------------------------------------------------------------------


@dataclass
class PdfChunkMetadata:
    page_start: int
    page_end: int
    chunk_type: str = "body"  # header | body
    section_title: str | None = None
    char_count: int = 0
    kind: str = "pdf"


@dataclass
class TextChunkMetadata:
    file_type: str = "text"
    char_count: int = 0
    kind: str = "text"


@dataclass
class ParentChildMetadata:
    parent_id: str
    parent_index: int
    parent_content: str
    child_index: int
    kind: str = "parent_child"


ChunkMetadata = Union[PdfChunkMetadata, TextChunkMetadata, ParentChildMetadata, dict]

_METADATA_KINDS: dict[str, type] = {
    "pdf": PdfChunkMetadata,
    "text": TextChunkMetadata,
    "parent_child": ParentChildMetadata,
}


def metadata_to_dict(metadata: ChunkMetadata | None) -> dict[str, Any]:
    if metadata is None:
        return {}
    if isinstance(metadata, dict):
        return dict(metadata)
    return asdict(metadata)


def parse_chunk_metadata(raw: dict[str, Any] | str | None) -> ChunkMetadata:
    """Return the typed metadata for *raw*; unknown kinds come back as dicts."""
    if raw is None:
        return {}
    data = json.loads(raw) if isinstance(raw, str) else dict(raw)
    cls = _METADATA_KINDS.get(data.get("kind", ""))
    if cls is None:
        return data
    known = cls.__dataclass_fields__
    try:
        return cls(**{k: v for k, v in data.items() if k in known})
    except TypeError:
        return data
