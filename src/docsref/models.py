"""Core docsref data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RawDocument:
    """One markdown file as read from disk."""

    path: Path
    relative_path: str
    category: str
    text: str
    last_modified: float


@dataclass(frozen=True, slots=True)
class Chunk:
    """Section-bounded slice of a document."""

    content: str
    section: str
    importance: float


@dataclass(slots=True)
class DocumentMetadata:
    category: str
    path: str
    last_modified: float


@dataclass(slots=True)
class ProcessedDocument:
    """Markdown document split into chunks and ready for indexing."""

    id: str
    title: str
    content: str
    chunks: List[Chunk]
    metadata: DocumentMetadata

    def chunk_id(self, index: int) -> str:
        return f"{self.id}_{index}"


@dataclass(slots=True)
class IndexedEntry:
    """One searchable record: a chunk flattened with its parent's fields."""

    id: str
    title: str
    content: str
    section: str
    category: str
    importance: float
    path: str

    @classmethod
    def from_document(cls, document: ProcessedDocument) -> List["IndexedEntry"]:
        return [
            cls(
                id=document.chunk_id(index),
                title=document.title,
                content=chunk.content,
                section=chunk.section,
                category=document.metadata.category,
                importance=chunk.importance,
                path=document.metadata.path,
            )
            for index, chunk in enumerate(document.chunks)
        ]

    def as_fields(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "section": self.section,
            "category": self.category,
            "importance": self.importance,
            "path": self.path,
        }


@dataclass(slots=True)
class SearchHit:
    """Ranked match returned by the search index."""

    id: str
    score: float
    title: str
    category: str
    path: str
    section: str = ""
    importance: float = 0.0
    match: str = ""
    terms: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """Cached payload with its creation time (epoch seconds)."""

    data: T
    timestamp: float
    tokens: Optional[int] = None

    def age(self, now: float) -> float:
        return now - self.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "timestamp": self.timestamp, "tokens": self.tokens}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheEntry[Any]":
        tokens = payload.get("tokens")
        return cls(
            data=payload["data"],
            timestamp=float(payload["timestamp"]),
            tokens=int(tokens) if tokens is not None else None,
        )
