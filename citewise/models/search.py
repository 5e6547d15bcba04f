from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class OptimizationMode(str, Enum):
    SPEED = "speed"
    BALANCED = "balanced"
    QUALITY = "quality"


@dataclass(frozen=True, slots=True)
class SearchRequest:
    """One user turn plus the context needed to answer it."""
    raw_query: str
    history: tuple[tuple[str, str], ...] = ()  # (role, text), oldest first
    optimization_mode: OptimizationMode = OptimizationMode.BALANCED
    explicit_urls: frozenset[str] = frozenset()
    system_instructions: str = ""


# --- Rephrased query variants ---


@dataclass(frozen=True, slots=True)
class Standalone:
    text: str
    links: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Summarize:
    links: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class NotNeeded:
    pass


RephrasedQuery = Union[Standalone, Summarize, NotNeeded]


# --- Retrieval artifacts ---


@dataclass(frozen=True, slots=True)
class SearchResult:
    title: str
    url: str
    content: str
    image_url: str | None = None
    published_date: str | None = None
    score: float | None = None
    provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "content": self.content,
            "image_url": self.image_url,
            "published_date": self.published_date,
            "score": self.score,
            "provider": self.provider,
        }


@dataclass(frozen=True, slots=True)
class SearchResponse:
    results: list[SearchResult] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ExtractedDocument:
    url: str
    title: str
    text: str
    method: str
    error: str | None = None  # set on placeholder documents

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def usable_text(self) -> str:
        if self.error is not None:
            return ""
        return self.text


@dataclass(frozen=True, slots=True)
class Chunk:
    source_url: str
    source_title: str
    text: str
    ordinal: int


@dataclass(frozen=True, slots=True)
class RankedChunk:
    chunk: Chunk
    score: float
