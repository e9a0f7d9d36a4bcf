"""Core docsync data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class Section:
    """One token window of a document, the unit of embedding."""

    content: str
    heading: Optional[str] = None
    slug: Optional[str] = None


@dataclass(slots=True)
class ExtractedText:
    """Checksum, front matter and prose of a raw document."""

    checksum: str
    meta: Optional[Dict[str, Any]]
    prose: str


@dataclass(slots=True)
class LoadResult:
    """Everything a source yields once loaded."""

    checksum: str
    meta: Optional[Dict[str, Any]]
    sections: List[Section] = field(default_factory=list)


@dataclass(slots=True)
class EmbeddingResult:
    """Vector returned by an embedding provider plus the tokens it consumed."""

    vector: List[float]
    token_usage: int
