"""Semantic search over stored page sections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from docsync.embedding.encoder import EmbeddingProvider
from docsync.index.storage import SQLiteStore
from docsync.utils.text import normalize_embedding_input


@dataclass(slots=True)
class SearchResult:
    path: str
    heading: Optional[str]
    slug: Optional[str]
    score: float
    content: str

    @property
    def anchor(self) -> str:
        return f"{self.path}#{self.slug}" if self.slug else self.path


class Searcher:
    """High-level API to query the page section store."""

    def __init__(self, provider: EmbeddingProvider, store: SQLiteStore) -> None:
        self.provider = provider
        self.store = store

    def search(self, query: str, *, top_k: int = 10) -> List[SearchResult]:
        embedding = self.provider.embed(normalize_embedding_input(query))
        rows = self.store.search(np.asarray(embedding.vector, dtype="float32"), top_k=top_k)
        return [
            SearchResult(
                path=row["path"],
                heading=row["heading"],
                slug=row["slug"],
                score=float(row["score"]),
                content=row["content"],
            )
            for row in rows
        ]
