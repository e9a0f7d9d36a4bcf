"""Shared fixtures: a deterministic tokenizer and an in-memory embedding provider."""

from __future__ import annotations

import re
import zlib
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest

from docsync.index.storage import SQLiteStore
from docsync.models import EmbeddingResult

DIMENSION = 8

_WORD = re.compile(r"\S+\s*|\s+")


class WordTokenizer:
    """One token per word (with its trailing whitespace); decoding is exact."""

    def __init__(self) -> None:
        self.vocab: List[str] = []
        self.ids: Dict[str, int] = {}

    def encode(self, text: str) -> List[int]:
        tokens = []
        for piece in _WORD.findall(text):
            if piece not in self.ids:
                self.ids[piece] = len(self.vocab)
                self.vocab.append(piece)
            tokens.append(self.ids[piece])
        return tokens

    def decode(self, tokens: Sequence[int]) -> str:
        return "".join(self.vocab[token] for token in tokens)


class FakeProvider:
    """Embeds text into a fixed-size vector seeded by its CRC32.

    ``fail_when`` can be set to a predicate on the input text to simulate a
    provider error for matching sections.
    """

    def __init__(self, dimension: int = DIMENSION) -> None:
        self.dimension = dimension
        self.calls: List[str] = []
        self.fail_when: Optional[Callable[[str], bool]] = None

    def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.fail_when is not None and self.fail_when(text):
            raise RuntimeError("provider unavailable")
        rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
        vector = rng.random(self.dimension).astype("float32")
        vector /= np.linalg.norm(vector)
        return EmbeddingResult(vector=vector.tolist(), token_usage=len(text.split()))


@pytest.fixture
def tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store(tmp_path: Path):
    store = SQLiteStore(tmp_path / "docs.db", dimension=DIMENSION)
    yield store
    store.close()


@pytest.fixture
def docs_root(tmp_path: Path) -> Path:
    root = tmp_path / "pages"
    root.mkdir()
    return root
