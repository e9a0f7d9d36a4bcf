"""Embedding sources: documents that know their identity and how to load."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Type

from docsync.embedding.tokenizer import TiktokenTokenizer, Tokenizer
from docsync.errors import ReadError
from docsync.ingestion.markdown import (
    DEFAULT_CHUNK_TOKENS,
    DEFAULT_OVERLAP_TOKENS,
    process_markdown,
)
from docsync.models import LoadResult, Section
from docsync.utils.files import is_doc_file, logical_path, walk_docs

LOGGER = logging.getLogger(__name__)


class BaseSource(ABC):
    """A discovered document.

    ``checksum``, ``meta`` and ``sections`` are only populated by ``load``.
    """

    type: str = ""

    def __init__(self, source: str, path: str, parent_path: Optional[str] = None) -> None:
        self.source = source
        self.path = path
        self.parent_path = parent_path
        self.checksum: Optional[str] = None
        self.meta: Optional[Dict[str, Any]] = None
        self.sections: List[Section] = []

    @abstractmethod
    def load(self) -> LoadResult:
        """Read the backing content and derive checksum, meta and sections."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(type={self.type!r}, path={self.path!r})"


class MarkdownSource(BaseSource):
    """File-backed Markdown or MDX document."""

    type = "markdown"

    def __init__(
        self,
        source: str,
        file_path: Path,
        parent_file_path: Path | None = None,
        *,
        root: Path,
        tokenizer: Tokenizer | None = None,
        chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
        overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    ) -> None:
        self.file_path = Path(file_path)
        self.parent_file_path = Path(parent_file_path) if parent_file_path else None
        self.root = Path(root)
        self.tokenizer = tokenizer or TiktokenTokenizer()
        self.chunk_tokens = chunk_tokens
        self.overlap_tokens = overlap_tokens

        parent_path = (
            logical_path(self.parent_file_path, self.root) if self.parent_file_path else None
        )
        super().__init__(source, logical_path(self.file_path, self.root), parent_path)

    def load(self) -> LoadResult:
        try:
            contents = self.file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ReadError(f"Unable to read {self.file_path}: {exc}") from exc

        result = process_markdown(
            contents,
            tokenizer=self.tokenizer,
            chunk_tokens=self.chunk_tokens,
            overlap_tokens=self.overlap_tokens,
        )
        LOGGER.debug("[%s] Loaded %d sections", self.path, len(result.sections))

        self.checksum = result.checksum
        self.meta = result.meta
        self.sections = result.sections
        return result


SOURCE_TYPES: Dict[str, Type[BaseSource]] = {
    MarkdownSource.type: MarkdownSource,
}


def make_source(tag: str, *args: Any, **kwargs: Any) -> BaseSource:
    """Instantiate the source variant registered under ``tag``."""
    try:
        source_cls = SOURCE_TYPES[tag]
    except KeyError:
        raise ValueError(f"Unknown source type: {tag!r}") from None
    return source_cls(*args, **kwargs)


def discover_sources(
    root: Path,
    *,
    tokenizer: Tokenizer | None = None,
    ignored_paths: Iterable[str] = (),
    chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> Iterator[BaseSource]:
    """Yield a markdown source for every Markdown/MDX file under ``root``."""
    ignored = set(ignored_paths)
    tokenizer = tokenizer or TiktokenTokenizer()
    for entry in walk_docs(root):
        if not is_doc_file(entry.path):
            continue
        source = make_source(
            MarkdownSource.type,
            "markdown",
            entry.path,
            entry.parent_path,
            root=root,
            tokenizer=tokenizer,
            chunk_tokens=chunk_tokens,
            overlap_tokens=overlap_tokens,
        )
        if source.path in ignored:
            LOGGER.debug("Ignoring %s", source.path)
            continue
        yield source
