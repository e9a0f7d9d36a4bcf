"""Reconciles discovered documents with the persisted page store.

Each document goes through ``load -> diff -> mutate -> commit``. A failure
at any stage is confined to that document: it is logged, counted and the
pass moves on. A page's checksum is written last, so a page left with a
null checksum is regenerated on the next pass. After all documents are
processed, pages not stamped with the current run version are deleted.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from docsync.embedding.encoder import EmbeddingProvider
from docsync.errors import ProviderError
from docsync.index.storage import NotEqual, SQLiteStore
from docsync.ingestion.sources import BaseSource
from docsync.models import EmbeddingResult, LoadResult, Section
from docsync.utils.text import normalize_embedding_input

LOGGER = logging.getLogger(__name__)

SNIPPET_CHARS = 40


@dataclass(slots=True)
class DocumentOutcome:
    path: str
    status: str
    sections_inserted: int = 0
    error: Optional[BaseException] = None


@dataclass(slots=True)
class SyncStats:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    sections_inserted: int = 0
    removed: int = 0
    cancelled: bool = False
    processed_paths: List[str] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def record(self, outcome: DocumentOutcome) -> None:
        if outcome.status == "inserted":
            self.inserted += 1
        elif outcome.status == "updated":
            self.updated += 1
        elif outcome.status == "unchanged":
            self.unchanged += 1
        else:
            self.failed += 1
            self.failures.append((outcome.path, str(outcome.error)))
        self.sections_inserted += outcome.sections_inserted
        self.processed_paths.append(outcome.path)


@dataclass(frozen=True, slots=True)
class RunStamp:
    """Values written on every page touched during one pass."""

    version: str
    refreshed_at: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_version() -> str:
    return str(uuid.uuid4())


class Reconciler:
    """Keeps the page store in sync with a snapshot of documentation sources."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: SQLiteStore,
        *,
        refresh: bool = False,
        embed_workers: int = 1,
        clock: Callable[[], datetime] = _utcnow,
        version_factory: Callable[[], str] = _new_version,
    ) -> None:
        self.provider = provider
        self.store = store
        self.refresh = refresh
        self.embed_workers = max(1, embed_workers)
        self.clock = clock
        self.version_factory = version_factory

    def run(
        self,
        sources: Iterable[BaseSource],
        *,
        cancel_event: threading.Event | None = None,
    ) -> SyncStats:
        """Reconcile every source, then remove pages that were not seen."""
        stamp = RunStamp(version=self.version_factory(), refreshed_at=self.clock().isoformat())
        stats = SyncStats()

        if self.refresh:
            LOGGER.info("Refresh flag set, re-generating all pages")
        else:
            LOGGER.info("Checking which pages are new or have changed")

        for source in sources:
            if cancel_event is not None and cancel_event.is_set():
                stats.cancelled = True
                break
            stats.record(self.reconcile(source, stamp))

        if stats.cancelled:
            LOGGER.warning("Sync cancelled, skipping removal of old pages")
            return stats

        LOGGER.info("Removing old pages and their sections")
        stats.removed = self.sweep(stamp.version)
        LOGGER.info("Embedding generation complete")
        return stats

    def sweep(self, version: str) -> int:
        """Delete pages (and, by cascade, sections) from other runs."""
        return self.store.delete_where("page", {"version": NotEqual(version)})

    def reconcile(self, source: BaseSource, stamp: RunStamp) -> DocumentOutcome:
        """Run one document through the pipeline; never raises."""
        try:
            loaded = source.load()
            existing = self._find_page(source.path)

            if self._is_unchanged(existing, loaded):
                self._touch(source, existing, stamp)
                return DocumentOutcome(path=source.path, status="unchanged")

            page = self._prepare_page(source, existing, stamp)
            inserted = self._store_sections(source, page, loaded.sections)
            self._commit(page, loaded.checksum)
        except Exception as exc:
            LOGGER.error(
                "Page '%s' or one/multiple of its page sections failed to store properly. "
                "Page has been marked with null checksum to indicate that it needs to be "
                "re-generated.",
                source.path,
            )
            LOGGER.error("[%s] %s: %s", source.path, type(exc).__name__, exc)
            return DocumentOutcome(path=source.path, status="failed", error=exc)

        return DocumentOutcome(
            path=source.path,
            status="updated" if existing else "inserted",
            sections_inserted=inserted,
        )

    def _find_page(self, path: Optional[str]) -> Optional[Dict[str, Any]]:
        if path is None:
            return None
        return self.store.find_one("page", {"path": path})

    def _resolve_parent_id(self, parent_path: Optional[str]) -> Optional[int]:
        parent = self._find_page(parent_path)
        return parent["id"] if parent else None

    def _is_unchanged(self, existing: Optional[Dict[str, Any]], loaded: LoadResult) -> bool:
        return (
            not self.refresh
            and existing is not None
            and existing["checksum"] is not None
            and existing["checksum"] == loaded.checksum
        )

    def _touch(self, source: BaseSource, existing: Dict[str, Any], stamp: RunStamp) -> None:
        """Re-stamp an unchanged page, fixing its parent link if it moved."""
        current_parent = None
        if existing["parent_page_id"] is not None:
            parent = self.store.find_one("page", {"id": existing["parent_page_id"]})
            current_parent = parent["path"] if parent else None

        if current_parent != source.parent_path:
            LOGGER.info(
                "[%s] Parent page has changed. Updating to '%s'...",
                source.path,
                source.parent_path,
            )
            self.store.update(
                "page",
                {"parent_page_id": self._resolve_parent_id(source.parent_path)},
                {"id": existing["id"]},
            )

        self.store.update(
            "page",
            {
                "type": source.type,
                "source": source.source,
                "meta": source.meta,
                "version": stamp.version,
                "last_refresh": stamp.refreshed_at,
            },
            {"id": existing["id"]},
        )

    def _prepare_page(
        self, source: BaseSource, existing: Optional[Dict[str, Any]], stamp: RunStamp
    ) -> Dict[str, Any]:
        """Drop stale sections and upsert the page with a null checksum."""
        if existing:
            if self.refresh:
                LOGGER.info(
                    "[%s] Refresh flag set, removing old page sections and their embeddings",
                    source.path,
                )
            else:
                LOGGER.info(
                    "[%s] Docs have changed, removing old page sections and their embeddings",
                    source.path,
                )
            self.store.delete_where("page_section", {"page_id": existing["id"]})

        return self.store.upsert(
            "page",
            {
                "checksum": None,
                "path": source.path,
                "type": source.type,
                "source": source.source,
                "meta": source.meta,
                "parent_page_id": self._resolve_parent_id(source.parent_path),
                "version": stamp.version,
                "last_refresh": stamp.refreshed_at,
            },
            "path",
        )

    def _embed(self, path: str, section: Section) -> EmbeddingResult:
        text = normalize_embedding_input(section.content)
        try:
            result = self.provider.embed(text)
            if result is None or len(result.vector) == 0:
                raise ProviderError("Embedding provider returned an empty result")
        except Exception:
            LOGGER.error(
                f"Failed to generate embeddings for '{path}' page section starting with "
                f"'{text[:SNIPPET_CHARS]}...'"
            )
            raise
        return result

    def _insert_section(
        self, page: Dict[str, Any], section: Section, result: EmbeddingResult
    ) -> None:
        self.store.insert(
            "page_section",
            {
                "page_id": page["id"],
                "slug": section.slug,
                "heading": section.heading,
                "content": section.content,
                "token_count": result.token_usage,
                "embedding": result.vector,
            },
        )

    def _store_sections(
        self, source: BaseSource, page: Dict[str, Any], sections: List[Section]
    ) -> int:
        LOGGER.info("[%s] Adding %d page sections (with embeddings)", source.path, len(sections))

        if self.embed_workers == 1 or len(sections) <= 1:
            for section in sections:
                self._insert_section(page, section, self._embed(source.path, section))
            return len(sections)

        # All embeddings must succeed before any section is written
        with ThreadPoolExecutor(max_workers=self.embed_workers) as pool:
            results = list(pool.map(lambda section: self._embed(source.path, section), sections))
        for section, result in zip(sections, results):
            self._insert_section(page, section, result)
        return len(sections)

    def _commit(self, page: Dict[str, Any], checksum: str) -> None:
        """Mark the page as completely stored."""
        self.store.update("page", {"checksum": checksum}, {"id": page["id"]})
