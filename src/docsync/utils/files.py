"""Utility helpers for discovering and fingerprinting documentation files."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from docsync.errors import SetupError

DOC_SUFFIXES = (".md", ".mdx")


@dataclass(frozen=True, slots=True)
class WalkEntry:
    path: Path
    parent_path: Optional[Path] = None


def walk_docs(root: Path, parent_path: Path | None = None) -> Iterator[WalkEntry]:
    """Yield every file under ``root``, files before subdirectories, by name.

    A directory ``foo/`` with a sibling ``foo.md`` or ``foo.mdx`` makes that
    sibling the parent of every file below it. Otherwise the parent inherited
    from the enclosing directory is passed down. Since files come first, a
    parent is always yielded before its children.
    """
    root = Path(root)
    if not root.is_dir():
        raise SetupError(f"Docs root not found: {root}")

    try:
        children = sorted(root.iterdir(), key=lambda child: child.name)
    except OSError as exc:
        raise SetupError(f"Unable to list {root}: {exc}") from exc
    names = {child.name for child in children}
    for child in children:
        if child.is_file():
            yield WalkEntry(path=child, parent_path=parent_path)
    for child in children:
        if child.is_dir():
            sibling = next(
                (child.with_name(child.name + suffix) for suffix in DOC_SUFFIXES
                 if child.name + suffix in names),
                None,
            )
            yield from walk_docs(child, sibling if sibling is not None else parent_path)


def is_doc_file(path: Path) -> bool:
    return path.suffix.lower() in DOC_SUFFIXES


def logical_path(file_path: Path, root: Path) -> str:
    """Map ``<root>/guides/auth.mdx`` to ``/guides/auth``."""
    file_path = Path(file_path)
    try:
        relative = file_path.relative_to(root)
    except ValueError:
        relative = file_path
    if relative.suffix.lower() in DOC_SUFFIXES:
        relative = relative.with_suffix("")
    return "/" + relative.as_posix().lstrip("/")


def compute_checksum(text: str) -> str:
    """Compute the SHA256 hex digest of a document's full text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
