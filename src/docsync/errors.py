"""Exception hierarchy for docsync.

Setup failures abort the whole run. Read, store and provider failures are
scoped to the document being reconciled: the reconciler logs them and moves
on to the next document.
"""

from __future__ import annotations

__all__ = [
    "DocSyncError",
    "ReadError",
    "StoreError",
    "ProviderError",
    "SetupError",
]


class DocSyncError(RuntimeError):
    """Base exception for docsync failures."""


class ReadError(DocSyncError):
    """Raised when a source document cannot be read."""


class StoreError(DocSyncError):
    """Raised when a persistence operation fails."""


class ProviderError(DocSyncError):
    """Raised when an embedding call fails or returns a malformed response."""


class SetupError(DocSyncError):
    """Raised when top-level configuration is missing or invalid."""
