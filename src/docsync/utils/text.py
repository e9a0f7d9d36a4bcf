"""Text helpers: token windowing, heading slugs and embedding input cleanup."""

from __future__ import annotations

import re
from typing import Dict, Iterator, Optional, Sequence, Tuple

_SLUG_STRIP = re.compile(r"[^\w\- ]")
_CUSTOM_ANCHOR = re.compile(r"(.*?) *\[#(.*)\]\s*$")


def window_tokens(
    tokens: Sequence[int], *, size: int = 400, overlap: int = 100
) -> Iterator[Sequence[int]]:
    """Split a token sequence into overlapping windows.

    Windows start every ``size - overlap`` tokens and hold up to ``size``
    tokens. Iteration stops after the first window that reaches the end of
    the sequence, so short inputs produce a single window.
    """
    if size <= 0:
        raise ValueError("Window size must be positive")
    if overlap < 0 or overlap >= size:
        raise ValueError("Overlap must be in [0, size)")

    step = size - overlap
    for start in range(0, len(tokens), step):
        yield tokens[start : start + size]
        if start + size >= len(tokens):
            break


def slugify(value: str) -> str:
    """GitHub-style slug: lower-cased, punctuation dropped, spaces to hyphens."""
    return _SLUG_STRIP.sub("", value.lower()).replace(" ", "-")


class Slugger:
    """Generates slugs that are unique for the lifetime of the instance.

    Create one per document: the occurrence counter is what turns a second
    ``Setup`` heading into ``setup-1``.
    """

    def __init__(self) -> None:
        self.occurrences: Dict[str, int] = {}

    def slug(self, value: str) -> str:
        result = slugify(value)
        original = result
        while result in self.occurrences:
            self.occurrences[original] += 1
            result = f"{original}-{self.occurrences[original]}"
        self.occurrences[result] = 0
        return result


def parse_heading(heading: str) -> Tuple[str, Optional[str]]:
    """Split ``My Heading [#my-anchor]`` into the heading and its custom anchor."""
    match = _CUSTOM_ANCHOR.match(heading)
    if match:
        return match.group(1), match.group(2)
    return heading, None


def normalize_embedding_input(text: str) -> str:
    """Replace newlines with spaces; embedding models score better without them."""
    return text.replace("\n", " ")
