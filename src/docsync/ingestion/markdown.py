"""Markdown/MDX processing for search indexing.

Extracts front matter and a checksum from a raw document, then splits the
document into overlapping token windows. Each window is re-parsed on its own
so it can carry the first heading it contains and a slug for that heading.
"""

from __future__ import annotations

import datetime as _dt
import logging
import math
import re
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Tuple

import yaml

from docsync.embedding.tokenizer import Tokenizer
from docsync.models import ExtractedText, LoadResult, Section
from docsync.utils.files import compute_checksum
from docsync.utils.text import Slugger, parse_heading, window_tokens

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_TOKENS = 400
DEFAULT_OVERLAP_TOKENS = 100

_FRONT_MATTER = re.compile(
    r"\A---[ \t]*\r?\n(?P<yaml>.*?)^(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)
_ESM_LINE = re.compile(r"^(?:import|export)\s.*$\n?", re.MULTILINE)
_MDX_COMMENT = re.compile(r"\{/\*.*?\*/\}", re.DOTALL)
_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)

_FENCE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_ATX_HEADING = re.compile(r"^ {0,3}#{1,6}(?:[ \t]+(?P<text>.*?))?(?:[ \t]+#+)?[ \t]*$")
_SETEXT_UNDERLINE = re.compile(r"^ {0,3}(?:=+|-+)[ \t]*$")

_INLINE_RULES: Tuple[Tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"!\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]*\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\[[^\]]*\]"), r"\1"),
    (re.compile(r"(`+)(.+?)\1"), r"\2"),
    (re.compile(r"<[^>\n]+>"), ""),
    (re.compile(r"(\*\*|__)(.+?)\1"), r"\2"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"(?<!\w)_(.+?)_(?!\w)"), r"\1"),
    (re.compile(r"~~(.+?)~~"), r"\1"),
)

_DROP = object()


def to_json_safe(value: Any) -> Any:
    """Deep-copy ``value`` keeping only what survives a JSON round trip.

    Dates become ISO strings and non-finite floats become ``None``. Values
    that cannot be serialized, and references that would form a cycle, are
    dropped from mappings and replaced by ``None`` in lists.
    """
    converted = _to_json_safe(value, set())
    return None if converted is _DROP else converted


def _to_json_safe(value: Any, seen: set[int]) -> Any:
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (_dt.date, _dt.datetime, _dt.time)):
        return value.isoformat()
    if isinstance(value, Mapping):
        if id(value) in seen:
            return _DROP
        seen.add(id(value))
        result: Dict[str, Any] = {}
        for key, item in value.items():
            converted = _to_json_safe(item, seen)
            if converted is not _DROP:
                result[str(key)] = converted
        seen.discard(id(value))
        return result
    if isinstance(value, (list, tuple)):
        if id(value) in seen:
            return _DROP
        seen.add(id(value))
        items = []
        for item in value:
            converted = _to_json_safe(item, seen)
            items.append(None if converted is _DROP else converted)
        seen.discard(id(value))
        return items
    return _DROP


def parse_front_matter(raw_text: str) -> Tuple[Optional[Dict[str, Any]], str]:
    """Split a leading YAML front matter block from the body.

    Returns ``(None, raw_text)`` when there is no block or it is not valid YAML.
    """
    match = _FRONT_MATTER.match(raw_text)
    if not match:
        return None, raw_text

    try:
        data = yaml.safe_load(match.group("yaml"))
    except yaml.YAMLError as exc:
        LOGGER.warning("Ignoring malformed front matter: %s", exc)
        return None, raw_text

    if not isinstance(data, Mapping):
        data = {}
    return to_json_safe(data), raw_text[match.end() :]


def strip_non_prose(body: str) -> str:
    """Remove MDX import/export statements and comments."""
    body = _MDX_COMMENT.sub("", body)
    body = _HTML_COMMENT.sub("", body)
    return _ESM_LINE.sub("", body)


def extract(raw_text: str) -> ExtractedText:
    """Compute the checksum of the whole input and separate meta from prose."""
    checksum = compute_checksum(raw_text)
    meta, body = parse_front_matter(raw_text)
    return ExtractedText(checksum=checksum, meta=meta, prose=strip_non_prose(body).strip())


def heading_text(raw: str) -> str:
    """Reduce inline markup in a heading to its plain text."""
    text = raw
    for pattern, replacement in _INLINE_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def find_first_heading(text: str) -> Optional[str]:
    """Return the plain text of the first ATX or setext heading in ``text``.

    Headings inside fenced code blocks and a leading front matter block are
    not considered.
    """
    match = _FRONT_MATTER.match(text)
    if match:
        text = text[match.end() :]

    fence: Optional[str] = None
    previous: Optional[str] = None
    for line in text.splitlines():
        fence_match = _FENCE.match(line)
        if fence is not None:
            if fence_match and fence_match.group(1)[0] == fence[0] and len(fence_match.group(1)) >= len(fence):
                fence = None
            continue
        if fence_match:
            fence = fence_match.group(1)
            previous = None
            continue

        atx = _ATX_HEADING.match(line)
        if atx:
            return heading_text(atx.group("text") or "")
        if previous is not None and _SETEXT_UNDERLINE.match(line):
            return heading_text(previous)

        # Indented code and blank lines cannot start a setext heading
        previous = line if line.strip() and not line.startswith("    ") else None
    return None


def chunk(
    raw_text: str,
    *,
    tokenizer: Tokenizer,
    slugger: Slugger,
    chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> List[Section]:
    """Split the full raw text into overlapping token windows."""
    tokens = tokenizer.encode(raw_text)
    sections: List[Section] = []
    for window in window_tokens(tokens, size=chunk_tokens, overlap=overlap_tokens):
        content = tokenizer.decode(window).strip()
        if not content:
            continue

        raw_heading = find_first_heading(content)
        if raw_heading:
            heading, anchor = parse_heading(raw_heading)
            slug = slugger.slug(anchor or heading)
            if heading and slug:
                sections.append(Section(content=content, heading=heading, slug=slug))
                continue
        sections.append(Section(content=content))
    return sections


def process_markdown(
    raw_text: str,
    *,
    tokenizer: Tokenizer,
    chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> LoadResult:
    """Extract metadata and sections from a Markdown/MDX document."""
    extracted = extract(raw_text)
    if not extracted.prose:
        return LoadResult(checksum=extracted.checksum, meta=extracted.meta, sections=[])

    sections = chunk(
        raw_text,
        tokenizer=tokenizer,
        slugger=Slugger(),
        chunk_tokens=chunk_tokens,
        overlap_tokens=overlap_tokens,
    )
    return LoadResult(checksum=extracted.checksum, meta=extracted.meta, sections=sections)
