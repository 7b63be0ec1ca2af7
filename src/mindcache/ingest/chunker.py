"""Boundary-aware sliding-window text chunker and excerpt builder.

Text is whitespace-normalized, then cut into windows of at most
``max_length`` characters. Each non-final window is cut just after the last
sentence/paragraph terminator it contains, falling back to a hard cut at the
window edge. Consecutive windows share at most ``overlap`` characters so
context carries across chunk boundaries.
"""

from __future__ import annotations

import re

DEFAULT_MAX_LENGTH = 1000
DEFAULT_OVERLAP = 100
DEFAULT_BOUNDARY = r"[。！？.!?\n]+"
DEFAULT_EXCERPT_LENGTH = 200

ELLIPSIS = "..."

_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_ENDS = ("。", ".", "！", "!", "？", "?")


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to a single space and trim both ends."""
    return _WHITESPACE_RE.sub(" ", text).strip()


class TextChunker:
    """Split text into overlapping, boundary-aware segments.

    Args:
        max_length: Maximum characters per chunk.
        overlap: Characters shared by consecutive chunks. Must be smaller than
            ``max_length`` or the window could never advance.
        boundary: Regex (string or compiled) matching preferred cut points.

    Raises:
        ValueError: On a configuration that cannot terminate.
    """

    def __init__(
        self,
        max_length: int = DEFAULT_MAX_LENGTH,
        overlap: int = DEFAULT_OVERLAP,
        boundary: str | re.Pattern[str] = DEFAULT_BOUNDARY,
    ) -> None:
        if max_length < 1:
            raise ValueError("max_length must be >= 1")
        if not 0 <= overlap < max_length:
            raise ValueError(
                f"overlap must be in [0, max_length), got overlap={overlap} max_length={max_length}"
            )
        self.max_length = max_length
        self.overlap = overlap
        self.boundary = re.compile(boundary) if isinstance(boundary, str) else boundary

    def chunk(self, text: str) -> list[str]:
        """Return the chunks of *text* in document order (``[]`` for blank text)."""
        cleaned = normalize_whitespace(text)
        if not cleaned:
            return []
        if len(cleaned) <= self.max_length:
            return [cleaned]

        chunks: list[str] = []
        length = len(cleaned)
        start = 0

        while start < length:
            end = start + self.max_length
            if end < length:
                end = self._boundary_cut(cleaned, start, end)

            segment = cleaned[start : min(end, length)].strip()
            if segment:
                chunks.append(segment)

            start = end - self.overlap
            if start >= length - self.overlap:
                break

        return chunks

    def _boundary_cut(self, text: str, start: int, end: int) -> int:
        """Return the cut position for the window ``text[start:end]``.

        Only boundaries that still move the next window forward past *start*
        (``match_end - overlap > start``) qualify; otherwise hard-cut at *end*.
        """
        cut = end
        for match in self.boundary.finditer(text, start, end):
            if match.end() - self.overlap > start:
                cut = match.end()
        return cut


def chunk_text(
    text: str,
    max_length: int = DEFAULT_MAX_LENGTH,
    overlap: int = DEFAULT_OVERLAP,
    boundary: str | re.Pattern[str] = DEFAULT_BOUNDARY,
) -> list[str]:
    """Functional shorthand for ``TextChunker(...).chunk(text)``."""
    return TextChunker(max_length=max_length, overlap=overlap, boundary=boundary).chunk(text)


def excerpt(text: str, max_length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    """Short preview of *text*, ending on a sentence boundary when one is close.

    If the last sentence terminator in the first *max_length* characters lies
    past the halfway point, the excerpt ends right after it; otherwise the
    prefix is hard-truncated and ``"..."`` appended.
    """
    cleaned = normalize_whitespace(text)
    if len(cleaned) <= max_length:
        return cleaned

    truncated = cleaned[:max_length]
    last_end = max(truncated.rfind(mark) for mark in _SENTENCE_ENDS)
    if last_end > max_length * 0.5:
        return truncated[: last_end + 1]
    return truncated + ELLIPSIS
