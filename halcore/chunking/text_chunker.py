"""
Sentence-aware Text Chunker
===========================

Splits long text into overlapping chunks sized for retrieval.

Chunks are built from sentences; when the next sentence would push a chunk
past the target size the chunk is closed and the next one is seeded with the
tail of the closed chunk, trimmed forward so it starts on a word. Sentences
longer than the target are packed word by word with the same rule.

When the splitter finds nothing the text is split on line breaks instead;
an unbroken block then ends up packed word by word.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 400
DEFAULT_CHUNK_OVERLAP = 50

# Terminal punctuation plus trailing closing quotes/brackets. Latin-style marks
# need following whitespace (so "3.14" stays whole); CJK full stops do not.
_SENTENCE_END = re.compile(
    r"[.!?…।؟]+[\"'”’)\]]*(?=\s|$)"
    r"|[。！？]+[」』”’）)]*"
)
_PARAGRAPH_BREAK = re.compile(r"\n+")

SentenceSplitter = Callable[[str], List[str]]


def split_sentences(text: str) -> List[str]:
    """Split *text* on sentence boundaries; returns trimmed, non-empty pieces."""

    sentences: List[str] = []
    start = 0
    for match in _SENTENCE_END.finditer(text):
        piece = text[start:match.end()].strip()
        if piece:
            sentences.append(piece)
        start = match.end()
    rest = text[start:].strip()
    if rest:
        sentences.append(rest)
    return sentences


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]


def overlap_tail(chunk: str, overlap: int) -> str:
    """Return the last *overlap* characters of *chunk*, starting on a whole word.

    An empty string means no word fits entirely inside the overlap window.
    """

    if overlap <= 0 or not chunk:
        return ""
    if len(chunk) <= overlap:
        return chunk.strip()

    start = len(chunk) - overlap
    tail = chunk[start:]
    if not chunk[start - 1].isspace() and not tail[0].isspace():
        # Window opens mid-word; skip to the next boundary.
        match = re.search(r"\s", tail)
        if match is None:
            return ""
        tail = tail[match.end():]
    return tail.strip()


class _Packer:
    """Accumulates units into chunks, seeding each new chunk with an overlap."""

    def __init__(self, target: int, overlap: int) -> None:
        self.target = target
        self.overlap = overlap
        self.chunks: List[str] = []
        self._current = ""
        self._has_content = False

    def add(self, unit: str) -> None:
        candidate = f"{self._current} {unit}" if self._current else unit
        if len(candidate) > self.target and self._has_content:
            closed = self._current.strip()
            self.chunks.append(closed)
            seed = overlap_tail(closed, self.overlap)
            self._current = f"{seed} {unit}" if seed else unit
        else:
            self._current = candidate
        self._has_content = True

    def add_words(self, text: str) -> None:
        for word in text.split():
            self.add(word)

    def finish(self) -> List[str]:
        if self._has_content and self._current.strip():
            self.chunks.append(self._current.strip())
        self._current = ""
        self._has_content = False
        return self.chunks


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
    *,
    splitter: Optional[SentenceSplitter] = None,
) -> List[str]:
    """Split *text* into ordered, overlapping chunks of about *chunk_size* characters.

    Args:
        text: Input text
        chunk_size: Target maximum chunk length in characters
        overlap: Approximate number of trailing characters repeated at the
            start of the following chunk
        splitter: Sentence splitter override (defaults to :func:`split_sentences`)

    Returns:
        Chunks in document order; empty for blank input
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    overlap = max(0, min(overlap, chunk_size // 2))

    trimmed = text.strip()
    if not trimmed:
        return []
    if len(trimmed) <= chunk_size:
        return [trimmed]

    units = (splitter or split_sentences)(trimmed)
    if not units:
        logger.debug("No sentence boundaries found; chunking by paragraph")
        units = split_paragraphs(trimmed)

    packer = _Packer(chunk_size, overlap)
    for unit in units:
        if len(unit) > chunk_size:
            packer.add_words(unit)
        else:
            packer.add(unit)
    return packer.finish()


__all__ = [
    "DEFAULT_CHUNK_OVERLAP",
    "DEFAULT_CHUNK_SIZE",
    "chunk_text",
    "overlap_tail",
    "split_paragraphs",
    "split_sentences",
]
