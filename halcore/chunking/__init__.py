"""
Chunking Module
===============

Sentence-aware chunking with word-boundary overlap for document import.
"""

from .text_chunker import (
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    chunk_text,
    overlap_tail,
    split_paragraphs,
    split_sentences,
)

__all__ = [
    "DEFAULT_CHUNK_OVERLAP",
    "DEFAULT_CHUNK_SIZE",
    "chunk_text",
    "overlap_tail",
    "split_paragraphs",
    "split_sentences",
]
