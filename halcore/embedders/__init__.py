"""
Embedders Module
================

Text → vector conversion with a two-tier ladder:

1. sentence-transformers model (optional extra), loaded lazily
2. deterministic 64-dimension hash embedding that never fails
"""

from __future__ import annotations

from .base import DEFAULT_MODEL_NAME, Embedding, EmbeddingConfig, EmbedderBase
from .embedders_hash import HASH_EMBED_DIM, HASH_SPACE, HashEmbedder, hash_embedding
from .embedders_sentence import SentenceTransformerEmbedder
from .tiered import Augmenter, TieredEmbedder

# Names that select the hash tier only.
HASH_ONLY_MODELS = frozenset({"", "hash", "none"})


def create_embedder(
    config: EmbeddingConfig | None = None,
    *,
    augmenter: Augmenter | None = None,
) -> TieredEmbedder:
    """Build the tiered embedder described by *config*.

    A model name of ``hash``/``none``/empty skips tier 1 entirely.
    """

    cfg = config or EmbeddingConfig()
    primary = None
    if cfg.model_name.strip().lower() not in HASH_ONLY_MODELS:
        primary = SentenceTransformerEmbedder(cfg)
    return TieredEmbedder(primary, HashEmbedder(), augmenter=augmenter)


__all__ = [
    "DEFAULT_MODEL_NAME",
    "Embedding",
    "EmbeddingConfig",
    "EmbedderBase",
    "HASH_EMBED_DIM",
    "HASH_SPACE",
    "HashEmbedder",
    "SentenceTransformerEmbedder",
    "TieredEmbedder",
    "create_embedder",
    "hash_embedding",
]
