"""
Hash Embedder - deterministic fallback tier

WHAT: Fixed 64-dimension embedding derived from a stable string hash
WHERE: halcore/embedders/embedders_hash.py - tier 2 of the embedding ladder
WHO: TieredEmbedder whenever the sentence model is unavailable or fails
TIME: O(len(text)) hashing, no model load, never raises

The vector only captures identity of the normalized text: two texts that
lowercase and trim to the same string map to the same unit vector, anything
else maps to an unrelated one. It keeps retrieval functional (exact repeats
still match) on machines without a sentence model.
"""

from __future__ import annotations

import hashlib

import numpy as np

from .base import EmbedderBase, Embedding

HASH_EMBED_DIM = 64
HASH_SPACE = f"hash-v1:{HASH_EMBED_DIM}"

# Odd 64-bit multipliers; odd keeps the multiply a bijection modulo 2**64.
_SEEDS = (
    0x9E3779B97F4A7C15,
    0xBF58476D1CE4E5B9,
    0x94D049BB133111EB,
    0x2545F4914F6CDD1D,
    0xD6E8FEB86659FD93,
    0xA0761D6478BD642F,
    0xE7037ED1A0B428DB,
    0x8EBC6AF09C88C6E3,
)
_COMPONENTS_PER_SEED = 8
_MASK64 = (1 << 64) - 1


def stable_hash(text: str) -> int:
    """64-bit hash that is identical across processes and platforms."""

    digest = hashlib.blake2b(text.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


def hash_embedding(text: str, dim: int = HASH_EMBED_DIM) -> np.ndarray:
    """Return the tier-2 vector for *text*, or an empty vector for blank input."""

    normalized = text.lower().strip()
    if not normalized:
        return np.zeros(0, dtype=np.float32)

    base = stable_hash(normalized)
    components: list[float] = []
    for seed in _SEEDS:
        combined = ((base ^ seed) * seed) & _MASK64
        for i in range(_COMPONENTS_PER_SEED):
            components.append(((combined >> (8 * i)) & 0xFF) / 255.0)

    raw = np.asarray(components, dtype=np.float32)
    norm = float(np.linalg.norm(raw))
    if norm > 0.0:
        raw = raw / norm

    out = np.zeros(dim, dtype=np.float32)
    n = min(dim, raw.size)
    out[:n] = raw[:n]
    return out


class HashEmbedder(EmbedderBase):
    """Embedder wrapper around :func:`hash_embedding`."""

    @property
    def space(self) -> str:
        return HASH_SPACE

    def embed_query(self, text: str) -> Embedding:
        vector = hash_embedding(text)
        if vector.size == 0:
            return Embedding.empty()
        return Embedding(vector=vector, space=HASH_SPACE)


__all__ = [
    "HASH_EMBED_DIM",
    "HASH_SPACE",
    "HashEmbedder",
    "hash_embedding",
    "stable_hash",
]
