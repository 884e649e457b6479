"""
Embedder Base - shared types for the embedding tiers

WHAT: Embedding result type, embedder configuration, and the abstract embedder
WHERE: halcore/embedders/base.py - leaf of the dependency graph
WHO: Tier implementations and the tiered facade
TIME: n/a (type definitions only)

Every embedding carries the identifier of the vector space it lives in, so
consumers never compare vectors produced by different models.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"


@dataclass(slots=True)
class EmbeddingConfig:
    """Configuration for the sentence-level (tier 1) embedding model."""

    model_name: str = DEFAULT_MODEL_NAME
    device: str = "cpu"
    batch_size: int = 16
    normalize: bool = False
    trust_remote_code: bool = False

    @staticmethod
    def from_env() -> "EmbeddingConfig":
        defaults = EmbeddingConfig()
        return EmbeddingConfig(
            model_name=os.getenv("HAL_EMBED_MODEL", defaults.model_name).strip(),
            device=os.getenv("HAL_EMBED_DEVICE", defaults.device).strip() or defaults.device,
            batch_size=int(os.getenv("HAL_EMBED_BATCH_SIZE", str(defaults.batch_size))),
        )


@dataclass(slots=True)
class Embedding:
    """A vector plus the identifier of the space it belongs to."""

    vector: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    space: str = ""

    @classmethod
    def empty(cls) -> "Embedding":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.vector.size == 0

    def tolist(self) -> List[float]:
        return [float(x) for x in self.vector]


class EmbedderBase(ABC):
    """Common interface for every embedding tier."""

    @property
    @abstractmethod
    def space(self) -> str:
        """Identifier of the vector space produced by this embedder."""

    @abstractmethod
    def embed_query(self, text: str) -> Embedding:
        """Embed a single text."""

    def embed_documents(self, texts: Sequence[str], batch_size: Optional[int] = None) -> List[Embedding]:
        """Embed many texts; the default implementation embeds one at a time."""

        return [self.embed_query(t) for t in texts]


__all__ = [
    "DEFAULT_MODEL_NAME",
    "Embedding",
    "EmbeddingConfig",
    "EmbedderBase",
]
