"""
Tiered Embedder - sentence model first, hash fallback always

WHAT: Facade that embeds text with tier 1 when possible and tier 2 otherwise
WHERE: halcore/embedders/tiered.py - the embedder every runtime component uses
WHO: Content store writers, similarity search, document import
TIME: Tier 1 latency when loaded; tier 2 is effectively free

Rules:
- Blank input yields an empty embedding (the "no embedding" signal).
- A tier-1 load failure (missing package, unreadable model) disables tier 1
  for the lifetime of this object and is logged once.
- A tier-1 failure on a single call falls back to tier 2 for that call only.
- An optional augmenter hook may post-process vectors (entity augmentation);
  the default strategy leaves them untouched.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Sequence

import numpy as np

from .base import EmbedderBase, Embedding
from .embedders_hash import HashEmbedder

logger = logging.getLogger(__name__)

Augmenter = Callable[[str, np.ndarray], np.ndarray]


class TieredEmbedder(EmbedderBase):
    def __init__(
        self,
        primary: EmbedderBase | None = None,
        fallback: EmbedderBase | None = None,
        *,
        augmenter: Augmenter | None = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback or HashEmbedder()
        self._augmenter = augmenter
        self._primary_disabled = primary is None
        self._lock = threading.Lock()

    @property
    def primary_available(self) -> bool:
        return not self._primary_disabled

    @property
    def tier(self) -> int:
        return 1 if self.primary_available else 2

    @property
    def space(self) -> str:
        """Space of the active tier; resolving it loads tier 1 on first access."""
        if self._ensure_primary():
            return self._primary.space  # type: ignore[union-attr]
        return self._fallback.space

    def disable_primary(self, reason: str) -> None:
        with self._lock:
            if self._primary_disabled:
                return
            self._primary_disabled = True
        logger.warning(f"Sentence embedding tier disabled, using hash fallback: {reason}")

    def _ensure_primary(self) -> bool:
        if self._primary_disabled or self._primary is None:
            return False
        load = getattr(self._primary, "load", None)
        if load is None:
            return True
        try:
            load()
        except Exception as exc:
            self.disable_primary(str(exc))
            return False
        return True

    def _augment(self, text: str, embedding: Embedding) -> Embedding:
        if self._augmenter is None or embedding.is_empty:
            return embedding
        return Embedding(vector=self._augmenter(text, embedding.vector), space=embedding.space)

    def embed_query(self, text: str) -> Embedding:
        if not text or not text.strip():
            return Embedding.empty()

        if self._ensure_primary():
            try:
                result = self._primary.embed_query(text)  # type: ignore[union-attr]
                if not result.is_empty:
                    return self._augment(text, result)
            except Exception as exc:
                logger.warning(f"Sentence embedding failed, using hash fallback for this text: {exc}")

        return self._augment(text, self._fallback.embed_query(text))

    def embed_documents(self, texts: Sequence[str], batch_size: Optional[int] = None) -> List[Embedding]:
        if self._ensure_primary():
            try:
                results = self._primary.embed_documents(texts, batch_size=batch_size)  # type: ignore[union-attr]
                return [self._augment(t, r) for t, r in zip(texts, results)]
            except Exception as exc:
                logger.warning(f"Batch sentence embedding failed, using hash fallback: {exc}")

        return [self._augment(t, self._fallback.embed_query(t)) for t in texts]


__all__ = ["TieredEmbedder", "Augmenter"]
