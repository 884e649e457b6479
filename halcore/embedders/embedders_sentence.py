"""
Sentence Embedder - sentence-transformers tier

WHAT: Lazy-loaded sentence-transformers model producing sentence-level vectors
WHERE: halcore/embedders/embedders_sentence.py - tier 1 of the embedding ladder
WHO: TieredEmbedder for queries, messages and document chunks
TIME: One-time model load (seconds); per-text encode in milliseconds on CPU

The package is an optional extra (`pip install hal-memory[embeddings]`).
When it is missing, `load()` raises MissingDependencyError and the tiered
facade switches to the hash tier for the rest of the process.
"""

from __future__ import annotations

import importlib
import logging
import threading
from typing import Any, List, Optional, Sequence

import numpy as np

from ..errors import ExtractionError, MissingDependencyError
from .base import EmbedderBase, Embedding, EmbeddingConfig

logger = logging.getLogger(__name__)

REQUIRED_PACKAGE = "sentence_transformers"


class SentenceTransformerEmbedder(EmbedderBase):
    """Wraps a `SentenceTransformer` model; output is not forced to unit length."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model: Any = None
        self._dim: int | None = None
        self._lock = threading.Lock()

    @staticmethod
    def dependencies_available() -> bool:
        try:
            importlib.import_module(REQUIRED_PACKAGE)
        except ImportError:
            return False
        return True

    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        """Load the model once; safe to call repeatedly."""

        if self._model is not None:
            return
        with self._lock:
            if self._model is not None:
                return
            try:
                module = importlib.import_module(REQUIRED_PACKAGE)
            except ImportError as exc:
                raise MissingDependencyError(
                    "sentence-transformers is not installed. "
                    "Install with `pip install hal-memory[embeddings]`."
                ) from exc

            logger.info(f"Loading sentence model {self.config.model_name} on {self.config.device}")
            model = module.SentenceTransformer(
                self.config.model_name,
                device=self.config.device,
                trust_remote_code=self.config.trust_remote_code,
            )
            self._dim = int(model.get_sentence_embedding_dimension() or 0)
            self._model = model

    @property
    def space(self) -> str:
        dim = self._dim if self._dim is not None else 0
        return f"st:{self.config.model_name}:{dim}"

    def _encode(self, texts: List[str], batch_size: int) -> np.ndarray:
        self.load()
        try:
            vectors = self._model.encode(
                texts,
                batch_size=batch_size,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise ExtractionError(f"{self.config.model_name} failed to encode {len(texts)} text(s): {exc}") from exc
        return np.asarray(vectors, dtype=np.float32)

    def embed_query(self, text: str) -> Embedding:
        if not text or not text.strip():
            return Embedding.empty()
        vectors = self._encode([text], batch_size=1)
        return Embedding(vector=vectors[0], space=self.space)

    def embed_documents(self, texts: Sequence[str], batch_size: Optional[int] = None) -> List[Embedding]:
        results: List[Embedding] = [Embedding.empty() for _ in texts]
        indexed = [(i, t) for i, t in enumerate(texts) if t and t.strip()]
        if not indexed:
            return results
        vectors = self._encode([t for _, t in indexed], batch_size=batch_size or self.config.batch_size)
        space = self.space
        for (i, _), vec in zip(indexed, vectors):
            results[i] = Embedding(vector=vec, space=space)
        return results


__all__ = ["SentenceTransformerEmbedder"]
