"""
Similarity Search - Linear-scan semantic recall over recent content

WHAT: Cosine-similarity search over the newest conversation and document units
WHERE: halcore/runtime/memory/similarity.py - retrieval layer above the content store
WHO: ConversationSession (context injection), MemoryOrchestrator.search
TIME: ≤100 candidate comparisons per query plus one query embedding

Algorithm:
1. Embed the query; an empty query embedding yields an empty result.
2. Scan up to 50 recent document units, newest first.
3. Scan up to 50 recent conversation units from other conversations.
4. Accept candidates with cosine ≥ threshold; each half stops after
   max(1, max_results // 2) accepted hits. Accepted hits keep recency order.

Vector-space policy: a candidate whose `embedding_space` differs from the
query's is not compared (cosine across models is meaningless) and is counted
in `skipped_incomparable`. Candidates with a malformed or missing vector are
re-embedded from their text for this query only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ...embedders import Embedding, EmbedderBase
from .entities import EntityStrategy, NoOpEntityStrategy
from .memory_store import PAGE_SIZE, ContentStore
from .models import DOCUMENT_KINDS, ContentUnit, RelevantContext, SearchHit
from .telemetry import SPAN_SEARCH, NoOpTelemetryClient, TelemetryClient
from .turn_manager import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_RELEVANCE_THRESHOLD = 0.3
DEFAULT_MAX_RESULTS = 10


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine of two vectors in [-1, 1]; 0.0 for empty, zero-norm or mismatched inputs."""

    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size == 0 or vb.size == 0 or va.size != vb.size:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


@dataclass(slots=True)
class SearchConfig:
    relevance_threshold: float = DEFAULT_RELEVANCE_THRESHOLD
    max_results: int = DEFAULT_MAX_RESULTS
    page_size: int = PAGE_SIZE


class SimilaritySearch:
    """Thresholded top-k recall partitioned into conversation and document hits."""

    def __init__(
        self,
        store: ContentStore,
        embedder: EmbedderBase,
        *,
        config: SearchConfig | None = None,
        entity_strategy: EntityStrategy | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.config = config or SearchConfig()
        self._entities = entity_strategy or NoOpEntityStrategy()
        self._telemetry = telemetry or NoOpTelemetryClient()

    def search(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        max_results: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> RelevantContext:
        limit = self.config.max_results if max_results is None else max_results
        cutoff = self.config.relevance_threshold if threshold is None else threshold
        per_half = max(1, limit // 2)

        with self._telemetry.span(SPAN_SEARCH, attributes={"max_results": limit, "threshold": cutoff}) as span:
            query_embedding = self._embedder.embed_query(query)
            if query_embedding.is_empty:
                span.set_attribute("hits", 0)
                return RelevantContext()

            documents = self._store.scan_recent(DOCUMENT_KINDS, limit=self.config.page_size)
            conversations = self._store.scan_recent(
                "conversation", exclude_source_id=conversation_id, limit=self.config.page_size
            )
            document_hits, doc_skipped = self._scan(documents, query_embedding, cutoff, per_half)
            conversation_hits, conv_skipped = self._scan(conversations, query_embedding, cutoff, per_half)

            context = RelevantContext(
                conversation_hits=conversation_hits,
                document_hits=document_hits,
                entity_matches=self._entities.match(query),
                total_tokens=sum(estimate_tokens(h.unit.text) for h in conversation_hits + document_hits),
                skipped_incomparable=doc_skipped + conv_skipped,
            )
            span.set_attribute("hits", len(conversation_hits) + len(document_hits))
            span.set_attribute("skipped_incomparable", context.skipped_incomparable)
            span.set_attribute("space", query_embedding.space)

        if context.skipped_incomparable:
            logger.info(
                f"Skipped {context.skipped_incomparable} candidate(s) embedded outside {query_embedding.space}; "
                "run reembed_incomparable() to include them"
            )
        return context

    def _scan(
        self,
        candidates: Iterable[ContentUnit],
        query: Embedding,
        threshold: float,
        limit: int,
    ) -> Tuple[List[SearchHit], int]:
        hits: List[SearchHit] = []
        skipped = 0
        for unit in candidates:
            vector = self._comparable_vector(unit, query.space)
            if vector is None:
                skipped += 1
                continue
            score = cosine_similarity(query.vector, vector)
            if score >= threshold:
                hits.append(SearchHit(unit=unit, relevance_score=score))
                if len(hits) >= limit:
                    break
        return hits, skipped

    def _comparable_vector(self, unit: ContentUnit, space: str) -> Optional[np.ndarray]:
        """Vector to compare against a query in *space*, or None if the unit lives elsewhere."""

        if unit.embedding_malformed or not unit.embedding:
            if not unit.text.strip():
                return np.zeros(0, dtype=np.float32)
            fresh = self._embedder.embed_query(unit.text)
            return fresh.vector if fresh.space == space else None
        stored_space = unit.embedding_space
        if stored_space and stored_space != space:
            return None
        return unit.vector()


__all__ = [
    "DEFAULT_MAX_RESULTS",
    "DEFAULT_RELEVANCE_THRESHOLD",
    "SearchConfig",
    "SimilaritySearch",
    "cosine_similarity",
]
