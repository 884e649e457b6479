"""
Memory Models - Type-safe data structures for conversational memory

WHAT: Pydantic models for content units, sources, entities, stats and search results
WHERE: halcore/runtime/memory/models.py - data layer
WHO: Content store, similarity search, sessions and the document importer
TIME: Model validation <1ms

Provides type-safe models matching the SQLite schema in memory_store.py.
All persisted models include:
- Timestamp handling (ISO 8601 + Unix)
- Content hashing (`sha256:<hex>`)
- Embedding vectors stored as little-endian float32 BLOBs
- Metadata dictionaries for extensibility

Boundary Notes:
- A ContentUnit is keyed by (source_kind, source_id, position); re-writing the
  same key replaces the stored row
- `metadata["embedding_space"]` names the vector space an embedding lives in;
  vectors from different spaces are never compared
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

SourceKind = Literal["conversation", "document", "webpage", "email"]
SOURCE_KINDS: Tuple[str, ...] = ("conversation", "document", "webpage", "email")
DOCUMENT_KINDS: Tuple[str, ...] = ("document", "webpage", "email")

EMBEDDING_SPACE_KEY = "embedding_space"


def generate_content_hash(content: str) -> str:
    """Generate SHA-256 hash of content for deduplication."""
    return f"sha256:{hashlib.sha256(content.encode('utf-8')).hexdigest()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(raw: Any) -> datetime:
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def _load_json(raw: Any) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding unreadable metadata column")
        return {}
    return value if isinstance(value, dict) else {}


def encode_embedding(vector: Any) -> bytes:
    """Serialize a vector as float32 bytes; empty input gives an empty BLOB."""

    arr = np.asarray(vector if vector is not None else [], dtype=np.float32).ravel()
    return arr.tobytes()


def decode_embedding(blob: Optional[bytes]) -> Optional[np.ndarray]:
    """Inverse of :func:`encode_embedding`.

    Returns an empty array for an empty BLOB and None when the bytes cannot be
    a float32 vector (wrong length or non-finite values).
    """

    if not blob:
        return np.zeros(0, dtype=np.float32)
    if len(blob) % 4 != 0:
        return None
    arr = np.frombuffer(blob, dtype=np.float32)
    if not np.all(np.isfinite(arr)):
        return None
    return arr.copy()


class ContentUnit(BaseModel):
    """
    One retrievable fragment: a conversation message or a document chunk.

    Examples:
    - user message at position 4 of conversation "c-1"
    - chunk 12 of document "d-7f3a"
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    text: str
    embedding: List[float] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    source_kind: SourceKind = "conversation"
    source_id: str
    position: int = Field(ge=0)
    is_user: bool = False
    entity_count: int = 0
    content_hash: str = Field(default="")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    def model_post_init(self, __context: Any) -> None:
        """Auto-generate the content hash after initialization."""
        if not self.content_hash:
            self.content_hash = generate_content_hash(self.text)

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.source_kind, self.source_id, self.position)

    @property
    def embedding_space(self) -> str:
        return str(self.metadata.get(EMBEDDING_SPACE_KEY, ""))

    @property
    def embedding_malformed(self) -> bool:
        return bool(self.metadata.get("embedding_malformed", False))

    def vector(self) -> np.ndarray:
        return np.asarray(self.embedding, dtype=np.float32)

    def to_row(self) -> Dict[str, Any]:
        """Convert to the `content` table column mapping."""
        metadata = {k: v for k, v in self.metadata.items() if k != "embedding_malformed"}
        return {
            "id": self.id,
            "text": self.text,
            "embedding_bytes": encode_embedding(self.embedding),
            "timestamp": self.timestamp.timestamp(),
            "source_kind": self.source_kind,
            "source_id": self.source_id,
            "position": int(self.position),
            "is_user": 1 if self.is_user else 0,
            "entity_count": int(self.entity_count),
            "content_hash": self.content_hash,
            "metadata": json.dumps(metadata, default=str),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row | Mapping[str, Any]) -> ContentUnit:
        """Create instance from a `content` row; unreadable vectors are flagged, not raised."""
        metadata = _load_json(row["metadata"])
        vector = decode_embedding(row["embedding_bytes"])
        if vector is None:
            logger.warning(f"Malformed embedding for {row['source_kind']}/{row['source_id']}#{row['position']}")
            metadata["embedding_malformed"] = True
            vector = np.zeros(0, dtype=np.float32)
        return cls(
            id=row["id"],
            text=row["text"],
            embedding=vector.tolist(),
            timestamp=_parse_ts(row["timestamp"]),
            source_kind=row["source_kind"],
            source_id=row["source_id"],
            position=int(row["position"]),
            is_user=bool(row["is_user"]),
            entity_count=int(row["entity_count"] or 0),
            content_hash=row["content_hash"] or "",
            metadata=metadata,
            created_at=_parse_ts(row["created_at"]),
        )


class Source(BaseModel):
    """
    Logical owner of content units: one conversation or one imported document.

    Conversation sources keep session state in metadata
    (`watermark`, `summary`, `memory_depth`, `system_prompt`).
    """

    id: str
    kind: SourceKind
    display_name: str = ""
    path_or_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    chunk_count: int = 0
    entity_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    content_hash: str = ""
    size: int = 0

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "display_name": self.display_name,
            "path_or_url": self.path_or_url,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "chunk_count": int(self.chunk_count),
            "entity_count": int(self.entity_count),
            "metadata": json.dumps(self.metadata, default=str),
            "content_hash": self.content_hash,
            "size": int(self.size),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row | Mapping[str, Any]) -> Source:
        return cls(
            id=row["id"],
            kind=row["kind"],
            display_name=row["display_name"] or "",
            path_or_url=row["path_or_url"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            chunk_count=int(row["chunk_count"] or 0),
            entity_count=int(row["entity_count"] or 0),
            metadata=_load_json(row["metadata"]),
            content_hash=row["content_hash"] or "",
            size=int(row["size"] or 0),
        )


class Entity(BaseModel):
    """Named entity found inside a content unit (schema kept; unused by the no-op strategy)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    text: str = Field(min_length=1)
    type: str = "unknown"
    content_id: str
    source_kind: SourceKind
    source_id: str
    position: int = 0
    range: Tuple[int, int] = (0, 0)
    confidence: float = Field(ge=0.0, le=1.0, default=1.0)

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type,
            "content_id": self.content_id,
            "source_kind": self.source_kind,
            "source_id": self.source_id,
            "position": int(self.position),
            "range": f"{self.range[0]}:{self.range[1]}",
            "confidence": float(self.confidence),
        }


class MemoryStats(BaseModel):
    """Aggregate counters recomputed by full rescans of the store."""

    conversations: int = 0
    user_messages: int = 0
    documents: int = 0
    document_chunks: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.conversations or self.user_messages or self.documents or self.document_chunks)


class SearchHit(BaseModel):
    """Content unit accepted by similarity search with its relevance score."""

    unit: ContentUnit
    relevance_score: float = Field(ge=-1.0, le=1.0)


class RelevantContext(BaseModel):
    """Similarity search output, partitioned by source kind."""

    conversation_hits: List[SearchHit] = Field(default_factory=list)
    document_hits: List[SearchHit] = Field(default_factory=list)
    entity_matches: List[str] = Field(default_factory=list)
    total_tokens: int = 0
    skipped_incomparable: int = 0

    @property
    def conversation_snippets(self) -> List[str]:
        return [hit.unit.text for hit in self.conversation_hits]

    @property
    def document_snippets(self) -> List[str]:
        return [hit.unit.text for hit in self.document_hits]

    @property
    def relevance_scores(self) -> List[float]:
        return [hit.relevance_score for hit in self.conversation_hits + self.document_hits]

    @property
    def has_context(self) -> bool:
        return bool(self.conversation_hits or self.document_hits or self.entity_matches)


__all__ = [
    "ContentUnit",
    "DOCUMENT_KINDS",
    "EMBEDDING_SPACE_KEY",
    "Entity",
    "MemoryStats",
    "RelevantContext",
    "SOURCE_KINDS",
    "SearchHit",
    "Source",
    "SourceKind",
    "decode_embedding",
    "encode_embedding",
    "generate_content_hash",
    "utcnow",
]
