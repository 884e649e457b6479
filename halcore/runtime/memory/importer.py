"""
Document Importer - Chunk, embed and persist documents

WHAT: Turns a document's plain text into stored, embedded content units
WHERE: halcore/runtime/memory/importer.py - ingestion layer above the content store
WHO: MemoryOrchestrator.submit_import, scripts/import_documents.py
TIME: Dominated by batch embedding (tier 1) or ~1ms per chunk (hash tier)

Pipeline: extract text -> chunk_text -> embed_documents -> upsert each chunk
-> upsert Source (content hash, size) -> rescan chunk count.

Plain-text formats are read directly. Other formats go through an injected
DocumentExtractor (PDF/Office/HTML conversion lives outside this package).
Each chunk write is its own transaction keyed by (kind, source id, position),
so an interrupted import can simply be re-run. Source ids are derived from
the path or URL, so re-importing the same file replaces its chunks.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol

from ...chunking import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, chunk_text
from ...embedders import EmbedderBase
from ...errors import DocumentExtractionError
from .entities import EntityStrategy, NoOpEntityStrategy
from .memory_store import SQLiteContentStore
from .models import EMBEDDING_SPACE_KEY, ContentUnit, Source, SourceKind, generate_content_hash, utcnow
from .telemetry import SPAN_IMPORT, NoOpTelemetryClient, TelemetryClient

logger = logging.getLogger(__name__)

PLAIN_TEXT_FORMATS = frozenset({"txt", "text", "md", "markdown", "rst", "csv", "tsv", "json", "log", "yaml", "yml"})
# Chunks written by the last import; stale trailing rows from a longer version are not counted.
IMPORTED_CHUNKS_KEY = "imported_chunks"


class DocumentExtractor(Protocol):
    def extract(self, handle: BinaryIO, fmt: str) -> str:
        """Return the plain text of the document read from *handle*."""


def source_id_for(path_or_url: str) -> str:
    """Stable source id for a path or URL."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, path_or_url))


@dataclass(slots=True)
class ImportResult:
    source: Source
    chunks: int
    stored: int
    unchanged: bool = False

    @property
    def complete(self) -> bool:
        return self.unchanged or self.stored == self.chunks


class DocumentImporter:
    def __init__(
        self,
        store: SQLiteContentStore,
        embedder: EmbedderBase,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
        batch_size: Optional[int] = None,
        extractor: Optional[DocumentExtractor] = None,
        entity_strategy: Optional[EntityStrategy] = None,
        telemetry: Optional[TelemetryClient] = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.batch_size = batch_size
        self._extractor = extractor
        self._entities = entity_strategy or NoOpEntityStrategy()
        self._telemetry = telemetry or NoOpTelemetryClient()

    def import_text(
        self,
        display_name: str,
        text: str,
        path_or_url: Optional[str] = None,
        kind: SourceKind = "document",
        *,
        source_id: Optional[str] = None,
    ) -> ImportResult:
        """
        Chunk, embed and store *text* as one source.

        Args:
            display_name: Name shown for the source
            text: Plain text of the document
            path_or_url: Origin of the document; determines the source id
            kind: document, webpage or email
            source_id: Explicit id override

        Returns:
            ImportResult with chunk and stored counts

        Raises:
            ValueError: If *kind* is "conversation"
            DocumentExtractionError: If the text is blank
        """
        if kind == "conversation":
            raise ValueError("Conversations are stored through sessions, not imported")
        if not text or not text.strip():
            raise DocumentExtractionError(f"No text to import from {display_name!r}")

        content_hash = generate_content_hash(text)
        sid = source_id or source_id_for(path_or_url or content_hash)
        chunks = chunk_text(text, self.chunk_size, self.overlap)

        existing = self._store.get_source(sid)
        if (
            existing is not None
            and existing.content_hash == content_hash
            and existing.metadata.get(IMPORTED_CHUNKS_KEY, existing.chunk_count) == len(chunks)
        ):
            logger.info(f"{display_name}: unchanged since last import; skipping")
            return ImportResult(source=existing, chunks=len(chunks), stored=0, unchanged=True)

        with self._telemetry.span(SPAN_IMPORT, attributes={"source_id": sid, "kind": kind, "chunks": len(chunks)}) as span:
            embeddings = self._embedder.embed_documents(chunks, batch_size=self.batch_size)
            stored = 0
            entity_total = 0
            for position, (chunk, embedding) in enumerate(zip(chunks, embeddings)):
                unit = ContentUnit(
                    text=chunk,
                    embedding=embedding.tolist(),
                    source_kind=kind,
                    source_id=sid,
                    position=position,
                    is_user=False,
                    metadata={EMBEDDING_SPACE_KEY: embedding.space, "display_name": display_name},
                )
                entities = self._entities.extract(unit)
                if entities:
                    unit.entity_count = len(entities)
                    entity_total += self._store.upsert_entities(entities)
                if self._store.upsert(unit):
                    stored += 1
                else:
                    logger.warning(f"{display_name}: chunk {position} was not stored")
            span.set_attribute("stored", stored)

        now = utcnow()
        source = Source(
            id=sid,
            kind=kind,
            display_name=display_name,
            path_or_url=path_or_url,
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
            chunk_count=stored,
            entity_count=entity_total,
            content_hash=content_hash,
            size=len(text.encode("utf-8")),
            metadata={**(existing.metadata if existing is not None else {}), IMPORTED_CHUNKS_KEY: len(chunks)},
        )
        self._store.upsert_source(source)
        counted = self._store.refresh_source_counts(sid)
        if counted >= 0:
            source.chunk_count = counted

        logger.info(f"Imported {display_name}: {stored}/{len(chunks)} chunks stored")
        return ImportResult(source=source, chunks=len(chunks), stored=stored)

    def read_text(self, path: Path, extractor: Optional[DocumentExtractor] = None) -> str:
        """Plain text of *path*; non-text formats need an extractor."""

        fmt = path.suffix.lower().lstrip(".")
        if fmt in PLAIN_TEXT_FORMATS:
            try:
                return path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                raise DocumentExtractionError(f"Cannot read {path}: {exc}") from exc

        active = extractor or self._extractor
        if active is None:
            raise DocumentExtractionError(f"No extractor configured for .{fmt or '?'} files ({path.name})")
        try:
            with path.open("rb") as handle:
                return active.extract(handle, fmt)
        except DocumentExtractionError:
            raise
        except Exception as exc:
            raise DocumentExtractionError(f"Extraction failed for {path.name}: {exc}") from exc

    def import_file(
        self,
        path: str | Path,
        extractor: Optional[DocumentExtractor] = None,
        kind: SourceKind = "document",
    ) -> ImportResult:
        file_path = Path(path).expanduser()
        text = self.read_text(file_path, extractor)
        return self.import_text(file_path.name, text, str(file_path.resolve()), kind)

    def import_many(self, paths: List[str | Path], extractor: Optional[DocumentExtractor] = None) -> List[ImportResult]:
        """Import several files; extraction failures are logged and skipped."""

        results: List[ImportResult] = []
        for path in paths:
            try:
                results.append(self.import_file(path, extractor))
            except DocumentExtractionError as exc:
                logger.warning(f"Skipping {path}: {exc}")
        return results


__all__ = [
    "DocumentExtractor",
    "DocumentImporter",
    "ImportResult",
    "PLAIN_TEXT_FORMATS",
    "source_id_for",
]
