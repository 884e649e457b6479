"""
Memory Store - SQLite Persistence for Conversational Memory

WHAT: Persistence adapter for messages, document chunks, sources and entities
WHERE: halcore/runtime/memory/memory_store.py - interfaces with SQLite via the memory client
WHO: Sessions, similarity search, document import, the orchestrator
TIME: Upsert <5ms, ordered fetch <10ms for typical conversations

Provides a ContentStore interface with a SQLite implementation. Every public
operation goes through `SQLiteMemoryClient.run`, which pings the connection,
reconnects and recreates the schema when needed, retries once, and finally
returns a neutral value (empty list, False, zero stats) instead of raising.

Tables:
- sources: one row per conversation or imported document
- content: content units, unique on (source_kind, source_id, position)
- entities: schema kept for the entity strategy; empty with the no-op strategy

Boundary Notes:
- Upserts are explicit `ON CONFLICT ... DO UPDATE`; the row id of an existing
  key is preserved
- Aggregate statistics are full rescans mirrored in memory for cheap reads
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import numpy as np

from ...database.sqlite.memory_client import (
    SQLiteMemoryClient,
    TableDefinition,
    resolve_memory_config,
)
from ...errors import DestructiveOperationError
from .models import (
    DOCUMENT_KINDS,
    EMBEDDING_SPACE_KEY,
    ContentUnit,
    Entity,
    MemoryStats,
    Source,
    encode_embedding,
    utcnow,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

_CONTENT_COLUMNS = (
    "id",
    "text",
    "embedding_bytes",
    "timestamp",
    "source_kind",
    "source_id",
    "position",
    "is_user",
    "entity_count",
    "content_hash",
    "metadata",
    "created_at",
)
_SOURCE_COLUMNS = (
    "id",
    "kind",
    "display_name",
    "path_or_url",
    "created_at",
    "updated_at",
    "chunk_count",
    "entity_count",
    "metadata",
    "content_hash",
    "size",
)

_UPSERT_CONTENT_SQL = (
    f"INSERT INTO content ({', '.join(_CONTENT_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in _CONTENT_COLUMNS)}) "
    "ON CONFLICT(source_kind, source_id, position) DO UPDATE SET "
    + ", ".join(f"{c} = excluded.{c}" for c in _CONTENT_COLUMNS if c not in ("id", "source_kind", "source_id", "position"))
)
_UPSERT_SOURCE_SQL = (
    f"INSERT INTO sources ({', '.join(_SOURCE_COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in _SOURCE_COLUMNS)}) "
    "ON CONFLICT(id) DO UPDATE SET "
    + ", ".join(f"{c} = excluded.{c}" for c in _SOURCE_COLUMNS if c not in ("id", "created_at"))
)

_STATS_SQL = (
    "SELECT "
    "(SELECT COUNT(DISTINCT source_id) FROM content WHERE source_kind = 'conversation') AS conversations, "
    "(SELECT COUNT(*) FROM content WHERE is_user = 1) AS user_messages, "
    "(SELECT COUNT(*) FROM sources WHERE kind != 'conversation') AS documents, "
    "(SELECT COUNT(*) FROM content WHERE source_kind != 'conversation') AS document_chunks"
)


def table_definitions() -> List[TableDefinition]:
    return [
        TableDefinition(
            name="sources",
            ddl=(
                "CREATE TABLE IF NOT EXISTS sources ("
                "id TEXT PRIMARY KEY, "
                "kind TEXT NOT NULL, "
                "display_name TEXT NOT NULL DEFAULT '', "
                "path_or_url TEXT, "
                "created_at TEXT NOT NULL, "
                "updated_at TEXT NOT NULL, "
                "chunk_count INTEGER NOT NULL DEFAULT 0, "
                "entity_count INTEGER NOT NULL DEFAULT 0, "
                "metadata TEXT NOT NULL DEFAULT '{}', "
                "content_hash TEXT NOT NULL DEFAULT '', "
                "size INTEGER NOT NULL DEFAULT 0)"
            ),
            indexes=["CREATE INDEX IF NOT EXISTS idx_sources_kind ON sources(kind)"],
        ),
        TableDefinition(
            name="content",
            ddl=(
                "CREATE TABLE IF NOT EXISTS content ("
                "id TEXT PRIMARY KEY, "
                "text TEXT NOT NULL, "
                "embedding_bytes BLOB, "
                "timestamp REAL NOT NULL, "
                "source_kind TEXT NOT NULL, "
                "source_id TEXT NOT NULL, "
                "position INTEGER NOT NULL, "
                "is_user INTEGER NOT NULL DEFAULT 0, "
                "entity_count INTEGER NOT NULL DEFAULT 0, "
                "content_hash TEXT NOT NULL, "
                "metadata TEXT NOT NULL DEFAULT '{}', "
                "created_at TEXT NOT NULL, "
                "UNIQUE (source_kind, source_id, position))"
            ),
            indexes=[
                "CREATE INDEX IF NOT EXISTS idx_content_source ON content(source_kind, source_id)",
                "CREATE INDEX IF NOT EXISTS idx_content_timestamp ON content(timestamp)",
                "CREATE INDEX IF NOT EXISTS idx_content_is_user ON content(is_user)",
            ],
        ),
        TableDefinition(
            name="entities",
            ddl=(
                "CREATE TABLE IF NOT EXISTS entities ("
                "id TEXT PRIMARY KEY, "
                "text TEXT NOT NULL, "
                "type TEXT NOT NULL, "
                "content_id TEXT NOT NULL, "
                "source_kind TEXT NOT NULL, "
                "source_id TEXT NOT NULL, "
                "position INTEGER NOT NULL, "
                "range TEXT, "
                "confidence REAL NOT NULL DEFAULT 1.0)"
            ),
            indexes=["CREATE INDEX IF NOT EXISTS idx_entities_content ON entities(content_id)"],
        ),
    ]


@dataclass(slots=True)
class ResetReport:
    """Outcome of a destructive reset; `success` requires every deletion and a healthy reopen."""

    deleted: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    healthy: bool = False

    @property
    def success(self) -> bool:
        return not self.failures and self.healthy

    def raise_for_failures(self) -> None:
        if self.failures:
            raise DestructiveOperationError(
                f"Reset could not delete {len(self.failures)} file(s)", failures=self.failures
            )
        if not self.healthy:
            raise DestructiveOperationError("Reset finished but the store is not healthy")


class ContentStore(Protocol):
    """Abstract interface for content persistence."""

    def ensure_schema(self) -> None:
        """Create required tables and indexes if missing (idempotent)."""

    def upsert(self, unit: ContentUnit) -> bool:
        """Insert or replace a unit by (kind, source id, position)."""

    def fetch_ordered(self, kind: str, source_id: str) -> List[ContentUnit]:
        """All units of one source in position order."""

    def scan_recent(
        self, kind: str | Sequence[str], exclude_source_id: Optional[str] = None, limit: int = PAGE_SIZE
    ) -> List[ContentUnit]:
        """Most recent units of a kind, newest first, capped at the page size."""

    def aggregate_stats(self) -> MemoryStats:
        """Recount statistics by full rescan."""

    def reset(self) -> ResetReport:
        """Delete every store artefact and reopen an empty store."""


@dataclass(slots=True)
class SQLiteContentStore(ContentStore):
    """SQLite-backed implementation; safe to share across threads of one process."""

    client: SQLiteMemoryClient
    _stats: MemoryStats = field(default_factory=MemoryStats, init=False)
    _stats_lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    @staticmethod
    def from_env(*, path: Optional[str] = None) -> "SQLiteContentStore":
        store = SQLiteContentStore(client=SQLiteMemoryClient(resolve_memory_config(path=path)))
        store.ensure_schema()
        return store

    def close(self) -> None:
        self.client.close()

    # ------------------ schema / health ------------------
    def ensure_schema(self) -> None:
        try:
            self.client.create_tables(table_definitions())
        except (sqlite3.Error, OSError) as exc:
            logger.error(f"Failed to create memory schema at {self.client.path}: {exc}")

    def is_healthy(self) -> bool:
        return self.client.run("is_healthy", lambda c: c.execute("SELECT 1").fetchone()[0] == 1, default=False)

    @property
    def stats(self) -> MemoryStats:
        """Last computed statistics (never observed mid-update)."""
        with self._stats_lock:
            return self._stats.model_copy()

    # ------------------ content ------------------
    def upsert(self, unit: ContentUnit) -> bool:
        row = unit.to_row()

        def _op(conn: sqlite3.Connection) -> bool:
            with conn:
                conn.execute(_UPSERT_CONTENT_SQL, row)
            return True

        return self.client.run("upsert", _op, default=False)

    def upsert_many(self, units: Iterable[ContentUnit]) -> int:
        """Upsert units one by one; each write is its own transaction."""
        return sum(1 for unit in units if self.upsert(unit))

    def fetch_ordered(self, kind: str, source_id: str) -> List[ContentUnit]:
        rows = self.client.run(
            "fetch_ordered",
            lambda c: c.execute(
                "SELECT * FROM content WHERE source_kind = ? AND source_id = ? ORDER BY position ASC",
                (kind, source_id),
            ).fetchall(),
            default=[],
        )
        return [ContentUnit.from_row(r) for r in rows]

    def scan_recent(
        self,
        kind: str | Sequence[str],
        exclude_source_id: Optional[str] = None,
        limit: int = PAGE_SIZE,
    ) -> List[ContentUnit]:
        """Newest-first page of units of one kind (or any of several kinds)."""
        limit = max(0, min(int(limit), PAGE_SIZE))
        kinds = (kind,) if isinstance(kind, str) else tuple(kind)
        if limit == 0 or not kinds:
            return []
        sql = f"SELECT * FROM content WHERE source_kind IN ({', '.join('?' for _ in kinds)})"
        params: List[Any] = list(kinds)
        if exclude_source_id is not None:
            sql += " AND source_id != ?"
            params.append(exclude_source_id)
        sql += " ORDER BY timestamp DESC, position DESC LIMIT ?"
        params.append(limit)
        rows = self.client.run("scan_recent", lambda c: c.execute(sql, params).fetchall(), default=[])
        return [ContentUnit.from_row(r) for r in rows]

    def iter_units(self, kind: Optional[str] = None) -> List[ContentUnit]:
        """Every stored unit (optionally of one kind); used by maintenance passes."""
        if kind is None:
            query, params = "SELECT * FROM content ORDER BY source_kind, source_id, position", ()
        else:
            query, params = "SELECT * FROM content WHERE source_kind = ? ORDER BY source_id, position", (kind,)
        rows = self.client.run("iter_units", lambda c: c.execute(query, params).fetchall(), default=[])
        return [ContentUnit.from_row(r) for r in rows]

    def replace_embedding(self, unit_id: str, vector: Sequence[float] | np.ndarray, space: str) -> bool:
        """Swap a unit's vector and its embedding-space tag, leaving text and key untouched."""

        def _op(conn: sqlite3.Connection) -> bool:
            row = conn.execute("SELECT metadata FROM content WHERE id = ?", (unit_id,)).fetchone()
            if row is None:
                return False
            try:
                metadata = json.loads(row["metadata"] or "{}")
            except ValueError:
                metadata = {}
            metadata[EMBEDDING_SPACE_KEY] = space
            with conn:
                conn.execute(
                    "UPDATE content SET embedding_bytes = ?, metadata = ? WHERE id = ?",
                    (encode_embedding(vector), json.dumps(metadata, default=str), unit_id),
                )
            return True

        return self.client.run("replace_embedding", _op, default=False)

    # ------------------ sources ------------------
    def upsert_source(self, source: Source) -> bool:
        row = source.to_row()

        def _op(conn: sqlite3.Connection) -> bool:
            with conn:
                conn.execute(_UPSERT_SOURCE_SQL, row)
            return True

        return self.client.run("upsert_source", _op, default=False)

    def get_source(self, source_id: str) -> Optional[Source]:
        row = self.client.run(
            "get_source",
            lambda c: c.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone(),
            default=None,
        )
        return Source.from_row(row) if row is not None else None

    def list_sources(self, kind: Optional[str] = None) -> List[Source]:
        if kind is None:
            query, params = "SELECT * FROM sources ORDER BY updated_at DESC", ()
        else:
            query, params = "SELECT * FROM sources WHERE kind = ? ORDER BY updated_at DESC", (kind,)
        rows = self.client.run("list_sources", lambda c: c.execute(query, params).fetchall(), default=[])
        return [Source.from_row(r) for r in rows]

    def refresh_source_counts(self, source_id: str) -> int:
        """Recount a source's chunks from the content table; returns the new count (or -1)."""

        def _op(conn: sqlite3.Connection) -> int:
            count = conn.execute("SELECT COUNT(*) FROM content WHERE source_id = ?", (source_id,)).fetchone()[0]
            with conn:
                conn.execute(
                    "UPDATE sources SET chunk_count = ?, updated_at = ? WHERE id = ?",
                    (int(count), utcnow().isoformat(), source_id),
                )
            return int(count)

        return self.client.run("refresh_source_counts", _op, default=-1)

    def update_source_metadata(self, source_id: str, updates: Dict[str, Any]) -> bool:
        """Merge *updates* into a source's metadata; False if the source does not exist."""

        def _op(conn: sqlite3.Connection) -> bool:
            row = conn.execute("SELECT metadata FROM sources WHERE id = ?", (source_id,)).fetchone()
            if row is None:
                return False
            try:
                metadata = json.loads(row["metadata"] or "{}")
            except ValueError:
                metadata = {}
            metadata.update(updates)
            with conn:
                conn.execute(
                    "UPDATE sources SET metadata = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(metadata, default=str), utcnow().isoformat(), source_id),
                )
            return True

        return self.client.run("update_source_metadata", _op, default=False)

    # ------------------ entities ------------------
    def upsert_entities(self, entities: Sequence[Entity]) -> int:
        if not entities:
            return 0
        rows = [e.to_row() for e in entities]

        def _op(conn: sqlite3.Connection) -> int:
            with conn:
                conn.executemany(
                    "INSERT INTO entities (id, text, type, content_id, source_kind, source_id, position, range, confidence) "
                    "VALUES (:id, :text, :type, :content_id, :source_kind, :source_id, :position, :range, :confidence) "
                    "ON CONFLICT(id) DO UPDATE SET text = excluded.text, type = excluded.type, "
                    "range = excluded.range, confidence = excluded.confidence",
                    rows,
                )
            return len(rows)

        return self.client.run("upsert_entities", _op, default=0)

    def count_entities(self) -> int:
        return self.client.run("count_entities", lambda c: c.execute("SELECT COUNT(*) FROM entities").fetchone()[0], default=0)

    # ------------------ stats ------------------
    def aggregate_stats(self) -> MemoryStats:
        row = self.client.run("aggregate_stats", lambda c: c.execute(_STATS_SQL).fetchone(), default=None)
        stats = MemoryStats() if row is None else MemoryStats(
            conversations=int(row["conversations"] or 0),
            user_messages=int(row["user_messages"] or 0),
            documents=int(row["documents"] or 0),
            document_chunks=int(row["document_chunks"] or 0),
        )
        with self._stats_lock:
            self._stats = stats
        return stats.model_copy()

    # ------------------ reset ------------------
    def reset(self) -> ResetReport:
        with self._stats_lock:
            self._stats = MemoryStats()
        deleted, failures = self.client.destroy_files()
        report = ResetReport(deleted=deleted, failures=failures)
        try:
            self.client.reconnect()
        except (sqlite3.Error, OSError) as exc:
            logger.error(f"Reopening memory store after reset failed: {exc}")
        self.ensure_schema()
        report.healthy = self.is_healthy()
        if report.success:
            logger.info(f"Memory store reset; removed {len(deleted)} file(s)")
        else:
            logger.error(f"Memory store reset incomplete: failures={failures} healthy={report.healthy}")
        return report


__all__ = [
    "ContentStore",
    "DOCUMENT_KINDS",
    "PAGE_SIZE",
    "ResetReport",
    "SQLiteContentStore",
    "table_definitions",
]
