"""
SQLite Memory Client - health-checked connection for the content store

WHAT: Owns the single SQLite connection, schema bootstrap, and on-disk artefacts
WHERE: halcore/database/sqlite/memory_client.py - below the runtime memory store
WHO: ContentStore (all reads/writes go through `run`)
TIME: Ping is one `SELECT 1` round-trip; reconnect + schema is a few milliseconds

Health discipline: `run()` pings before every operation. A dead connection is
closed, reopened and the registered schema recreated (idempotent DDL) before
the operation runs; if the operation still fails with a storage error it is
retried once after another reconnect, then the caller's neutral default is
returned and the failure logged. Storage errors never propagate.

The database is opened in WAL mode. WAL adds `-wal` and `-shm` siblings next to
the primary file; rollback-journal mode may leave `-journal`. All of them are
removed by `destroy_files()`.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from ...errors import StoreConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DB_PATH = Path("~/.hal/memory.sqlite")
ARTIFACT_SUFFIXES = ("", "-wal", "-shm", "-journal")


@dataclass(slots=True)
class TableDefinition:
    """DDL for one table plus its indexes; every statement must be create-if-absent."""

    name: str
    ddl: str
    indexes: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SQLiteMemoryClientConfig:
    path: Path = DEFAULT_DB_PATH
    journal_mode: str = "WAL"
    timeout_s: float = 5.0
    file_mode: int = 0o600


def resolve_memory_config(*, path: str | Path | None = None) -> SQLiteMemoryClientConfig:
    """Build a client config from arguments, then `HAL_MEMORY_DB`, then defaults."""

    raw = path or os.environ.get("HAL_MEMORY_DB") or DEFAULT_DB_PATH
    journal = os.environ.get("HAL_MEMORY_JOURNAL_MODE", "WAL").strip().upper() or "WAL"
    return SQLiteMemoryClientConfig(path=Path(raw).expanduser(), journal_mode=journal)


class SQLiteMemoryClient:
    """Single-connection SQLite client with transparent reconnection."""

    def __init__(self, config: SQLiteMemoryClientConfig | None = None) -> None:
        self.config = config or resolve_memory_config()
        self.config.path = Path(self.config.path).expanduser()
        self._conn: Optional[sqlite3.Connection] = None
        self._definitions: List[TableDefinition] = []
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self.config.path

    # ------------------ lifecycle ------------------
    def connect(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is not None:
                return self._conn
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), timeout=self.config.timeout_s, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA journal_mode={self.config.journal_mode}")
            self._protect_file()
            self._conn = conn
            logger.debug(f"Opened memory store at {self.path}")
            return conn

    def _protect_file(self) -> None:
        try:
            os.chmod(self.path, self.config.file_mode)
        except OSError as exc:
            logger.warning(f"Could not restrict permissions on {self.path}: {exc}")

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            except sqlite3.Error as exc:
                logger.warning(f"Error while closing memory store: {exc}")
            finally:
                self._conn = None

    def reconnect(self) -> sqlite3.Connection:
        with self._lock:
            self.close()
            conn = self.connect()
            self._apply_definitions(conn, self._definitions)
            return conn

    def ping(self) -> bool:
        """Trivial round-trip; False when the connection is missing or dead."""

        with self._lock:
            if self._conn is None:
                return False
            try:
                row = self._conn.execute("SELECT 1").fetchone()
            except sqlite3.Error:
                return False
            return row is not None and row[0] == 1

    # ------------------ schema ------------------
    def create_tables(self, definitions: Sequence[TableDefinition]) -> None:
        """Register and apply table definitions (idempotent); re-applied on every reconnect."""

        with self._lock:
            known = {d.name for d in self._definitions}
            for definition in definitions:
                if definition.name not in known:
                    self._definitions.append(definition)
            conn = self._conn if self.ping() else self.reconnect()
            self._apply_definitions(conn, definitions)

    @staticmethod
    def _apply_definitions(conn: sqlite3.Connection, definitions: Sequence[TableDefinition]) -> None:
        with conn:
            for definition in definitions:
                conn.execute(definition.ddl)
                for index_sql in definition.indexes:
                    conn.execute(index_sql)

    def table_names(self) -> List[str]:
        rows = self.run(
            "table_names",
            lambda c: c.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall(),
            default=[],
        )
        return sorted(str(r[0]) for r in rows)

    # ------------------ operations ------------------
    def _live_connection(self) -> sqlite3.Connection:
        if self.ping():
            assert self._conn is not None
            return self._conn
        logger.warning("Memory store connection unhealthy; reconnecting")
        return self.reconnect()

    def run(self, label: str, op: Callable[[sqlite3.Connection], T], *, default: T) -> T:
        """Execute *op* under the health discipline; returns *default* on persistent failure."""

        with self._lock:
            last_error: Exception | None = None
            for attempt in (1, 2):
                try:
                    conn = self._live_connection()
                    return op(conn)
                except (sqlite3.Error, OSError) as exc:
                    last_error = exc
                    if attempt == 1:
                        logger.warning(f"{label}: storage error ({exc}); reconnecting and retrying once")
                        try:
                            self.reconnect()
                        except (sqlite3.Error, OSError) as reconnect_exc:
                            logger.error(f"{label}: reconnect failed: {reconnect_exc}")
            logger.error(f"{label}: memory store unavailable after retry: {last_error}")
            return default

    def run_or_raise(self, label: str, op: Callable[[sqlite3.Connection], T]) -> T:
        """Like `run`, but raise StoreConnectionError instead of returning a default."""

        sentinel = object()
        result = self.run(label, op, default=sentinel)  # type: ignore[arg-type]
        if result is sentinel:
            raise StoreConnectionError(f"{label}: memory store unavailable")
        return result  # type: ignore[return-value]

    def query(self, sql: str, params: Sequence[Any] | Dict[str, Any] = ()) -> List[sqlite3.Row]:
        return self.run("query", lambda c: c.execute(sql, params).fetchall(), default=[])

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a live connection inside a commit/rollback block (errors propagate)."""

        with self._lock:
            conn = self._live_connection()
            with conn:
                yield conn

    # ------------------ artefacts ------------------
    def artifact_paths(self) -> List[Path]:
        return [Path(f"{self.path}{suffix}") for suffix in ARTIFACT_SUFFIXES]

    def destroy_files(self) -> Tuple[List[str], Dict[str, str]]:
        """Close the connection and delete every store artefact.

        Returns:
            (deleted paths, {path: error message} for deletions that failed)
        """

        deleted: List[str] = []
        failures: Dict[str, str] = {}
        with self._lock:
            self.close()
            for artefact in self.artifact_paths():
                if not artefact.exists():
                    continue
                try:
                    artefact.unlink()
                    deleted.append(str(artefact))
                except OSError as exc:
                    failures[str(artefact)] = str(exc)
                    logger.error(f"Failed to delete {artefact}: {exc}")
        return deleted, failures


__all__ = [
    "ARTIFACT_SUFFIXES",
    "DEFAULT_DB_PATH",
    "SQLiteMemoryClient",
    "SQLiteMemoryClientConfig",
    "TableDefinition",
    "resolve_memory_config",
]
