"""
SQLite Database Client
======================

Single-connection SQLite client with health-checked reconnection, idempotent
schema bootstrap and artefact removal for destructive resets.
"""

from .memory_client import (
    ARTIFACT_SUFFIXES,
    DEFAULT_DB_PATH,
    SQLiteMemoryClient,
    SQLiteMemoryClientConfig,
    TableDefinition,
    resolve_memory_config,
)

__all__ = [
    "ARTIFACT_SUFFIXES",
    "DEFAULT_DB_PATH",
    "SQLiteMemoryClient",
    "SQLiteMemoryClientConfig",
    "TableDefinition",
    "resolve_memory_config",
]
