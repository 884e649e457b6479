"""
Error taxonomy for the memory engine.

Storage errors never escape public store operations (they degrade to neutral
results); the others are raised to callers that can recover from them.
"""

from __future__ import annotations

from typing import Dict


class MemoryEngineError(RuntimeError):
    """Base class for recoverable memory-engine failures."""


class StoreConnectionError(MemoryEngineError):
    """Raised when the store is unreachable even after a reconnect."""


class ExtractionError(MemoryEngineError):
    """Raised when an embedding cannot be produced or a stored vector is malformed."""


class SummarizationError(MemoryEngineError):
    """Raised when the language model could not summarize a turn window."""


class DocumentExtractionError(MemoryEngineError):
    """Raised when a document's plain text could not be extracted."""


class MissingDependencyError(RuntimeError):
    """Raised when an optional model package is unavailable in the environment."""


class DestructiveOperationError(MemoryEngineError):
    """Raised when a reset could not remove every on-disk artefact."""

    def __init__(self, message: str, failures: Dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.failures: Dict[str, str] = dict(failures or {})


__all__ = [
    "MemoryEngineError",
    "StoreConnectionError",
    "ExtractionError",
    "SummarizationError",
    "DocumentExtractionError",
    "DestructiveOperationError",
    "MissingDependencyError",
]
