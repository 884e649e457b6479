"""
Telemetry Collection - Memory Engine Timing Spans

WHAT: Lightweight spans around search, summarization, model calls and imports
WHERE: halcore/runtime/memory/telemetry.py - observability layer
WHO: Similarity search, sessions, summarizer, document importer
TIME: Zero-overhead when disabled, <0.1ms overhead when enabled

Span names:
- memory.search: query embedding + both half-scans
- memory.summarize: one summarization window
- memory.model_generate: one reply generation
- memory.import: one document import (chunk, embed, persist)
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

SPAN_SEARCH = "memory.search"
SPAN_SUMMARIZE = "memory.summarize"
SPAN_MODEL_GENERATE = "memory.model_generate"
SPAN_IMPORT = "memory.import"


class TelemetrySpan(AbstractContextManager["TelemetrySpan"]):
    """Context manager capturing span attributes and duration."""

    def __init__(
        self,
        client: "TelemetryClient",
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._client = client
        self.name = name
        self.attributes: Dict[str, Any] = dict(attributes or {})
        self._start: float = 0.0

    def __enter__(self) -> "TelemetrySpan":
        self._start = time.perf_counter()
        return self

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def __exit__(self, exc_type, exc, exc_tb) -> bool:
        self.attributes.setdefault("success", exc is None)
        if exc is not None:
            self.attributes.setdefault("error", type(exc).__name__)
        self.attributes["duration_ms"] = (time.perf_counter() - self._start) * 1000.0
        self._client.emit_span(self.name, self.attributes)
        return False


class TelemetryClient:
    """Base telemetry client; override `emit_span` for custom sinks."""

    def span(
        self,
        name: str,
        *,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> TelemetrySpan:
        return TelemetrySpan(self, name, attributes)

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        raise NotImplementedError


@dataclass(slots=True)
class NoOpTelemetryClient(TelemetryClient):
    """Telemetry client that silently discards spans."""

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:  # noqa: D401 - intentionally empty
        pass


class ConsoleTelemetryClient(TelemetryClient):
    """Writes each finished span to the module logger at INFO."""

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        payload = {k: attributes[k] for k in sorted(attributes)}
        logger.info(f"[telemetry] {name}: {payload}")


@dataclass(slots=True)
class RecordingTelemetryClient(TelemetryClient):
    """Keeps finished spans in memory for later inspection."""

    spans: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        with self._lock:
            self.spans.append((name, dict(attributes)))

    def names(self) -> List[str]:
        with self._lock:
            return [name for name, _ in self.spans]


__all__ = [
    "ConsoleTelemetryClient",
    "NoOpTelemetryClient",
    "RecordingTelemetryClient",
    "SPAN_IMPORT",
    "SPAN_MODEL_GENERATE",
    "SPAN_SEARCH",
    "SPAN_SUMMARIZE",
    "TelemetryClient",
    "TelemetrySpan",
]
