"""
Memory Orchestrator - Application Context for the Memory Engine

WHAT: Owns the store, embedder, search, importer, sessions and background executor
WHERE: halcore/runtime/memory/orchestrator.py - top of the runtime stack
WHO: Presentation layers and scripts (hal_chat.py, import_documents.py)
TIME: Construction is cheap; the sentence model loads on first embedding

The orchestrator is constructed explicitly and passed to collaborators; there
are no module-level singletons. Presentation code calls:

- search(query, conversation_id) -> RelevantContext
- store_turn(conversation_id, user_text, reply_text) -> ExchangeResult
- store_content(display_name, text, ...) -> ImportResult
- get_messages(conversation_id) -> ordered messages
- open_session(conversation_id) -> ConversationSession
- submit_import(paths) -> Future[list[ImportResult]]
- reset() -> ResetReport
- status() -> dict
- reembed_incomparable() -> number of re-embedded units

Background imports and summaries run on a ThreadPoolExecutor and return
futures. Their results are applied under a lock. reset() waits for running
imports before wiping the store and empties open sessions in place, so a
session object held across a reset starts over on the empty store.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ...database.sqlite.memory_client import SQLiteMemoryClient, resolve_memory_config
from ...embedders import EmbedderBase, EmbeddingConfig, create_embedder
from ...errors import DestructiveOperationError
from .entities import get_entity_strategy
from .importer import DocumentExtractor, DocumentImporter, ImportResult
from .memory_store import ResetReport, SQLiteContentStore
from .model_engine import LanguageModel, UnavailableLanguageModel
from .models import MemoryStats, RelevantContext, SourceKind
from .prompting import DEFAULT_SYSTEM_PROMPT
from .session import DEFAULT_MEMORY_DEPTH, ConversationSession, ExchangeResult, SessionConfig
from .similarity import DEFAULT_MAX_RESULTS, DEFAULT_RELEVANCE_THRESHOLD, SearchConfig, SimilaritySearch
from .telemetry import NoOpTelemetryClient, TelemetryClient
from .turn_manager import ChatMessage

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}; using {default}")
        return default


@dataclass(slots=True)
class MemoryConfig:
    db_path: Optional[Path] = None
    memory_depth: int = DEFAULT_MEMORY_DEPTH
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    relevance_threshold: float = DEFAULT_RELEVANCE_THRESHOLD
    max_results: int = DEFAULT_MAX_RESULTS
    chunk_size: int = 400
    chunk_overlap: int = 50
    entity_strategy: str = "none"
    auto_summarize: bool = True
    background_workers: int = 2

    @staticmethod
    def from_env() -> "MemoryConfig":
        defaults = MemoryConfig()
        db = os.getenv("HAL_MEMORY_DB")
        return MemoryConfig(
            db_path=Path(db).expanduser() if db else None,
            memory_depth=_env_int("HAL_MEMORY_DEPTH", defaults.memory_depth),
            embedding=EmbeddingConfig.from_env(),
            relevance_threshold=_env_float("HAL_RELEVANCE_THRESHOLD", defaults.relevance_threshold),
            max_results=_env_int("HAL_MAX_RESULTS", defaults.max_results),
            chunk_size=_env_int("HAL_CHUNK_SIZE", defaults.chunk_size),
            chunk_overlap=_env_int("HAL_CHUNK_OVERLAP", defaults.chunk_overlap),
            entity_strategy=os.getenv("HAL_ENTITY_STRATEGY", defaults.entity_strategy),
            auto_summarize=os.getenv("HAL_AUTO_SUMMARIZE", "1").strip().lower() not in {"0", "false", "no"},
        )


class MemoryOrchestrator:
    """Facade that coordinates storage, retrieval, sessions and imports."""

    def __init__(
        self,
        config: MemoryConfig | None = None,
        *,
        model: LanguageModel | None = None,
        embedder: EmbedderBase | None = None,
        client: SQLiteMemoryClient | None = None,
        executor: Executor | None = None,
        extractor: DocumentExtractor | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        cfg = config or MemoryConfig()
        self.config = cfg
        self._telemetry = telemetry or NoOpTelemetryClient()
        self._model: LanguageModel = model or UnavailableLanguageModel()

        self._client = client or SQLiteMemoryClient(resolve_memory_config(path=cfg.db_path))
        self.store = SQLiteContentStore(client=self._client)
        self.store.ensure_schema()

        self.entity_strategy = get_entity_strategy(cfg.entity_strategy)
        self.embedder: EmbedderBase = embedder or create_embedder(
            cfg.embedding, augmenter=self.entity_strategy.augment
        )
        self.search_engine = SimilaritySearch(
            self.store,
            self.embedder,
            config=SearchConfig(relevance_threshold=cfg.relevance_threshold, max_results=cfg.max_results),
            entity_strategy=self.entity_strategy,
            telemetry=self._telemetry,
        )
        self.importer = DocumentImporter(
            self.store,
            self.embedder,
            chunk_size=cfg.chunk_size,
            overlap=cfg.chunk_overlap,
            batch_size=cfg.embedding.batch_size,
            extractor=extractor,
            entity_strategy=self.entity_strategy,
            telemetry=self._telemetry,
        )

        self._owns_executor = executor is None and cfg.background_workers > 0
        if executor is not None:
            self._executor: Optional[Executor] = executor
        elif cfg.background_workers > 0:
            self._executor = ThreadPoolExecutor(max_workers=cfg.background_workers, thread_name_prefix="hal-memory")
        else:
            self._executor = None

        self._sessions: Dict[str, ConversationSession] = {}
        self._imports: List[Future] = []
        self._lock = threading.RLock()
        self._epoch = 0

    # ---------------------- properties ----------------------
    @property
    def telemetry(self) -> TelemetryClient:
        return self._telemetry

    @property
    def model(self) -> LanguageModel:
        return self._model

    @property
    def stats(self) -> MemoryStats:
        return self.store.stats

    # ---------------------- sessions ----------------------
    def open_session(
        self,
        conversation_id: Optional[str] = None,
        *,
        system_prompt: Optional[str] = None,
        memory_depth: Optional[int] = None,
        display_name: Optional[str] = None,
    ) -> ConversationSession:
        """Return the cached session for *conversation_id*, loading it on first use."""

        cid = conversation_id or str(uuid.uuid4())
        with self._lock:
            session = self._sessions.get(cid)
            if session is not None:
                return session
            session = ConversationSession(
                cid,
                store=self.store,
                embedder=self.embedder,
                model=self._model,
                search=self.search_engine,
                config=SessionConfig(
                    memory_depth=self.config.memory_depth,
                    system_prompt=self.config.system_prompt,
                    auto_summarize=self.config.auto_summarize,
                    max_results=self.config.max_results,
                    relevance_threshold=self.config.relevance_threshold,
                ),
                executor=self._executor,
                telemetry=self._telemetry,
                system_prompt=system_prompt,
                memory_depth=memory_depth,
                display_name=display_name,
            )
            self._sessions[cid] = session
        session.load()
        return session

    # ---------------------- presentation API ----------------------
    def search(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        max_results: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> RelevantContext:
        return self.search_engine.search(query, conversation_id, max_results, threshold)

    def store_turn(
        self,
        conversation_id: str,
        user_text: str,
        reply_text: str,
        *,
        thinking_duration: float | None = None,
    ) -> ExchangeResult:
        """Persist an exchange produced elsewhere and run the summarization trigger."""

        session = self.open_session(conversation_id)
        result = session.record_exchange(user_text, reply_text, thinking_duration=thinking_duration)
        self.store.aggregate_stats()
        return result

    def store_content(
        self,
        display_name: str,
        text: str,
        path_or_url: Optional[str] = None,
        kind: SourceKind = "document",
    ) -> ImportResult:
        result = self.importer.import_text(display_name, text, path_or_url, kind)
        self.store.aggregate_stats()
        return result

    def get_messages(self, conversation_id: str) -> List[ChatMessage]:
        """Stored messages of a conversation in position order."""
        return [ChatMessage.from_unit(u) for u in self.store.fetch_ordered("conversation", conversation_id)]

    def submit_import(
        self,
        paths: Sequence[str | Path],
        extractor: Optional[DocumentExtractor] = None,
    ) -> Future:
        """Import files in the background; the future resolves to the import results."""

        def _work() -> List[ImportResult]:
            return self.importer.import_many(list(paths), extractor)

        with self._lock:
            epoch = self._epoch
            if self._executor is None:
                future: Future = Future()
                try:
                    future.set_result(_work())
                except Exception as exc:
                    future.set_exception(exc)
            else:
                future = self._executor.submit(_work)
                self._imports = [f for f in self._imports if not f.done()]
                self._imports.append(future)
        future.add_done_callback(lambda f: self._apply_import(f, epoch))
        return future

    def _apply_import(self, future: Future, epoch: int) -> None:
        with self._lock:
            if epoch != self._epoch:
                logger.info("Discarding import result that finished after a reset")
                return
            error = future.exception()
            if error is not None:
                logger.error(f"Background import failed: {error}")
                return
            self.store.aggregate_stats()

    def reset(self, *, import_timeout: Optional[float] = None) -> ResetReport:
        """
        Delete every stored artefact and reopen an empty store.

        Running imports are waited for first, and no new import starts until
        the reset is done. Open sessions stay cached but lose their messages
        and summary state.

        Raises:
            DestructiveOperationError: If imports are still running after *import_timeout* seconds
        """
        with self._lock:
            pending = [f for f in self._imports if not f.done()]
            if pending:
                logger.info(f"Waiting for {len(pending)} import(s) before reset")
                _, not_done = wait(pending, timeout=import_timeout)
                if not_done:
                    raise DestructiveOperationError(
                        f"Reset refused: {len(not_done)} import(s) still running after {import_timeout}s"
                    )
            self._imports.clear()
            self._epoch += 1
            for session in self._sessions.values():
                session.discard_state()
            report = self.store.reset()
            self.store.aggregate_stats()
        return report

    def status(self) -> Dict[str, Any]:
        stats = self.store.aggregate_stats()
        tier = getattr(self.embedder, "tier", None)
        with self._lock:
            open_sessions = sorted(self._sessions)
        return {
            "db_path": str(self._client.path),
            "healthy": self.store.is_healthy(),
            "stats": stats.model_dump(),
            "embedding_space": self.embedder.space,
            "embedding_tier": tier,
            "model_available": self._model.is_available(),
            "memory_depth": self.config.memory_depth,
            "entity_strategy": self.entity_strategy.name,
            "open_sessions": open_sessions,
        }

    def reembed_incomparable(self) -> int:
        """Re-embed every unit whose vector is missing, malformed or from another space."""

        space = self.embedder.space
        stale = [
            u
            for u in self.store.iter_units()
            if u.text.strip() and (u.embedding_malformed or not u.embedding or u.embedding_space != space)
        ]
        if not stale:
            return 0
        embeddings = self.embedder.embed_documents([u.text for u in stale])
        updated = 0
        for unit, embedding in zip(stale, embeddings):
            if embedding.is_empty or embedding.space != self.embedder.space:
                continue
            if self.store.replace_embedding(unit.id, embedding.vector, embedding.space):
                updated += 1
        logger.info(f"Re-embedded {updated}/{len(stale)} unit(s) into {self.embedder.space}")
        return updated

    # ---------------------- lifecycle ----------------------
    def close(self) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
        self.store.close()

    def __enter__(self) -> "MemoryOrchestrator":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


__all__ = [
    "MemoryConfig",
    "MemoryOrchestrator",
]
