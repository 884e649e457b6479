"""
Conversational Memory System - Store, Recall & Auto-Summarization

WHAT: Local library for conversation memory and document recall (no network services)
WHERE: halcore/runtime/memory/ - runtime orchestration subsystem
WHO: Chat front-ends persisting turns and injecting relevant context into prompts
TIME: Recall ≤100 comparisons per query; summaries run in the background

Components:
- models: ContentUnit, Source, Entity, MemoryStats, RelevantContext
- memory_store: SQLite content store with health-checked reconnect and reset
- similarity: cosine search over recent conversation and document units
- turn_manager / prompting: turn counting, history windows, prompt layout
- session: per-conversation state machine with auto-summarization
- summarizer: language-model summaries of turn windows
- importer: chunk + embed + store documents
- orchestrator: application context owning all of the above

Boundary Notes:
- Storage failures degrade to empty results and are logged, never raised
- Vectors are only compared inside one embedding space
"""

from .entities import EntityStrategy, NoOpEntityStrategy, get_entity_strategy, register_entity_strategy
from .importer import DocumentExtractor, DocumentImporter, ImportResult
from .memory_store import PAGE_SIZE, ContentStore, ResetReport, SQLiteContentStore
from .model_engine import (
    LanguageModel,
    ModelNotLoadedError,
    ModelUnavailableError,
    TransformersModelConfig,
    TransformersModelEngine,
    UnavailableLanguageModel,
)
from .models import ContentUnit, Entity, MemoryStats, RelevantContext, SearchHit, Source
from .orchestrator import MemoryConfig, MemoryOrchestrator
from .session import ConversationSession, ExchangeResult, SessionConfig, SessionState
from .similarity import SearchConfig, SimilaritySearch, cosine_similarity
from .summarizer import Summarizer, SummarizerConfig, SummaryResult
from .telemetry import ConsoleTelemetryClient, NoOpTelemetryClient, RecordingTelemetryClient, TelemetryClient
from .turn_manager import ChatMessage, TurnManager, count_completed_turns

__all__ = [
    "ChatMessage",
    "ConsoleTelemetryClient",
    "ContentStore",
    "ContentUnit",
    "ConversationSession",
    "DocumentExtractor",
    "DocumentImporter",
    "Entity",
    "EntityStrategy",
    "ExchangeResult",
    "ImportResult",
    "LanguageModel",
    "MemoryConfig",
    "MemoryOrchestrator",
    "MemoryStats",
    "ModelNotLoadedError",
    "ModelUnavailableError",
    "NoOpEntityStrategy",
    "NoOpTelemetryClient",
    "PAGE_SIZE",
    "RecordingTelemetryClient",
    "RelevantContext",
    "ResetReport",
    "SQLiteContentStore",
    "SearchConfig",
    "SearchHit",
    "SessionConfig",
    "SessionState",
    "SimilaritySearch",
    "Source",
    "Summarizer",
    "SummarizerConfig",
    "SummaryResult",
    "TelemetryClient",
    "TransformersModelConfig",
    "TransformersModelEngine",
    "TurnManager",
    "UnavailableLanguageModel",
    "cosine_similarity",
    "count_completed_turns",
    "get_entity_strategy",
    "register_entity_strategy",
]
