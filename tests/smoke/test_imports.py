def test_import_memory_runtime():
    from halcore.runtime.memory import (  # noqa: F401
        ConversationSession,
        MemoryConfig,
        MemoryOrchestrator,
        SimilaritySearch,
        SQLiteContentStore,
    )


def test_import_sqlite_client():
    from halcore.database.sqlite.memory_client import (  # noqa: F401
        SQLiteMemoryClient,
        resolve_memory_config,
    )


def test_import_embedders_without_optional_packages():
    from halcore.embedders import SentenceTransformerEmbedder, create_embedder  # noqa: F401
    from halcore.runtime.memory.model_engine import TransformersModelEngine  # noqa: F401
