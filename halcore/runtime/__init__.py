"""
Runtime Orchestration Module

WHAT: Runtime subsystem for conversational memory and retrieval
WHERE: halcore/runtime/ - orchestration layer above database/embedders/chunking
WHO: Assistant front-ends storing turns, importing documents, and building prompts
TIME: Prompt assembly in the same call as the user message; summarization in background

Memory Architecture:
- content: messages and document chunks with embeddings, keyed by (kind, source, position)
- sources: one row per conversation or imported document
- entities: retained schema, populated only by a non-default entity strategy
"""

__all__ = ["memory"]
