"""
Prompt Assembly - Conversation Prompt and Summarization Prompt Composition

WHAT: Prompt templates and composition utilities for conversation sessions
WHERE: halcore/runtime/memory/prompting.py - prompt generation layer
WHO: ConversationSession building model prompts, Summarizer building summary requests
TIME: Prompt assembly <1ms

Prompt layout (blocks separated by a blank line):

    <system prompt>
    Relevant context from memory:        (only when search returned snippets)
    - [conversation] ...
    - [document] ...
    Summary of earlier conversation:     (only when a summary exists and T > depth)
    <summary>
    User: ... / Assistant: ...           (most recent `depth` turns)
    User: <input>
    Assistant:
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .models import RelevantContext
from .turn_manager import ChatMessage, estimate_tokens, format_transcript

DEFAULT_SYSTEM_PROMPT = (
    "Hello, Hal. You are an experimental AI assistant embedded in the Hal10000 app. "
    "Your mission is to help users explore how assistants work, test ideas, explain your own behavior, "
    "and support creative experimentation. You are aware of the app's features, including memory tuning, "
    "context editing, and file export. Help users understand and adjust these capabilities as needed. "
    "Be curious, cooperative, and proactive in exploring what's possible together."
)

SUMMARY_PROMPT = (
    "Please provide a concise summary of the following conversation that captures the key topics, "
    "information exchanged, and any important context. Keep it brief but comprehensive:\n\n"
    "{transcript}\n\n"
    "Summary:"
)

CONTEXT_HEADER = "Relevant context from memory:"
SUMMARY_HEADER = "Summary of earlier conversation:"

# Memory meter thresholds (estimated tokens).
METER_MEDIUM = 3000
METER_HIGH = 7000


def format_relevant_context(context: Optional[RelevantContext]) -> str:
    """Render search hits as a bullet block; empty string when nothing qualified."""

    if context is None or not context.has_context:
        return ""
    lines = [CONTEXT_HEADER]
    for hit in context.conversation_hits:
        lines.append(f"- [conversation] {hit.unit.text.strip()}")
    for hit in context.document_hits:
        lines.append(f"- [{hit.unit.source_kind}] {hit.unit.text.strip()}")
    for match in context.entity_matches:
        lines.append(f"- [entity] {match}")
    return "\n".join(lines)


def build_summary_prompt(messages: Iterable[ChatMessage], template: str = SUMMARY_PROMPT) -> str:
    transcript = "\n\n".join(
        f"{'User' if m.is_user else 'Assistant'}: {m.content}" for m in messages
    )
    return template.format(transcript=transcript)


def compose_prompt(
    *,
    system_prompt: str,
    history: Sequence[ChatMessage],
    user_input: str,
    summary: Optional[str] = None,
    context: Optional[RelevantContext] = None,
) -> str:
    blocks: List[str] = []
    if system_prompt.strip():
        blocks.append(system_prompt.strip())
    context_block = format_relevant_context(context)
    if context_block:
        blocks.append(context_block)
    if summary and summary.strip():
        blocks.append(f"{SUMMARY_HEADER}\n{summary.strip()}")
    transcript = format_transcript(history)
    if transcript:
        blocks.append(transcript)
    blocks.append(f"User: {user_input}\nAssistant:")
    return "\n\n".join(blocks)


def format_preview(
    *,
    system_prompt: str,
    history: Sequence[ChatMessage],
    user_input: str,
    summary: Optional[str] = None,
    show_token_counts: bool = False,
) -> str:
    """Human-readable prompt preview, one block per message, optional `[N tokens]` suffix."""

    blocks: List[str] = [system_prompt.strip()] if system_prompt.strip() else []
    if summary and summary.strip():
        blocks.append(f"{SUMMARY_HEADER}\n{summary.strip()}")
    for message in history:
        prefix = "User: " if message.is_user else "Assistant: "
        suffix = f" [{message.tokens} tokens]" if show_token_counts else ""
        blocks.append(f"{prefix}{message.content}{suffix}")
    blocks.append(f"User: {user_input}\nAssistant:")
    return "\n\n".join(blocks)


def memory_meter(tokens: int) -> str:
    if tokens < METER_MEDIUM:
        return "low"
    if tokens < METER_HIGH:
        return "medium"
    return "high"


def estimate_prompt_tokens(system_prompt: str, history: Iterable[ChatMessage], user_input: str = "") -> int:
    return estimate_tokens(system_prompt) + sum(m.tokens for m in history) + estimate_tokens(user_input)


__all__ = [
    "CONTEXT_HEADER",
    "DEFAULT_SYSTEM_PROMPT",
    "SUMMARY_HEADER",
    "SUMMARY_PROMPT",
    "build_summary_prompt",
    "compose_prompt",
    "estimate_prompt_tokens",
    "format_preview",
    "format_relevant_context",
    "memory_meter",
]
