"""
Conversation Summarizer - Compress older turns with the language model

WHAT: LLM-powered summary of a contiguous window of completed turns
WHERE: halcore/runtime/memory/summarizer.py - summarization layer
WHO: ConversationSession (auto-summarization and backlog summarization)
TIME: One model call per window (seconds on local models)

The summarizer is pure with respect to session state: it returns a
SummaryResult and never touches watermarks itself. The session applies the
result atomically and discards it if the watermark moved in the meantime.
Failures (no model, model error, empty output) raise SummarizationError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ...errors import SummarizationError
from .model_engine import LanguageModel, require_available
from .prompting import SUMMARY_PROMPT, build_summary_prompt
from .telemetry import SPAN_SUMMARIZE, NoOpTelemetryClient, TelemetryClient
from .turn_manager import ChatMessage, count_completed_turns, messages_for_turn_range

logger = logging.getLogger(__name__)


@dataclass
class SummarizerConfig:
    """Configuration for turn-window summarization."""

    prompt_template: str = SUMMARY_PROMPT
    min_messages: int = 2  # one user message + one reply


@dataclass(slots=True)
class SummaryResult:
    summary: str
    start_turn: int
    end_turn: int
    message_count: int

    @property
    def base_watermark(self) -> int:
        """Watermark the window was computed against."""
        return self.start_turn - 1


class Summarizer:
    """Generates a summary for turns ``start..end`` of a conversation."""

    def __init__(
        self,
        model: Optional[LanguageModel] = None,
        *,
        config: SummarizerConfig | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self.model = model
        self.config = config or SummarizerConfig()
        self._telemetry = telemetry or NoOpTelemetryClient()

    def summarize_window(self, messages: Sequence[ChatMessage], start: int, end: int) -> SummaryResult:
        """
        Summarize completed turns *start*..*end* (1-based, inclusive).

        Args:
            messages: Full ordered message list of the conversation
            start: First turn of the window
            end: Last turn of the window

        Returns:
            SummaryResult with the stripped summary text

        Raises:
            SummarizationError: If the window is invalid, runs past the last completed
                turn, or the model is unavailable or fails
        """
        if start < 1 or end < start:
            raise SummarizationError(f"Invalid summary window [{start}, {end}]")
        completed = count_completed_turns(messages)
        if end > completed:
            raise SummarizationError(f"Summary window [{start}, {end}] ends past turn {completed}")

        window = messages_for_turn_range(messages, start, end)
        if len(window) < self.config.min_messages:
            raise SummarizationError(f"No completed turns to summarize in [{start}, {end}]")

        prompt = build_summary_prompt(window, self.config.prompt_template)

        with self._telemetry.span(
            SPAN_SUMMARIZE, attributes={"start_turn": start, "end_turn": end, "messages": len(window)}
        ) as span:
            try:
                model = require_available(self.model)
                response = model.generate(prompt)
            except Exception as exc:
                logger.error(f"Summarization of turns {start}-{end} failed: {exc}")
                raise SummarizationError(f"Summarization failed: {exc}") from exc

            summary = (response or "").strip()
            if not summary:
                raise SummarizationError("Model returned an empty summary")
            span.set_attribute("summary_tokens", len(summary.split()))

        logger.info(f"Summarized turns {start}-{end} ({len(window)} messages)")
        return SummaryResult(summary=summary, start_turn=start, end_turn=end, message_count=len(window))


__all__ = [
    "Summarizer",
    "SummarizerConfig",
    "SummaryResult",
]
