"""
Session Manager - Conversation State and Auto-Summarization

WHAT: Per-conversation state machine: messages, watermark, summary injection, prompts
WHERE: halcore/runtime/memory/session.py - bridges search, model and storage
WHO: MemoryOrchestrator.open_session callers (chat front-ends, scripts)
TIME: Load <100ms for typical conversations; exchange time dominated by the model

State: {messages, watermark, pending_auto_inject, injected_summary}.

- load(): rebuild messages from the store in position order, restore the
  persisted watermark/summary, and summarize the whole backlog [1, T] when
  T > depth and nothing has been summarized yet.
- After each exchange whose two messages were both stored: if
  (T - watermark) >= depth and T >= depth, summarize [watermark+1, watermark+depth].
- Prompt: system prompt + relevant context + (summary if one exists and
  T > depth) + last `depth` turns + `User: <input>\\nAssistant:`.

Background work: summaries run on the executor (inline when none is given)
and come back as futures. The session applies finished results under its
lock; a result computed against an older watermark or before `clear()` is
discarded. One summary is in flight at a time.

Boundary Notes:
- A failed model call is stored as an `Error: ...` assistant message and
  reported on the ExchangeResult; it never triggers summarization
- Summarization failures leave state untouched and set `last_summary_error`
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from ...embedders import EmbedderBase
from ...errors import SummarizationError
from .memory_store import SQLiteContentStore
from .model_engine import LanguageModel, require_available
from .models import RelevantContext, Source
from .prompting import (
    DEFAULT_SYSTEM_PROMPT,
    compose_prompt,
    estimate_prompt_tokens,
    format_preview,
    memory_meter,
)
from .similarity import SimilaritySearch
from .summarizer import Summarizer, SummaryResult
from .telemetry import SPAN_MODEL_GENERATE, NoOpTelemetryClient, TelemetryClient
from .turn_manager import ChatMessage, TurnManager, count_completed_turns

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_DEPTH = 6


@dataclass(slots=True)
class SessionConfig:
    memory_depth: int = DEFAULT_MEMORY_DEPTH
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    auto_summarize: bool = True
    use_relevant_context: bool = True
    max_results: int = 10
    relevance_threshold: float = 0.3


@dataclass(slots=True, frozen=True)
class SessionState:
    """Immutable snapshot of a conversation's summarization state."""

    conversation_id: str
    system_prompt: str
    memory_depth: int
    watermark: int
    pending_auto_inject: bool
    injected_summary: str
    completed_turns: int


@dataclass(slots=True)
class ExchangeResult:
    """Outcome of one user message -> reply exchange."""

    user_message: ChatMessage
    reply: ChatMessage
    prompt: str = ""
    context: RelevantContext = field(default_factory=RelevantContext)
    error: Optional[str] = None
    stored: bool = True
    summary_future: Optional[Future] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConversationSession:
    """One conversation: owns its messages and summarization state."""

    def __init__(
        self,
        conversation_id: str,
        *,
        store: SQLiteContentStore,
        embedder: EmbedderBase,
        model: Optional[LanguageModel] = None,
        search: Optional[SimilaritySearch] = None,
        summarizer: Optional[Summarizer] = None,
        config: SessionConfig | None = None,
        executor: Optional[Executor] = None,
        telemetry: TelemetryClient | None = None,
        system_prompt: Optional[str] = None,
        memory_depth: Optional[int] = None,
        display_name: Optional[str] = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.config = config or SessionConfig()
        self._store = store
        self._embedder = embedder
        self._model = model
        self._search = search
        self._telemetry = telemetry or NoOpTelemetryClient()
        self._summarizer = summarizer or Summarizer(model, telemetry=self._telemetry)
        self._executor = executor
        self._display_name = display_name

        self._explicit_prompt = system_prompt
        self._explicit_depth = memory_depth
        self._system_prompt = system_prompt if system_prompt is not None else self.config.system_prompt
        self._depth = int(memory_depth if memory_depth is not None else self.config.memory_depth)

        self._turns = TurnManager()
        self._lock = threading.RLock()
        self._watermark = 0
        self._summary = ""
        self._pending_auto_inject = False
        self._epoch = 0
        self._next_position = 0
        self._inflight: Optional[Tuple[Future, int]] = None
        self.last_summary_error: Optional[str] = None

    # ---------------------- properties ----------------------
    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return self._turns.messages

    @property
    def memory_depth(self) -> int:
        return self._depth

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def state(self) -> SessionState:
        self.poll_background()
        with self._lock:
            return SessionState(
                conversation_id=self.conversation_id,
                system_prompt=self._system_prompt,
                memory_depth=self._depth,
                watermark=self._watermark,
                pending_auto_inject=self._pending_auto_inject,
                injected_summary=self._summary,
                completed_turns=self._turns.completed_turns(),
            )

    def completed_turns(self) -> int:
        return self._turns.completed_turns()

    # ---------------------- lifecycle ----------------------
    def load(self) -> Optional[Future]:
        """Rebuild messages and summary state from the store.

        Returns the backlog summarization future when one was started.
        """

        units = self._store.fetch_ordered("conversation", self.conversation_id)
        messages = [ChatMessage.from_unit(u) for u in units]
        source = self._store.get_source(self.conversation_id)

        with self._lock:
            self._epoch += 1
            self._inflight = None
            self._turns.replace_all(messages)
            self._next_position = messages[-1].position + 1 if messages else 0
            total = count_completed_turns(messages)

            if source is None:
                self._watermark, self._summary, self._pending_auto_inject = 0, "", False
                self._ensure_source()
            else:
                meta = source.metadata
                if self._explicit_prompt is None and meta.get("system_prompt"):
                    self._system_prompt = str(meta["system_prompt"])
                if self._explicit_depth is None and meta.get("memory_depth"):
                    self._depth = int(meta["memory_depth"])
                self._watermark = min(int(meta.get("watermark", 0) or 0), total)
                self._summary = str(meta.get("summary", "") or "")
                self._pending_auto_inject = bool(meta.get("pending_auto_inject", False))
                if self._explicit_prompt is not None or self._explicit_depth is not None:
                    self._persist_state()

            logger.info(
                f"Loaded conversation {self.conversation_id}: {len(messages)} messages, "
                f"{total} completed turns, watermark {self._watermark}"
            )
            backlog = self.config.auto_summarize and self._watermark == 0 and total > self._depth > 0

        if backlog:
            return self._start_summary(1, total)
        return None

    def clear(self) -> None:
        """Forget this session's messages and summary; stored rows stay until a full reset."""

        with self._lock:
            self._epoch += 1
            self._inflight = None
            self._turns.clear()
            self._watermark = 0
            self._summary = ""
            self._pending_auto_inject = False
            self.last_summary_error = None
            self._persist_state()

    def discard_state(self) -> None:
        """Drop everything held in memory after the backing store was wiped.

        Unlike clear() nothing is persisted and positions restart at 0. Any
        summary still in flight is discarded when it finishes.
        """

        with self._lock:
            self._epoch += 1
            self._inflight = None
            self._turns.clear()
            self._next_position = 0
            self._watermark = 0
            self._summary = ""
            self._pending_auto_inject = False
            self.last_summary_error = None
        logger.info(f"Discarded in-memory state of conversation {self.conversation_id}")

    def set_memory_depth(self, depth: int) -> None:
        if depth < 1:
            raise ValueError("memory depth must be >= 1")
        with self._lock:
            self._depth = int(depth)
            self._persist_state()

    def set_system_prompt(self, prompt: str) -> None:
        with self._lock:
            self._system_prompt = prompt
            self._persist_state()

    # ---------------------- persistence ----------------------
    def _ensure_source(self) -> None:
        source = Source(
            id=self.conversation_id,
            kind="conversation",
            display_name=self._display_name or f"Conversation {self.conversation_id[:8]}",
            metadata=self._state_metadata(),
        )
        if not self._store.upsert_source(source):
            logger.warning(f"Could not create source row for conversation {self.conversation_id}")

    def _state_metadata(self) -> dict[str, Any]:
        return {
            "watermark": self._watermark,
            "summary": self._summary,
            "pending_auto_inject": self._pending_auto_inject,
            "memory_depth": self._depth,
            "system_prompt": self._system_prompt,
        }

    def _persist_state(self) -> None:
        if not self._store.update_source_metadata(self.conversation_id, self._state_metadata()):
            self._ensure_source()

    def _store_message(self, message: ChatMessage) -> bool:
        embedding = self._embedder.embed_query(message.content)
        unit = message.to_unit(self.conversation_id, embedding=embedding.tolist(), space=embedding.space)
        return self._store.upsert(unit)

    def record_exchange(
        self,
        user_text: str,
        reply_text: str,
        *,
        thinking_duration: float | None = None,
        reply_metadata: dict[str, Any] | None = None,
        summarize: bool = True,
    ) -> ExchangeResult:
        """Persist a user message and its reply, then run the summarization trigger."""

        with self._lock:
            position = self._next_position
            self._next_position += 2
        user = ChatMessage.create(role="user", content=user_text, position=position)
        reply = ChatMessage.create(
            role="assistant",
            content=reply_text,
            position=position + 1,
            thinking_duration=thinking_duration,
            metadata=reply_metadata,
        )

        stored = self._store_message(user)
        stored = self._store_message(reply) and stored
        with self._lock:
            self._turns.add_turn(user)
            self._turns.add_turn(reply)
        self._store.refresh_source_counts(self.conversation_id)

        result = ExchangeResult(user_message=user, reply=reply, stored=stored)
        if not stored:
            logger.warning(f"Exchange at position {position} not fully stored; skipping summarization check")
        elif summarize:
            result.summary_future = self.maybe_summarize()
        return result

    # ---------------------- summarization ----------------------
    def should_summarize(self) -> bool:
        with self._lock:
            total = self._turns.completed_turns()
            depth = self._depth
            return depth > 0 and total >= depth and (total - self._watermark) >= depth

    def maybe_summarize(self) -> Optional[Future]:
        """Start a summary of the next `depth` turns when the trigger condition holds."""

        self.poll_background()
        if not self.config.auto_summarize:
            return None
        with self._lock:
            if self._inflight is not None or not self.should_summarize():
                return None
            start = self._watermark + 1
            end = self._watermark + self._depth
        return self._start_summary(start, end)

    def summarize_now(self, start: int, end: int) -> SummaryResult:
        """Synchronously summarize turns *start*..*end* and apply the result.

        Raises:
            SummarizationError: On model failure; state is left unchanged
        """

        with self._lock:
            epoch = self._epoch
        result = self._summarizer.summarize_window(self.messages, start, end)
        self._apply_summary(result, epoch)
        return result

    def _start_summary(self, start: int, end: int) -> Future:
        with self._lock:
            epoch = self._epoch
            snapshot = self.messages
        future = self._submit(self._summarizer.summarize_window, snapshot, start, end)
        with self._lock:
            self._inflight = (future, epoch)
        if self._executor is None:
            self.poll_background()
        return future

    def _submit(self, fn: Callable[..., SummaryResult], *args: Any) -> Future:
        if self._executor is not None:
            return self._executor.submit(fn, *args)
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def poll_background(self, *, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """Apply a finished background summary; returns True if one was applied."""

        with self._lock:
            inflight = self._inflight
        if inflight is None:
            return False
        future, epoch = inflight
        if not future.done():
            if not wait:
                return False
            future.exception(timeout=timeout)

        applied = False
        with self._lock:
            if self._inflight is not inflight:
                return False
            self._inflight = None
            error = future.exception()
            if error is not None:
                self.last_summary_error = str(error)
                logger.warning(f"Summarization failed for {self.conversation_id}; state unchanged: {error}")
            else:
                applied = self._apply_summary(future.result(), epoch)
        if applied:
            self.maybe_summarize()
        return applied

    def _apply_summary(self, result: SummaryResult, epoch: int) -> bool:
        with self._lock:
            if epoch != self._epoch or result.base_watermark != self._watermark:
                logger.info(
                    f"Discarding superseded summary for turns {result.start_turn}-{result.end_turn} "
                    f"(watermark now {self._watermark})"
                )
                return False
            self._summary = result.summary
            self._watermark = result.end_turn
            self._pending_auto_inject = True
            self.last_summary_error = None
            self._persist_state()
            return True

    # ---------------------- prompting ----------------------
    def _history_and_summary(self) -> Tuple[List[ChatMessage], Optional[str]]:
        with self._lock:
            total = self._turns.completed_turns()
            history = self._turns.recent(self._depth)
            summary = self._summary if self._summary and total > self._depth else None
            return history, summary

    def build_prompt(self, user_input: str, context: Optional[RelevantContext] = None) -> str:
        history, summary = self._history_and_summary()
        return compose_prompt(
            system_prompt=self._system_prompt,
            history=history,
            user_input=user_input,
            summary=summary,
            context=context,
        )

    def preview_prompt(self, user_input: str = "", *, show_token_counts: bool = False) -> str:
        history, summary = self._history_and_summary()
        return format_preview(
            system_prompt=self._system_prompt,
            history=history,
            user_input=user_input,
            summary=summary,
            show_token_counts=show_token_counts,
        )

    def memory_meter(self, user_input: str = "") -> Tuple[int, str]:
        """(estimated prompt tokens, low/medium/high) for the next prompt."""
        history, _ = self._history_and_summary()
        tokens = estimate_prompt_tokens(self._system_prompt, history, user_input)
        return tokens, memory_meter(tokens)

    # ---------------------- messaging ----------------------
    def send_user_message(self, content: str) -> ExchangeResult:
        """Search memory, build the prompt, call the model, persist both messages."""

        text = content.strip()
        if not text:
            raise ValueError("Cannot send an empty message")
        self.poll_background()
        started = time.perf_counter()

        context = RelevantContext()
        if self._search is not None and self.config.use_relevant_context:
            context = self._search.search(
                text,
                conversation_id=self.conversation_id,
                max_results=self.config.max_results,
                threshold=self.config.relevance_threshold,
            )

        with self._lock:
            if self._pending_auto_inject:
                self._pending_auto_inject = False
                self._persist_state()
        prompt = self.build_prompt(text, context)

        error: Optional[str] = None
        with self._telemetry.span(SPAN_MODEL_GENERATE, attributes={"prompt_tokens": len(prompt.split())}) as span:
            try:
                reply_text = require_available(self._model).generate(prompt).strip()
            except Exception as exc:
                logger.error(f"Model call failed for {self.conversation_id}: {exc}")
                error = str(exc) or type(exc).__name__
                reply_text = f"Error: {error}"
                span.set_attribute("success", False)

        result = self.record_exchange(
            text,
            reply_text,
            thinking_duration=time.perf_counter() - started,
            reply_metadata={"error": True} if error else None,
            summarize=error is None,
        )
        result.prompt = prompt
        result.context = context
        result.error = error
        return result


__all__ = [
    "ConversationSession",
    "DEFAULT_MEMORY_DEPTH",
    "ExchangeResult",
    "SessionConfig",
    "SessionState",
    "SummarizationError",
]
