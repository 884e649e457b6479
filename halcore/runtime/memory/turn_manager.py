"""
Turn Manager - Conversation Message and Turn Bookkeeping

WHAT: Message list, completed-turn counting, turn windows and recent-history selection
WHERE: halcore/runtime/memory/turn_manager.py - session subsystem
WHO: ConversationSession and Summarizer
TIME: All operations O(n) in the number of messages

A turn is a run of user messages followed by a run of assistant messages; it
is complete once both runs are non-empty. Turn numbers start at 1. Assistant
messages that precede the first user message belong to no turn.

Boundary Notes:
- Message positions are strictly increasing; position is the storage key
- Snapshots are immutable tuples so readers never observe a list mid-update
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Literal, Optional, Sequence

from .models import EMBEDDING_SPACE_KEY, ContentUnit

Role = Literal["user", "assistant"]


def estimate_tokens(text: str) -> int:
    """Rough token estimate: whitespace-delimited word count."""
    return len(text.split())


@dataclass(slots=True)
class ChatMessage:
    """A single conversation message held by a session."""

    message_id: str
    role: Role
    content: str
    position: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    thinking_duration: float | None = None
    is_partial: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        *,
        role: Role,
        content: str,
        position: int,
        thinking_duration: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "ChatMessage":
        return cls(
            message_id=str(uuid.uuid4()),
            role=role,
            content=content,
            position=position,
            thinking_duration=thinking_duration,
            metadata=metadata or {},
        )

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    @property
    def tokens(self) -> int:
        return estimate_tokens(self.content)

    def to_unit(self, conversation_id: str, *, embedding: Sequence[float] = (), space: str = "") -> ContentUnit:
        metadata = dict(self.metadata)
        if space:
            metadata[EMBEDDING_SPACE_KEY] = space
        if self.thinking_duration is not None:
            metadata["thinking_duration"] = self.thinking_duration
        if self.is_partial:
            metadata["is_partial"] = True
        return ContentUnit(
            id=self.message_id,
            text=self.content,
            embedding=list(embedding),
            timestamp=self.timestamp,
            source_kind="conversation",
            source_id=conversation_id,
            position=self.position,
            is_user=self.is_user,
            metadata=metadata,
        )

    @classmethod
    def from_unit(cls, unit: ContentUnit) -> "ChatMessage":
        metadata = dict(unit.metadata)
        thinking = metadata.pop("thinking_duration", None)
        partial = bool(metadata.pop("is_partial", False))
        return cls(
            message_id=unit.id,
            role="user" if unit.is_user else "assistant",
            content=unit.text,
            position=unit.position,
            timestamp=unit.timestamp,
            thinking_duration=float(thinking) if thinking is not None else None,
            is_partial=partial,
            metadata=metadata,
        )


def group_turns(messages: Iterable[ChatMessage]) -> List[List[ChatMessage]]:
    """Split messages into turns; the last group may be incomplete."""

    turns: List[List[ChatMessage]] = []
    current: List[ChatMessage] = []
    seen_user = False
    seen_assistant = False
    for message in messages:
        if message.is_user:
            if seen_assistant:
                turns.append(current)
                current, seen_assistant = [], False
            seen_user = True
            current.append(message)
        elif seen_user:
            seen_assistant = True
            current.append(message)
    if current:
        turns.append(current)
    return turns


def _is_complete(turn: Sequence[ChatMessage]) -> bool:
    return any(m.is_user for m in turn) and any(not m.is_user for m in turn)


def count_completed_turns(messages: Iterable[ChatMessage]) -> int:
    return sum(1 for turn in group_turns(messages) if _is_complete(turn))


def messages_for_turn_range(messages: Iterable[ChatMessage], start: int, end: int) -> List[ChatMessage]:
    """Messages of completed turns numbered *start*..*end* (1-based, inclusive)."""

    selected: List[ChatMessage] = []
    number = 0
    for turn in group_turns(messages):
        if not _is_complete(turn):
            continue
        number += 1
        if number > end:
            break
        if number >= start:
            selected.extend(turn)
    return selected


def recent_turn_messages(messages: Sequence[ChatMessage], depth: int) -> List[ChatMessage]:
    """Walk backwards until *depth* user messages are collected; chronological result."""

    if depth <= 0:
        return []
    collected: List[ChatMessage] = []
    users = 0
    for message in reversed(messages):
        collected.append(message)
        if message.is_user:
            users += 1
            if users >= depth:
                break
    collected.reverse()
    return collected


def format_transcript(messages: Iterable[ChatMessage]) -> str:
    """`User: ...` / `Assistant: ...` lines grouped per turn, turns separated by a blank line."""

    blocks: List[str] = []
    for turn in group_turns(messages):
        users = " ".join(m.content for m in turn if m.is_user)
        replies = " ".join(m.content for m in turn if not m.is_user)
        lines = []
        if users:
            lines.append(f"User: {users}")
        if replies:
            lines.append(f"Assistant: {replies}")
        blocks.append("\n".join(lines))
    return "\n\n".join(b for b in blocks if b)


class TurnManager:
    """Maintains a conversation's ordered messages."""

    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        self._lock = threading.Lock()
        self._messages: List[ChatMessage] = []
        self.extend(messages)

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        with self._lock:
            return tuple(self._messages)

    def next_position(self) -> int:
        with self._lock:
            return self._messages[-1].position + 1 if self._messages else 0

    def add_turn(self, message: ChatMessage) -> None:
        """Append a message; positions must keep increasing."""

        with self._lock:
            if self._messages and message.position <= self._messages[-1].position:
                raise ValueError(
                    f"Message position {message.position} does not follow {self._messages[-1].position}"
                )
            self._messages.append(message)

    def extend(self, messages: Iterable[ChatMessage]) -> None:
        for message in messages:
            self.add_turn(message)

    def replace_all(self, messages: Iterable[ChatMessage]) -> None:
        ordered = sorted(messages, key=lambda m: m.position)
        with self._lock:
            self._messages = ordered

    def clear(self) -> None:
        with self._lock:
            self._messages = []

    def find(self, message_id: str) -> Optional[ChatMessage]:
        with self._lock:
            return next((m for m in self._messages if m.message_id == message_id), None)

    def completed_turns(self) -> int:
        return count_completed_turns(self.messages)

    def recent(self, depth: int) -> List[ChatMessage]:
        return recent_turn_messages(self.messages, depth)

    def summarize(self) -> dict[str, Any]:
        """Return a lightweight summary used for telemetry and status output."""

        messages = self.messages
        return {
            "message_count": len(messages),
            "completed_turns": count_completed_turns(messages),
            "tokens": sum(m.tokens for m in messages),
        }


__all__ = [
    "ChatMessage",
    "Role",
    "TurnManager",
    "count_completed_turns",
    "estimate_tokens",
    "format_transcript",
    "group_turns",
    "messages_for_turn_range",
    "recent_turn_messages",
]
