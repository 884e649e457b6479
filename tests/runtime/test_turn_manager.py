import pytest

from halcore.runtime.memory.turn_manager import (
    ChatMessage,
    TurnManager,
    count_completed_turns,
    estimate_tokens,
    format_transcript,
    group_turns,
    messages_for_turn_range,
    recent_turn_messages,
)


def build(*roles):
    return [
        ChatMessage.create(role=role, content=f"{role}-{i}", position=i)
        for i, role in enumerate(roles)
    ]


def test_estimate_tokens_counts_words():
    assert estimate_tokens("one two  three\nfour") == 4
    assert estimate_tokens("   ") == 0


def test_completed_turns_need_both_roles():
    assert count_completed_turns(build("user", "assistant", "user")) == 1
    assert count_completed_turns(build("user", "user", "assistant", "assistant")) == 1
    assert count_completed_turns(build("assistant", "user", "assistant")) == 1
    assert count_completed_turns([]) == 0


def test_leading_assistant_messages_belong_to_no_turn():
    turns = group_turns(build("assistant", "user", "assistant"))
    assert [[m.role for m in t] for t in turns] == [["user", "assistant"]]


def test_turn_window_is_one_based_and_inclusive():
    messages = build("user", "assistant", "user", "assistant", "user", "assistant", "user")
    window = messages_for_turn_range(messages, 2, 3)
    assert [m.content for m in window] == ["user-2", "assistant-3", "user-4", "assistant-5"]
    assert messages_for_turn_range(messages, 4, 5) == []


def test_recent_collects_depth_user_messages():
    messages = build("user", "assistant", "user", "assistant", "user", "assistant")
    recent = recent_turn_messages(messages, 2)
    assert [m.content for m in recent] == ["user-2", "assistant-3", "user-4", "assistant-5"]
    assert recent_turn_messages(messages, 0) == []
    assert len(recent_turn_messages(messages, 10)) == 6


def test_transcript_format():
    messages = build("user", "assistant", "user", "assistant")
    assert format_transcript(messages) == (
        "User: user-0\nAssistant: assistant-1\n\nUser: user-2\nAssistant: assistant-3"
    )


def test_manager_enforces_increasing_positions():
    manager = TurnManager(build("user", "assistant"))
    assert manager.next_position() == 2
    with pytest.raises(ValueError):
        manager.add_turn(ChatMessage.create(role="user", content="late", position=1))


def test_manager_summary_and_lookup():
    messages = build("user", "assistant", "user")
    manager = TurnManager(messages)

    summary = manager.summarize()
    assert summary == {"message_count": 3, "completed_turns": 1, "tokens": 3}
    assert manager.find(messages[1].message_id) is messages[1]
    assert manager.find("missing") is None

    manager.replace_all(reversed(messages))
    assert [m.position for m in manager.messages] == [0, 1, 2]
    manager.clear()
    assert manager.messages == ()
    assert manager.next_position() == 0


def test_message_unit_round_trip_keeps_reply_details():
    reply = ChatMessage.create(role="assistant", content="answer", position=3, thinking_duration=1.5)
    reply.is_partial = True

    unit = reply.to_unit("c1", embedding=[0.5, 0.5], space="hash-v1:64")
    restored = ChatMessage.from_unit(unit)

    assert unit.source_kind == "conversation"
    assert unit.embedding_space == "hash-v1:64"
    assert not unit.is_user
    assert restored.role == "assistant"
    assert restored.thinking_duration == 1.5
    assert restored.is_partial
    assert restored.message_id == reply.message_id
    assert "embedding_space" in restored.metadata
