from halcore.runtime.memory.models import ContentUnit, RelevantContext, SearchHit
from halcore.runtime.memory.prompting import (
    CONTEXT_HEADER,
    SUMMARY_HEADER,
    build_summary_prompt,
    compose_prompt,
    estimate_prompt_tokens,
    format_preview,
    memory_meter,
)
from halcore.runtime.memory.turn_manager import ChatMessage


def history():
    return [
        ChatMessage.create(role="user", content="What is a lighthouse?", position=0),
        ChatMessage.create(role="assistant", content="A tower with a light.", position=1),
    ]


def test_compose_prompt_layout():
    prompt = compose_prompt(system_prompt="Be brief.", history=history(), user_input="Why?")
    assert prompt == (
        "Be brief.\n\n"
        "User: What is a lighthouse?\nAssistant: A tower with a light.\n\n"
        "User: Why?\nAssistant:"
    )


def test_compose_prompt_includes_context_and_summary():
    context = RelevantContext(
        document_hits=[
            SearchHit(
                unit=ContentUnit(text="Lighthouses guide ships.", source_kind="document", source_id="d", position=0),
                relevance_score=0.8,
            )
        ],
        conversation_hits=[
            SearchHit(unit=ContentUnit(text="I like the sea.", source_id="c", position=0), relevance_score=0.5)
        ],
    )
    prompt = compose_prompt(
        system_prompt="Be brief.", history=[], user_input="Tell me more", summary="Talked about ships.", context=context
    )

    blocks = prompt.split("\n\n")
    assert blocks[0] == "Be brief."
    assert blocks[1] == f"{CONTEXT_HEADER}\n- [conversation] I like the sea.\n- [document] Lighthouses guide ships."
    assert blocks[2] == f"{SUMMARY_HEADER}\nTalked about ships."
    assert blocks[3] == "User: Tell me more\nAssistant:"


def test_empty_context_adds_nothing():
    prompt = compose_prompt(system_prompt="S", history=[], user_input="hi", context=RelevantContext())
    assert CONTEXT_HEADER not in prompt


def test_summary_prompt_wraps_transcript():
    prompt = build_summary_prompt(history())
    assert prompt.startswith("Please provide a concise summary of the following conversation")
    assert "User: What is a lighthouse?\n\nAssistant: A tower with a light." in prompt
    assert prompt.endswith("Summary:")


def test_preview_shows_token_counts():
    preview = format_preview(system_prompt="S", history=history(), user_input="", show_token_counts=True)
    assert "User: What is a lighthouse? [4 tokens]" in preview
    assert "Assistant: A tower with a light. [5 tokens]" in preview


def test_memory_meter_levels():
    assert memory_meter(0) == "low"
    assert memory_meter(2999) == "low"
    assert memory_meter(3000) == "medium"
    assert memory_meter(7000) == "high"
    assert estimate_prompt_tokens("one two", history(), "three") == 2 + 9 + 1
