import dataclasses
from concurrent.futures import Executor, Future

import pytest

from halcore.embedders import HashEmbedder
from halcore.errors import SummarizationError
from halcore.runtime.memory.prompting import SUMMARY_HEADER
from halcore.runtime.memory.session import ConversationSession, SessionConfig
from halcore.runtime.memory.similarity import SimilaritySearch
from halcore.runtime.memory.telemetry import SPAN_MODEL_GENERATE, RecordingTelemetryClient

SUMMARY_MARKER = "Please provide a concise summary"


class DummyModel:
    """Echoes replies; numbers summaries so tests can tell them apart."""

    def __init__(self, *, fail_replies=False, fail_summaries=False):
        self.fail_replies = fail_replies
        self.fail_summaries = fail_summaries
        self.prompts = []
        self.summaries = 0

    def is_available(self):
        return True

    def generate(self, prompt):
        if prompt.startswith(SUMMARY_MARKER):
            if self.fail_summaries:
                raise RuntimeError("summary backend down")
            self.summaries += 1
            return f"summary #{self.summaries}"
        self.prompts.append(prompt)
        if self.fail_replies:
            raise RuntimeError("model crashed")
        return "ECHO:" + prompt.rsplit("User: ", 1)[-1].split("\n", 1)[0]


class ManualExecutor(Executor):
    """Holds submitted work until run_all() is called."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)


def make_session(store, model, *, depth=2, executor=None, conversation_id="c1", **kwargs):
    embedder = HashEmbedder()
    session = ConversationSession(
        conversation_id,
        store=store,
        embedder=embedder,
        model=model,
        search=SimilaritySearch(store, embedder),
        config=SessionConfig(memory_depth=depth, system_prompt="You are Hal."),
        executor=executor,
        **kwargs,
    )
    session.load()
    return session


def chat(session, count, start=1):
    for i in range(start, start + count):
        session.send_user_message(f"message {i}")


def test_send_user_message_persists_both_messages(store):
    model = DummyModel()
    session = make_session(store, model)

    result = session.send_user_message("  hello there  ")

    assert result.ok
    assert result.reply.content == "ECHO:hello there"
    assert result.reply.thinking_duration is not None
    assert result.prompt.startswith("You are Hal.")
    assert result.prompt.endswith("User: hello there\nAssistant:")
    stored = store.fetch_ordered("conversation", "c1")
    assert [(m.is_user, m.text) for m in stored] == [(True, "hello there"), (False, "ECHO:hello there")]
    assert stored[0].embedding_space == "hash-v1:64"
    assert store.get_source("c1").chunk_count == 2


def test_blank_message_is_rejected(store):
    session = make_session(store, DummyModel())
    with pytest.raises(ValueError):
        session.send_user_message("   ")


def test_messages_round_trip_through_load(store):
    session = make_session(store, DummyModel(), depth=10)
    chat(session, 3)

    reloaded = make_session(store, DummyModel(), depth=10)

    assert [m.content for m in reloaded.messages] == [m.content for m in session.messages]
    assert [m.role for m in reloaded.messages] == ["user", "assistant"] * 3
    assert reloaded.completed_turns() == 3


def test_watermark_advances_by_depth(store):
    model = DummyModel()
    session = make_session(store, model, depth=2)

    chat(session, 1)
    assert session.state.watermark == 0
    chat(session, 1, start=2)
    state = session.state
    assert state.watermark == 2
    assert state.injected_summary == "summary #1"
    assert state.pending_auto_inject

    chat(session, 1, start=3)
    assert session.state.watermark == 2
    assert not session.state.pending_auto_inject
    chat(session, 2, start=4)
    assert session.state.watermark == 4
    assert model.summaries == 2


def test_summary_is_injected_only_after_depth(store):
    model = DummyModel()
    session = make_session(store, model, depth=2)
    chat(session, 2)
    assert SUMMARY_HEADER not in session.build_prompt("next")

    chat(session, 1, start=3)
    prompt = session.build_prompt("next")
    assert f"{SUMMARY_HEADER}\nsummary #1" in prompt
    # only the last two turns stay verbatim
    assert "message 1" not in prompt
    assert "message 2" in prompt and "message 3" in prompt


def test_failed_summary_leaves_state_unchanged(store):
    model = DummyModel(fail_summaries=True)
    session = make_session(store, model, depth=2)

    chat(session, 2)

    state = session.state
    assert state.watermark == 0
    assert state.injected_summary == ""
    assert "summary backend down" in session.last_summary_error


def test_model_failure_records_error_reply(store):
    model = DummyModel(fail_replies=True)
    telemetry = RecordingTelemetryClient()
    session = make_session(store, model, depth=1, telemetry=telemetry)

    result = session.send_user_message("hello")

    assert not result.ok
    assert result.error == "model crashed"
    assert result.reply.content == "Error: model crashed"
    assert result.summary_future is None
    assert session.state.watermark == 0
    stored = store.fetch_ordered("conversation", "c1")
    assert stored[1].text == "Error: model crashed"
    assert stored[1].metadata["error"] is True
    assert telemetry.spans[-1][0] == SPAN_MODEL_GENERATE
    assert telemetry.spans[-1][1]["success"] is False


def test_missing_model_is_reported_as_error(store):
    session = make_session(store, None)
    result = session.send_user_message("hello")
    assert result.reply.content.startswith("Error: ")
    assert len(store.fetch_ordered("conversation", "c1")) == 2


def test_load_summarizes_backlog(store):
    writer = make_session(store, DummyModel(), depth=10)
    for i in range(4):
        writer.record_exchange(f"q{i}", f"a{i}", summarize=False)

    model = DummyModel()
    session = make_session(store, model, depth=2, memory_depth=2)

    state = session.state
    assert model.summaries == 1
    assert state.watermark == 4
    assert state.injected_summary == "summary #1"


def test_load_restores_persisted_watermark(store):
    model = DummyModel()
    first = make_session(store, model, depth=2)
    chat(first, 3)
    assert first.state.watermark == 2

    second_model = DummyModel()
    second = make_session(store, second_model, depth=2)

    state = second.state
    assert state.watermark == 2
    assert state.injected_summary == "summary #1"
    assert second_model.summaries == 0


def test_explicit_settings_override_persisted_ones(store):
    make_session(store, DummyModel(), depth=3).set_system_prompt("Persisted prompt")

    restored = make_session(store, DummyModel(), depth=3)
    assert restored.system_prompt == "Persisted prompt"

    override = make_session(store, DummyModel(), system_prompt="Explicit", memory_depth=5)
    assert override.system_prompt == "Explicit"
    assert override.memory_depth == 5
    assert store.get_source("c1").metadata["memory_depth"] == 5


def test_background_summary_applies_when_polled(store):
    executor = ManualExecutor()
    model = DummyModel()
    session = make_session(store, model, depth=2, executor=executor)

    chat(session, 2)
    assert session.state.watermark == 0
    assert len(executor.pending) == 1

    # a second trigger while one is in flight does not queue more work
    assert session.maybe_summarize() is None

    executor.run_all()
    assert session.poll_background()
    assert session.state.watermark == 2


def test_summary_finishing_after_clear_is_discarded(store):
    executor = ManualExecutor()
    session = make_session(store, DummyModel(), depth=2, executor=executor)
    chat(session, 2)

    session.clear()
    executor.run_all()

    state = session.state
    assert state.watermark == 0
    assert state.injected_summary == ""
    assert session.messages == ()


def test_superseded_summary_is_discarded(store):
    executor = ManualExecutor()
    model = DummyModel()
    session = make_session(store, model, depth=2, executor=executor)
    chat(session, 2)

    session.summarize_now(1, 2)
    assert session.state.watermark == 2

    executor.run_all()
    assert not session.poll_background()
    state = session.state
    assert state.watermark == 2
    assert state.injected_summary == "summary #1"


def test_clear_keeps_positions_monotonic(store):
    session = make_session(store, DummyModel(), depth=5)
    chat(session, 1)
    session.clear()
    chat(session, 1, start=2)

    positions = [u.position for u in store.fetch_ordered("conversation", "c1")]
    assert positions == [0, 1, 2, 3]


def test_relevant_context_from_other_conversations(store):
    other = make_session(store, DummyModel(), conversation_id="c-old", depth=5)
    other.record_exchange("the lighthouse keeper", "noted", summarize=False)

    session = make_session(store, DummyModel(), depth=5)
    result = session.send_user_message("the lighthouse keeper")

    assert "the lighthouse keeper" in result.context.conversation_snippets
    assert max(result.context.relevance_scores) == pytest.approx(1.0)
    assert "- [conversation] the lighthouse keeper" in result.prompt


def test_memory_meter_and_preview(store):
    session = make_session(store, DummyModel(), depth=5)
    chat(session, 1)

    tokens, level = session.memory_meter("next question")
    assert level == "low"
    assert tokens == 3 + 2 + 2 + 2
    assert "[2 tokens]" in session.preview_prompt(show_token_counts=True)


def test_set_memory_depth_validates(store):
    session = make_session(store, DummyModel())
    with pytest.raises(ValueError):
        session.set_memory_depth(0)
    session.set_memory_depth(4)
    assert store.get_source("c1").metadata["memory_depth"] == 4


def test_summarize_now_rejects_window_past_completed_turns(store):
    model = DummyModel()
    session = make_session(store, model, depth=5)
    chat(session, 3)

    with pytest.raises(SummarizationError):
        session.summarize_now(1, 100)

    state = session.state
    assert state.watermark == 0
    assert model.summaries == 0

    session.summarize_now(1, 3)
    state = session.state
    assert state.watermark == 3 == state.completed_turns
    assert store.get_source("c1").metadata["watermark"] == 3


def test_discard_state_forgets_everything_without_persisting(store):
    executor = ManualExecutor()
    session = make_session(store, DummyModel(), depth=2, executor=executor)
    chat(session, 2)

    session.discard_state()
    executor.run_all()

    assert not session.poll_background()
    assert session.messages == ()
    assert session.state.watermark == 0
    assert store.get_source("c1").metadata["watermark"] == 0
    session.record_exchange("again", "ok", summarize=False)
    assert session.messages[0].position == 0


def test_session_state_is_frozen(store):
    state = make_session(store, DummyModel()).state
    with pytest.raises(dataclasses.FrozenInstanceError):
        state.watermark = 5
