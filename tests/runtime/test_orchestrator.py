from concurrent.futures import ThreadPoolExecutor

import threading

import pytest

from halcore.embedders import HASH_SPACE, EmbeddingConfig, HashEmbedder
from halcore.errors import DestructiveOperationError
from halcore.runtime.memory.orchestrator import MemoryConfig, MemoryOrchestrator
from halcore.runtime.memory.telemetry import SPAN_MODEL_GENERATE, SPAN_SEARCH, RecordingTelemetryClient


class DummyModel:
    def is_available(self):
        return True

    def generate(self, prompt):
        if prompt.startswith("Please provide a concise summary"):
            return "short summary"
        return "echo:" + prompt.rsplit("User: ", 1)[-1].split("\n", 1)[0]


@pytest.fixture
def memory(tmp_path):
    config = MemoryConfig(
        db_path=tmp_path / "memory.sqlite",
        memory_depth=2,
        embedding=EmbeddingConfig(model_name="hash"),
        background_workers=0,
    )
    orchestrator = MemoryOrchestrator(config, model=DummyModel())
    yield orchestrator
    orchestrator.close()


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("HAL_MEMORY_DB", str(tmp_path / "env.sqlite"))
    monkeypatch.setenv("HAL_MEMORY_DEPTH", "4")
    monkeypatch.setenv("HAL_RELEVANCE_THRESHOLD", "0.5")
    monkeypatch.setenv("HAL_MAX_RESULTS", "not-a-number")
    monkeypatch.setenv("HAL_AUTO_SUMMARIZE", "false")
    monkeypatch.setenv("HAL_EMBED_MODEL", "hash")

    config = MemoryConfig.from_env()

    assert config.db_path == tmp_path / "env.sqlite"
    assert config.memory_depth == 4
    assert config.relevance_threshold == 0.5
    assert config.max_results == 10
    assert config.auto_summarize is False
    assert config.embedding.model_name == "hash"


def test_store_turn_and_get_messages(memory):
    memory.store_turn("c1", "hi", "hello", thinking_duration=0.25)
    memory.store_turn("c1", "how are you", "fine")

    messages = memory.get_messages("c1")

    assert [m.content for m in messages] == ["hi", "hello", "how are you", "fine"]
    assert messages[1].thinking_duration == 0.25
    assert memory.stats.user_messages == 2
    assert memory.open_session("c1").state.watermark == 2


def test_open_session_is_cached(memory):
    session = memory.open_session("c1")
    assert memory.open_session("c1") is session
    assert memory.open_session().conversation_id != "c1"


def test_send_through_session_uses_model(memory):
    result = memory.open_session("c1").send_user_message("ping")
    assert result.reply.content == "echo:ping"


def test_store_content_and_search(memory):
    memory.store_content("note.txt", "The spare key is under the blue flowerpot.", "/notes/note.txt")

    context = memory.search("The spare key is under the blue flowerpot.")

    assert context.document_snippets == ["The spare key is under the blue flowerpot."]
    assert context.document_hits[0].relevance_score == pytest.approx(1.0)
    assert memory.stats.documents == 1


def test_status_reports_store_and_tiers(memory):
    memory.store_turn("c1", "hi", "hello")
    status = memory.status()

    assert status["healthy"] is True
    assert status["embedding_space"] == HASH_SPACE
    assert status["embedding_tier"] == 2
    assert status["model_available"] is True
    assert status["stats"]["conversations"] == 1
    assert status["open_sessions"] == ["c1"]
    assert status["entity_strategy"] == "none"


def test_reset_clears_everything(memory):
    memory.store_turn("c1", "hi", "hello")
    memory.store_content("note.txt", "Some text.", "/notes/note.txt")

    report = memory.reset()

    assert report.success
    assert memory.stats.is_empty
    assert memory.get_messages("c1") == []
    assert memory.open_session("c1").messages == ()
    memory.store_turn("c2", "after", "reset")
    assert len(memory.get_messages("c2")) == 2


def test_submit_import_runs_inline_without_workers(memory, tmp_path):
    path = tmp_path / "doc.txt"
    path.write_text("Imported in the background.", encoding="utf-8")

    future = memory.submit_import([path])

    results = future.result(timeout=5)
    assert [r.source.display_name for r in results] == ["doc.txt"]
    assert memory.stats.documents == 1


def test_submit_import_on_thread_pool(tmp_path):
    path = tmp_path / "doc.txt"
    path.write_text("Imported on a worker thread.", encoding="utf-8")
    config = MemoryConfig(db_path=tmp_path / "m.sqlite", embedding=EmbeddingConfig(model_name="hash"))

    with ThreadPoolExecutor(max_workers=1) as executor:
        memory = MemoryOrchestrator(config, executor=executor)
        results = memory.submit_import([path]).result(timeout=30)
    memory.close()

    assert results[0].stored == 1


def test_reembed_incomparable_moves_units_into_active_space(tmp_path):
    db = tmp_path / "memory.sqlite"
    config = MemoryConfig(db_path=db, embedding=EmbeddingConfig(model_name="hash"), background_workers=0)

    with MemoryOrchestrator(config) as memory:
        memory.store_content("a.txt", "Alpha document.", "/a.txt")
        [unit] = memory.store.iter_units()
        memory.store.replace_embedding(unit.id, [1.0, 0.0, 0.0], "st:old-model:3")

        assert memory.search("Alpha document.").skipped_incomparable == 1
        assert memory.reembed_incomparable() == 1
        assert memory.reembed_incomparable() == 0

        context = memory.search("Alpha document.")
        assert context.skipped_incomparable == 0
        assert context.document_snippets == ["Alpha document."]


def test_model_unavailable_by_default(tmp_path):
    config = MemoryConfig(db_path=tmp_path / "m.sqlite", embedding=EmbeddingConfig(model_name="hash"), background_workers=0)
    with MemoryOrchestrator(config) as memory:
        assert memory.status()["model_available"] is False
        result = memory.open_session("c1").send_user_message("hello")
        assert result.error is not None
        assert result.reply.content.startswith("Error: ")


def test_orchestrator_emits_telemetry(tmp_path):
    telemetry = RecordingTelemetryClient()
    config = MemoryConfig(db_path=tmp_path / "m.sqlite", background_workers=0)
    with MemoryOrchestrator(config, model=DummyModel(), embedder=HashEmbedder(), telemetry=telemetry) as memory:
        memory.open_session("c1").send_user_message("ping")

    names = telemetry.names()
    assert names[0] == SPAN_SEARCH
    assert names[-1] == SPAN_MODEL_GENERATE
    attrs = telemetry.spans[-1][1]
    assert attrs["success"] is True
    assert "duration_ms" in attrs
    assert attrs["prompt_tokens"] > 0


def test_unknown_entity_strategy_is_rejected(tmp_path):
    config = MemoryConfig(db_path=tmp_path / "m.sqlite", entity_strategy="spacy", background_workers=0)
    with pytest.raises(ValueError):
        MemoryOrchestrator(config, embedder=HashEmbedder())


def test_session_held_across_reset_starts_over(memory):
    session = memory.open_session("c1")
    session.send_user_message("secret alpha")
    session.send_user_message("secret beta")

    assert memory.reset().success

    assert session.messages == ()
    state = session.state
    assert (state.watermark, state.injected_summary, state.pending_auto_inject) == (0, "", False)
    assert "secret alpha" not in session.build_prompt("hello")

    session.send_user_message("fresh start")
    assert [m.position for m in memory.get_messages("c1")] == [0, 1]
    assert memory.open_session("c1") is session


class BlockingExtractor:
    def __init__(self):
        self.release = threading.Event()

    def extract(self, handle, fmt):
        self.release.wait(timeout=30)
        return "Slow document body."


def test_reset_waits_for_running_imports(tmp_path):
    path = tmp_path / "slow.pdf"
    path.write_bytes(b"%PDF")
    extractor = BlockingExtractor()
    config = MemoryConfig(db_path=tmp_path / "m.sqlite", embedding=EmbeddingConfig(model_name="hash"))

    with ThreadPoolExecutor(max_workers=1) as executor:
        memory = MemoryOrchestrator(config, executor=executor, extractor=extractor)
        future = memory.submit_import([path])

        with pytest.raises(DestructiveOperationError):
            memory.reset(import_timeout=0.05)

        extractor.release.set()
        report = memory.reset()

        assert future.done()
        assert report.success
        assert memory.stats.is_empty
        assert memory.store.list_sources() == []
    memory.close()
