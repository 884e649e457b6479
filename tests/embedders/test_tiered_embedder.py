import sys
import types

import numpy as np
import pytest

from halcore.embedders import (
    HASH_SPACE,
    Embedding,
    EmbeddingConfig,
    EmbedderBase,
    SentenceTransformerEmbedder,
    TieredEmbedder,
    create_embedder,
)
from halcore.errors import ExtractionError, MissingDependencyError


class FakeSentenceTransformer:
    def __init__(self, name, device="cpu", trust_remote_code=False):
        self.name = name
        self.device = device

    def get_sentence_embedding_dimension(self):
        return 3

    def encode(self, texts, batch_size=1, convert_to_numpy=True, normalize_embeddings=False, show_progress_bar=False):
        return np.array([[float(len(t)), 1.0, 0.0] for t in texts], dtype=np.float32)


class FlakyPrimary(EmbedderBase):
    def __init__(self):
        self.calls = 0

    @property
    def space(self):
        return "fake:3"

    def load(self):
        return None

    def embed_query(self, text):
        self.calls += 1
        raise RuntimeError("encode failed")


class BrokenLoadPrimary(FlakyPrimary):
    def load(self):
        raise OSError("model files missing")


def test_missing_sentence_transformers_falls_back_to_hash(monkeypatch):
    monkeypatch.setitem(sys.modules, "sentence_transformers", None)
    embedder = TieredEmbedder(SentenceTransformerEmbedder(EmbeddingConfig(model_name="some/model")))

    result = embedder.embed_query("hello there")

    assert result.space == HASH_SPACE
    assert embedder.tier == 2
    assert not embedder.primary_available
    assert embedder.space == HASH_SPACE


def test_sentence_embedder_load_requires_package(monkeypatch):
    monkeypatch.setitem(sys.modules, "sentence_transformers", None)
    assert not SentenceTransformerEmbedder.dependencies_available()
    with pytest.raises(MissingDependencyError):
        SentenceTransformerEmbedder().load()


def test_sentence_embedder_uses_model_dimension_in_space(monkeypatch):
    fake = types.SimpleNamespace(SentenceTransformer=FakeSentenceTransformer)
    monkeypatch.setitem(sys.modules, "sentence_transformers", fake)
    embedder = SentenceTransformerEmbedder(EmbeddingConfig(model_name="fake-model"))

    single = embedder.embed_query("abcd")
    batch = embedder.embed_documents(["ab", "  ", "abc"])

    assert embedder.space == "st:fake-model:3"
    assert single.space == "st:fake-model:3"
    assert single.vector.tolist() == [4.0, 1.0, 0.0]
    assert batch[1].is_empty
    assert [b.vector[0] for b in (batch[0], batch[2])] == [2.0, 3.0]


def test_tiered_reports_primary_space_once_loaded(monkeypatch):
    fake = types.SimpleNamespace(SentenceTransformer=FakeSentenceTransformer)
    monkeypatch.setitem(sys.modules, "sentence_transformers", fake)
    embedder = create_embedder(EmbeddingConfig(model_name="fake-model"))

    assert embedder.space == "st:fake-model:3"
    assert embedder.tier == 1
    assert embedder.embed_query("hi").space == "st:fake-model:3"


def test_single_call_failure_falls_back_without_disabling_primary():
    primary = FlakyPrimary()
    embedder = TieredEmbedder(primary)

    result = embedder.embed_query("hello")

    assert result.space == HASH_SPACE
    assert embedder.primary_available
    embedder.embed_query("again")
    assert primary.calls == 2


def test_load_failure_disables_primary_for_good():
    primary = BrokenLoadPrimary()
    embedder = TieredEmbedder(primary)

    assert embedder.embed_query("one").space == HASH_SPACE
    assert embedder.embed_query("two").space == HASH_SPACE
    assert primary.calls == 0
    assert embedder.tier == 2


def test_hash_only_model_name_skips_primary():
    embedder = create_embedder(EmbeddingConfig(model_name="hash"))
    assert embedder.tier == 2
    assert embedder.embed_documents(["a", "b"])[0].space == HASH_SPACE


def test_blank_text_skips_every_tier():
    primary = FlakyPrimary()
    embedder = TieredEmbedder(primary)
    assert embedder.embed_query("  ").is_empty
    assert primary.calls == 0


def test_augmenter_post_processes_vectors():
    seen = []

    def augment(text, vector):
        seen.append(text)
        return vector * 2

    embedder = TieredEmbedder(None, augmenter=augment)
    result = embedder.embed_query("hello")

    assert seen == ["hello"]
    assert abs(float(np.linalg.norm(result.vector)) - 2.0) < 1e-5


def test_embedding_empty_helpers():
    empty = Embedding.empty()
    assert empty.is_empty
    assert empty.tolist() == []


def test_encode_failure_is_an_extraction_error(monkeypatch):
    class BrokenModel(FakeSentenceTransformer):
        def encode(self, texts, **kwargs):
            raise RuntimeError("CUDA out of memory")

    monkeypatch.setitem(sys.modules, "sentence_transformers", types.SimpleNamespace(SentenceTransformer=BrokenModel))
    sentence = SentenceTransformerEmbedder(EmbeddingConfig(model_name="fake-model"))

    with pytest.raises(ExtractionError):
        sentence.embed_query("hello")
    tiered = TieredEmbedder(sentence)
    assert tiered.embed_query("hello").space == HASH_SPACE
    assert tiered.primary_available
