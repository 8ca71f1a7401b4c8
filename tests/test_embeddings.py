"""Tests for embedding providers and the best-effort embed helper."""

from __future__ import annotations

from unittest import mock

import pytest

from recallmesh import embeddings
from recallmesh.embeddings import (
    LocalEmbedding,
    NoopEmbedding,
    OllamaEmbedding,
    OpenAIEmbedding,
    create_embedding_provider,
    safe_embed,
)

from .conftest import FakeEmbedding

# ------------------------------------------------------------------
# safe_embed
# ------------------------------------------------------------------


def test_safe_embed_returns_floats():
    provider = FakeEmbedding({"hello": [1, 2]})
    assert safe_embed(provider, "hello") == [1.0, 2.0]


def test_safe_embed_swallows_provider_errors():
    assert safe_embed(FakeEmbedding(), "unknown") is None


def test_safe_embed_skips_disabled_provider():
    provider = NoopEmbedding()
    assert provider.enabled is False
    assert safe_embed(provider, "anything") is None


def test_safe_embed_treats_empty_vector_as_missing():
    assert safe_embed(FakeEmbedding({"x": []}), "x") is None


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "name, cls",
    [
        ("none", NoopEmbedding),
        ("NOOP", NoopEmbedding),
        ("local", LocalEmbedding),
        ("sentence-transformers", LocalEmbedding),
        ("ollama", OllamaEmbedding),
    ],
)
def test_create_embedding_provider(name, cls):
    assert isinstance(create_embedding_provider(name), cls)


def test_create_embedding_provider_unknown():
    with pytest.raises(ValueError, match="Unknown embedding provider"):
        create_embedding_provider("word2vec")


def test_openai_requires_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError, match="API key"):
        OpenAIEmbedding()


# ------------------------------------------------------------------
# HTTP providers
# ------------------------------------------------------------------


def test_ollama_parses_response():
    with mock.patch.object(embeddings, "_post_json", return_value={"embeddings": [[0.1, 0.2]]}) as post:
        vector = OllamaEmbedding(base_url="http://ollama:11434/").embed("hi")
    assert vector == [0.1, 0.2]
    assert post.call_args[0][0] == "http://ollama:11434/api/embed"


def test_ollama_unexpected_response():
    with mock.patch.object(embeddings, "_post_json", return_value={"error": "no model"}):
        with pytest.raises(RuntimeError):
            OllamaEmbedding().embed("hi")


def test_openai_orders_batch_by_index():
    payload = {"data": [{"index": 1, "embedding": [2.0]}, {"index": 0, "embedding": [1.0]}]}
    with mock.patch.object(embeddings, "_post_json", return_value=payload) as post:
        vectors = OpenAIEmbedding(api_key="sk-test").embed_batch(["a", "b"])
    assert vectors == [[1.0], [2.0]]
    assert post.call_args[0][2] == {"Authorization": "Bearer sk-test"}


def test_unreachable_server_falls_back():
    """A connection failure becomes None through safe_embed."""
    with mock.patch.object(embeddings, "_post_json", side_effect=ConnectionError("down")):
        assert safe_embed(OllamaEmbedding(), "hi") is None


# ------------------------------------------------------------------
# Local model
# ------------------------------------------------------------------


def test_local_embedding_encodes():
    pytest.importorskip("sentence_transformers")
    fake_model = mock.MagicMock()
    fake_model.encode.return_value.tolist.return_value = [0.5, 0.5]
    provider = LocalEmbedding()
    provider._model = fake_model
    assert provider.embed("hello") == [0.5, 0.5]
    fake_model.encode.assert_called_once_with("hello", convert_to_numpy=True)
