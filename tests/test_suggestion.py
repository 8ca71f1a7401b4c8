"""Tests for context-aware suggestions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from recallmesh.memory import Memory
from recallmesh.suggestion import SuggestionEngine, semantic_bucket

from .conftest import FakeEmbedding

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


def _save(store, text: str, **kwargs) -> Memory:
    mem = Memory(text=text, owner_id="alice", **kwargs)
    store.save(mem)
    return mem


def test_semantic_bucket():
    assert semantic_bucket(0.9) == "high"
    assert semantic_bucket(0.7) == "medium"
    assert semantic_bucket(0.5) == "low"


def test_text_fallback_matches_leading_words(store):
    """Without embeddings the first three context words must appear in order."""
    engine = SuggestionEngine(store)
    good = _save(store, "deploy the docker image to staging", helpfulness_score=0.9)
    _save(store, "deploy the docker image to prod", helpfulness_score=0.5)
    _save(store, "docker deploy", helpfulness_score=1.0)

    result = engine.suggest("alice", "deploy the docker container today", now=NOW)
    assert [s.memory_id for s in result["suggestions"]] == [good.id]
    suggestion = result["suggestions"][0]
    assert suggestion.similarity == 0.5
    assert suggestion.suggestion_score == pytest.approx(0.2 + 0.45)
    assert result["min_confidence"] == 0.6
    assert result["weights_used"]["helpfulness_weight"] == 0.5


def test_vector_path_with_reasoning(store):
    engine = SuggestionEngine(store, embedder=FakeEmbedding({"reviewing invoices": [1.0, 0.0]}))
    mem = _save(
        store,
        "Invoices are due on the 5th",
        embedding=[1.0, 0.0],
        usage_count=12,
        last_accessed=NOW - timedelta(days=1),
    )

    result = engine.suggest("alice", "reviewing invoices", now=NOW)
    [suggestion] = result["suggestions"]
    assert suggestion.memory_id == mem.id
    assert suggestion.reasoning["semantic_match"] == "high"
    assert suggestion.reasoning["frequently_used"] is True
    assert suggestion.reasoning["recently_accessed"] is True
    assert suggestion.reasoning["high_helpfulness"] is False
    assert "weights_applied" in suggestion.reasoning


def test_reasoning_can_be_omitted(store):
    engine = SuggestionEngine(store, embedder=FakeEmbedding({"ctx": [1.0, 0.0]}))
    _save(store, "match", embedding=[1.0, 0.0])
    [suggestion] = engine.suggest("alice", "ctx", include_reasoning=False, now=NOW)["suggestions"]
    assert suggestion.reasoning is None
    assert "reasoning" not in suggestion.to_dict()


def test_min_confidence_filters(store):
    engine = SuggestionEngine(store, embedder=FakeEmbedding({"ctx": [1.0, 0.0]}))
    _save(store, "match", embedding=[1.0, 0.0])
    assert engine.suggest("alice", "ctx", min_confidence=0.7, now=NOW)["count"] == 0
    assert engine.suggest("alice", "ctx", min_confidence=0.0, now=NOW)["count"] == 1


def test_related_memories_in_both_directions(store):
    engine = SuggestionEngine(store, embedder=FakeEmbedding({"ctx": [1.0, 0.0]}))
    mem = _save(store, "match", embedding=[1.0, 0.0])
    outgoing = _save(store, "outgoing")
    incoming = _save(store, "incoming")
    weak = _save(store, "weak")
    store.add_relationship(mem.id, outgoing.id, strength=0.8)
    store.add_relationship(incoming.id, mem.id, "caused_by", strength=0.7)
    store.add_relationship(mem.id, weak.id, strength=0.3)

    [suggestion] = engine.suggest("alice", "ctx", now=NOW)["suggestions"]
    related = {r["related_memory_id"]: r["relationship_type"] for r in suggestion.related_memories}
    assert related == {outgoing.id: "related_to", incoming.id: "caused_by"}


def test_limit_and_ordering(store):
    engine = SuggestionEngine(store, embedder=FakeEmbedding({"ctx": [1.0, 0.0]}))
    for h in (0.6, 1.0, 0.8):
        _save(store, f"helpfulness {h}", embedding=[1.0, 0.0], helpfulness_score=h)
    result = engine.suggest("alice", "ctx", limit=2, now=NOW)
    assert [s.analytics.helpfulness_score for s in result["suggestions"]] == [1.0, 0.8]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"context": ""},
        {"context": "  "},
        {"context": "x", "limit": -1},
        {"context": "x", "min_confidence": 2.0},
    ],
)
def test_invalid_arguments(store, kwargs):
    with pytest.raises(ValueError):
        SuggestionEngine(store).suggest("alice", **kwargs)
