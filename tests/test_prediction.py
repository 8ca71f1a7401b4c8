"""Tests for predictive prefetching."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from recallmesh.memory import Memory
from recallmesh.prediction import PredictionEngine

from .conftest import FakeEmbedding

# Monday 2025-06-02, 14:05 UTC
NOW = datetime(2025, 6, 2, 14, 5, tzinfo=timezone.utc)


def _save(store, text: str, owner: str = "alice", helpfulness: float = 1.0, **kwargs) -> Memory:
    mem = Memory(text=text, owner_id=owner, helpfulness_score=helpfulness, **kwargs)
    store.save(mem)
    return mem


@pytest.fixture()
def engine(store):
    return PredictionEngine(store, clock=lambda: NOW)


# ------------------------------------------------------------------
# Individual signals
# ------------------------------------------------------------------


def test_no_signals_no_predictions(engine):
    """An empty store predicts nothing."""
    assert engine.predict("alice") == []


def test_co_access_signal(store, engine):
    """A co-accessed neighbour of a recent memory is predicted."""
    a = _save(store, "deploy steps")
    b = _save(store, "rollback steps")
    store.record_co_access([a.id, b.id])

    [prediction] = engine.predict("alice", [a.id])
    assert prediction.memory_id == b.id
    assert prediction.confidence == pytest.approx(0.3)
    assert prediction.reasons == ["frequently_accessed_with"]
    assert prediction.related_to == [a.id]


def test_relationship_signal(store, engine):
    """An outgoing edge from a recent memory contributes its strength."""
    a = _save(store, "deploy steps")
    b = _save(store, "docker registry credentials")
    store.add_relationship(a.id, b.id, "follows", strength=0.9)

    [prediction] = engine.predict("alice", [a.id])
    assert prediction.confidence == pytest.approx(0.36)
    assert prediction.reasons == ["follows_relationship"]


def test_hourly_pattern_matches_current_hour(store, engine):
    """Only the hourly pattern for the current UTC hour applies."""
    target = _save(store, "afternoon standup notes")
    store.upsert_temporal_pattern("alice", "hourly", {"hour": 14, "memories": [target.id]}, 0.6)
    store.upsert_temporal_pattern("alice", "hourly", {"hour": 3, "memories": [target.id]}, 0.9)

    [prediction] = engine.predict("alice")
    assert prediction.memory_id == target.id
    assert prediction.reasons == ["temporal_pattern_hourly"]
    assert prediction.confidence == pytest.approx(0.18)


def test_daily_pattern_matches_weekday(store, engine):
    """A daily pattern for today's weekday applies."""
    target = _save(store, "weekly planning")
    store.upsert_temporal_pattern("alice", "daily", {"weekday": "monday", "memories": [target.id]}, 0.5)
    [prediction] = engine.predict("alice")
    assert prediction.reasons == ["temporal_pattern_daily"]


def test_low_confidence_patterns_are_ignored(store, engine):
    """Patterns at or below 0.5 confidence are skipped."""
    target = _save(store, "rarely needed")
    store.upsert_temporal_pattern("alice", "hourly", {"hour": 14, "memories": [target.id]}, 0.4)
    assert engine.predict("alice") == []


def test_sequence_pattern_needs_its_head_in_recent(store, engine):
    """A sequence fires only once its first memory was recently accessed."""
    a = _save(store, "step one")
    b = _save(store, "step two")
    store.upsert_temporal_pattern(
        "alice", "sequence", {"sequence": [a.id, b.id], "memories": [a.id, b.id]}, 0.8
    )
    assert engine.predict("alice") == []
    [prediction] = engine.predict("alice", [a.id])
    assert prediction.memory_id == b.id
    assert prediction.reasons == ["temporal_pattern_sequence"]


def test_context_signal(store):
    """Memories close to the context embedding are predicted."""
    engine = PredictionEngine(
        store, embedder=FakeEmbedding({"shipping a release": [1.0, 0.0]}), clock=lambda: NOW
    )
    match = _save(store, "release checklist", embedding=[1.0, 0.0])
    _save(store, "lunch order", embedding=[0.0, 1.0])

    [prediction] = engine.predict("alice", context="shipping a release")
    assert prediction.memory_id == match.id
    assert prediction.confidence == pytest.approx(0.4)
    assert prediction.reasons == ["context_similarity"]


# ------------------------------------------------------------------
# Fusion
# ------------------------------------------------------------------


def test_signals_sum_and_clamp(store, engine):
    """Contributions from every signal add up and clamp at 1.0."""
    a = _save(store, "deploy steps")
    c = _save(store, "post-deploy checks")
    b = _save(store, "smoke tests")
    store.record_co_access([a.id, b.id])
    store.record_co_access([c.id, b.id])
    store.add_relationship(a.id, b.id, strength=1.0)
    store.add_relationship(c.id, b.id, strength=1.0)
    store.upsert_temporal_pattern("alice", "hourly", {"hour": 14, "memories": [b.id]}, 1.0)

    [prediction] = engine.predict("alice", [a.id, c.id])
    assert prediction.memory_id == b.id
    assert prediction.confidence == 1.0
    assert prediction.related_to == sorted([a.id, c.id])
    assert prediction.reasons == [
        "frequently_accessed_with",
        "related_to_relationship",
        "temporal_pattern_hourly",
    ]


def test_helpfulness_scales_confidence(store, engine):
    """Unhelpful memories keep only half of their raw confidence."""
    a = _save(store, "deploy steps")
    b = _save(store, "flaky notes", helpfulness=0.0)
    store.add_relationship(a.id, b.id, strength=1.0)
    [prediction] = engine.predict("alice", [a.id])
    assert prediction.confidence == pytest.approx(0.2)


def test_recent_memories_are_never_predicted(store, engine):
    """Recently accessed memories are excluded from the output."""
    a = _save(store, "a")
    b = _save(store, "b")
    store.record_co_access([a.id, b.id])
    assert engine.predict("alice", [a.id, b.id]) == []


def test_other_owners_are_excluded(store, engine):
    """Edges into another owner's memories never leak predictions."""
    a = _save(store, "mine")
    foreign = _save(store, "theirs", owner="bob")
    store.add_relationship(a.id, foreign.id, strength=1.0)
    assert engine.predict("alice", [a.id]) == []


def test_limit_and_order(store, engine):
    """Results are ordered by confidence and cut at the limit."""
    a = _save(store, "hub")
    for strength in (0.2, 0.9, 0.5):
        other = _save(store, f"spoke {strength}")
        store.add_relationship(a.id, other.id, strength=strength)

    predictions = engine.predict("alice", [a.id], limit=2)
    assert [p.confidence for p in predictions] == pytest.approx([0.36, 0.2])


def test_equal_confidence_ties_break_by_id(store, engine):
    """Equal-confidence predictions come back in memory-id order every time."""
    hub = _save(store, "hub")
    spokes = [_save(store, f"spoke {i}") for i in range(4)]
    for spoke in spokes:
        store.add_relationship(hub.id, spoke.id, strength=0.5)

    first = engine.predict("alice", [hub.id])
    assert [p.memory_id for p in first] == sorted(s.id for s in spokes)
    assert len({p.confidence for p in first}) == 1
    for _ in range(3):
        assert [p.memory_id for p in engine.predict("alice", [hub.id])] == [
            p.memory_id for p in first
        ]


def test_invalid_limit(engine):
    """A non-positive limit is rejected."""
    with pytest.raises(ValueError):
        engine.predict("alice", limit=0)
