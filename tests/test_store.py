"""Tests for the SQLite storage backend."""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from recallmesh.analytics import LearningWeights
from recallmesh.memory import Memory
from recallmesh.store import MemoryNotFoundError, MemoryStore, cosine_similarity

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


def _make_memory(text: str = "Test memory", owner: str = "alice", **kwargs) -> Memory:
    return Memory(text=text, owner_id=owner, **kwargs)


# ------------------------------------------------------------------
# CRUD
# ------------------------------------------------------------------


def test_save_and_get(store):
    mem = _make_memory(tags=["a"], metadata={"k": 1}, embedding=[0.5, 0.25])
    store.save(mem)

    loaded = store.get(mem.id)
    assert loaded is not None
    assert loaded.text == mem.text
    assert loaded.tags == ["a"]
    assert loaded.metadata == {"k": 1}
    assert loaded.embedding == pytest.approx([0.5, 0.25])


def test_get_missing_returns_none(store):
    assert store.get("nope") is None


def test_get_many_skips_unknown(store):
    a, b = _make_memory("a"), _make_memory("b")
    store.save(a)
    store.save(b)
    found = store.get_many([a.id, "missing", b.id, a.id])
    assert set(found) == {a.id, b.id}


def test_delete_and_count(store):
    a = _make_memory("a")
    store.save(a)
    store.save(_make_memory("b", owner="bob"))
    assert store.count() == 2
    assert store.count("alice") == 1
    assert store.delete(a.id) is True
    assert store.delete(a.id) is False
    assert store.count("alice") == 0


def test_list_owners_and_list_for_owner(store):
    for i in range(3):
        store.save(_make_memory(f"m{i}", created_at=NOW + timedelta(minutes=i)))
    store.save(_make_memory("other", owner="bob"))

    assert store.list_owners() == ["alice", "bob"]
    listed = store.list_for_owner("alice")
    assert [m.text for m in listed] == ["m2", "m1", "m0"]
    assert [m.text for m in store.list_for_owner("alice", limit=1, offset=1)] == ["m1"]


# ------------------------------------------------------------------
# Retrieval
# ------------------------------------------------------------------


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [0.6, 0.8]) == pytest.approx(0.6)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 0.0])


def test_match_candidates_filters_by_owner_and_threshold(store):
    close = _make_memory("close", embedding=[1.0, 0.1])
    far = _make_memory("far", embedding=[0.0, 1.0])
    foreign = _make_memory("foreign", owner="bob", embedding=[1.0, 0.0])
    plain = _make_memory("no embedding")
    for m in (close, far, foreign, plain):
        store.save(m)

    matches = store.match_candidates([1.0, 0.0], threshold=0.5, count=10, owner_id="alice")
    assert [m.id for m, _ in matches] == [close.id]
    assert matches[0][1] == pytest.approx(1.0 / math.sqrt(1.01))


def test_search_by_text_is_case_insensitive(store):
    store.save(_make_memory("Deploy with Docker compose"))
    store.save(_make_memory("Unrelated"))
    results = store.search_by_text("alice", "docker")
    assert [m.text for m in results] == ["Deploy with Docker compose"]


def test_search_by_text_escapes_wildcards(store):
    store.save(_make_memory("100% coverage"))
    store.save(_make_memory("1000 coverage"))
    assert [m.text for m in store.search_by_text("alice", "100%")] == ["100% coverage"]


def test_search_by_text_word_mode(store):
    store.save(_make_memory("deploy the app with docker"))
    assert store.search_by_text("alice", "deploy docker", match_words=True)
    assert not store.search_by_text("alice", "docker deploy", match_words=True)


# ------------------------------------------------------------------
# Usage and feedback
# ------------------------------------------------------------------


def test_increment_usage_updates_pattern(store):
    mem = _make_memory()
    store.save(mem)
    assert store.increment_usage(mem.id, context="search_result", now=NOW) is True

    loaded = store.get(mem.id)
    assert loaded.usage_count == 1
    assert loaded.last_accessed == NOW
    assert loaded.access_pattern.contexts == {"search_result": 1}
    assert loaded.access_pattern.access_timestamps == [NOW]


def test_access_history_is_never_truncated(store):
    """Every read keeps its timestamp, even past a few hundred reads."""
    mem = _make_memory()
    store.save(mem)
    for i in range(250):
        store.increment_usage(mem.id, context="search_result", now=NOW + timedelta(minutes=i))

    loaded = store.get(mem.id)
    assert loaded.usage_count == 250
    assert len(loaded.access_pattern.access_timestamps) == loaded.usage_count
    assert loaded.access_pattern.access_timestamps[0] == NOW


def test_increment_usage_missing_memory(store):
    assert store.increment_usage("ghost") is False


def test_concurrent_increments_are_not_lost(store):
    """Parallel increments from many threads all land."""
    mem = _make_memory()
    store.save(mem)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: store.increment_usage(mem.id), range(40)))

    assert store.get(mem.id).usage_count == 40


def test_record_co_access_is_symmetric(store):
    a, b, c = _make_memory("a"), _make_memory("b"), _make_memory("c")
    for m in (a, b, c):
        store.save(m)
    store.record_co_access([a.id, b.id, c.id])

    assert store.get(a.id).access_pattern.co_accessed_with == [b.id, c.id]
    assert store.get(c.id).access_pattern.co_accessed_with == [a.id, b.id]


def test_record_co_access_counts_episodes(store):
    """Each co-access call is one episode per memory; solo reads are not."""
    a, b = _make_memory("a"), _make_memory("b")
    for m in (a, b):
        store.save(m)
    store.record_co_access([a.id, b.id])
    store.record_co_access([a.id, b.id])
    store.increment_usage(a.id, context="search_result")

    assert store.get(a.id).access_pattern.co_access_episodes == 2
    assert store.get(b.id).access_pattern.co_access_episodes == 2


def test_update_helpfulness_steps(store):
    mem = _make_memory()
    store.save(mem)
    assert store.update_helpfulness(mem.id, True) == pytest.approx(0.6)
    assert store.update_helpfulness(mem.id, False) == pytest.approx(0.55)


def test_update_helpfulness_with_satisfaction(store):
    mem = _make_memory(helpfulness_score=0.5)
    store.save(mem)
    assert store.update_helpfulness(mem.id, False, satisfaction=1.0) == pytest.approx(0.65)


def test_update_helpfulness_clamps(store):
    mem = _make_memory(helpfulness_score=0.95)
    store.save(mem)
    assert store.update_helpfulness(mem.id, True) == 1.0


def test_update_helpfulness_missing(store):
    with pytest.raises(MemoryNotFoundError):
        store.update_helpfulness("ghost", True)


# ------------------------------------------------------------------
# Learning parameters
# ------------------------------------------------------------------


def test_learning_weights_default(store):
    assert store.get_learning_weights("alice") == LearningWeights()
    params = store.get_learning_params("alice")
    assert params["total_feedback"] == 0
    assert params["avg_satisfaction"] == 0.5


def test_update_learning_params_counts_feedback(store):
    store.update_learning_params("alice", 1.0, True)
    params = store.get_learning_params("alice")
    assert params["total_feedback"] == 1
    assert params["positive_feedback_count"] == 1
    assert params["avg_satisfaction"] == pytest.approx(0.55)


def test_weights_adjust_on_tenth_feedback(store):
    """Mostly negative feedback raises the helpfulness weight."""
    for i in range(10):
        weights = store.update_learning_params("alice", None, helpful=i < 5)
    assert weights.helpfulness_weight == pytest.approx(0.55)
    assert weights.usage_weight == pytest.approx(0.3)


def test_positive_feedback_lowers_usage_weight_with_floor(store):
    for _ in range(200):
        weights = store.update_learning_params("alice", None, helpful=True)
    assert weights.usage_weight == pytest.approx(0.2)
    assert weights.helpfulness_weight == pytest.approx(0.5)


# ------------------------------------------------------------------
# Temporal patterns
# ------------------------------------------------------------------


def test_upsert_temporal_pattern_reinforces(store):
    first = store.upsert_temporal_pattern("alice", "hourly", {"hour": 9, "memories": ["a"]}, 0.4, now=NOW)
    again = store.upsert_temporal_pattern(
        "alice", "hourly", {"hour": 9, "memories": ["b"]}, 0.3, now=NOW + timedelta(days=1)
    )
    assert again.id == first.id
    assert again.occurrence_count == 2
    assert again.confidence == pytest.approx(0.45)
    assert again.last_seen == NOW + timedelta(days=1)

    stored = store.get_temporal_patterns("alice")
    assert len(stored) == 1
    assert stored[0].memories == ["b"]


def test_upsert_temporal_pattern_takes_higher_confidence(store):
    store.upsert_temporal_pattern("alice", "daily", {"weekday": "monday"}, 0.2, now=NOW)
    again = store.upsert_temporal_pattern("alice", "daily", {"weekday": "monday"}, 0.9, now=NOW)
    assert again.confidence == pytest.approx(0.9)


def test_upsert_temporal_pattern_rejects_bad_payload(store):
    with pytest.raises(ValueError):
        store.upsert_temporal_pattern("alice", "hourly", {"hour": 31}, 0.5)


def test_get_temporal_patterns_filters(store):
    store.upsert_temporal_pattern("alice", "hourly", {"hour": 1}, 0.2)
    store.upsert_temporal_pattern("alice", "daily", {"weekday": "friday"}, 0.8)
    store.upsert_temporal_pattern("bob", "hourly", {"hour": 1}, 0.9)

    assert [p.pattern_type for p in store.get_temporal_patterns("alice")] == ["daily", "hourly"]
    assert len(store.get_temporal_patterns("alice", min_confidence=0.5)) == 1
    assert len(store.get_temporal_patterns("alice", pattern_type="hourly")) == 1


# ------------------------------------------------------------------
# Relationships
# ------------------------------------------------------------------


def test_add_relationship_once_per_pair(store):
    a, b = _make_memory("a"), _make_memory("b")
    store.save(a)
    store.save(b)

    assert store.add_relationship(a.id, b.id, strength=0.8) is not None
    assert store.add_relationship(b.id, a.id, "similar_to") is None
    assert store.has_relationship(b.id, a.id)
    assert len(store.list_relationships("alice")) == 1


def test_add_relationship_rejects_unknown_type(store):
    with pytest.raises(ValueError):
        store.add_relationship("a", "b", "friends_with")


def test_get_relationships_directions(store):
    a, b, c = _make_memory("a"), _make_memory("b"), _make_memory("c")
    for m in (a, b, c):
        store.save(m)
    store.add_relationship(a.id, b.id, strength=0.9)
    store.add_relationship(c.id, a.id, strength=0.4)

    assert [r.related_memory_id for r in store.get_relationships([a.id])] == [b.id]
    both = store.get_relationships([a.id], both_directions=True)
    assert [r.strength for r in both] == pytest.approx([0.9, 0.4])
    assert store.get_relationships([a.id], min_strength=0.95) == []


def test_deleted_memory_leaves_broken_edge(store):
    a, b = _make_memory("a"), _make_memory("b")
    store.save(a)
    store.save(b)
    store.add_relationship(a.id, b.id)
    store.delete(b.id)
    assert store.count_broken_relationships([a.id]) == 1


# ------------------------------------------------------------------
# Analytics
# ------------------------------------------------------------------


def test_analytics_view(store):
    old = _make_memory("old", usage_count=25, last_accessed=NOW - timedelta(days=40))
    fresh = _make_memory("fresh", usage_count=0)
    store.save(old)
    store.save(fresh)
    store.add_relationship(old.id, fresh.id)

    view = store.analytics([old.id, fresh.id, "missing"], now=NOW)
    assert set(view) == {old.id, fresh.id}
    assert view[old.id].recency_score == 0.5
    assert view[old.id].days_since_access == 40
    assert view[old.id].access_frequency == "high"
    assert view[old.id].relationship_count == 1
    assert view[fresh.id].recency_score == 0.0
    assert view[fresh.id].days_since_access is None
    assert view[fresh.id].access_frequency == "unused"


def test_context_manager_closes(tmp_path):
    with MemoryStore(path=tmp_path / "ctx.db") as store:
        store.save(_make_memory())
    assert store._local.conn is None
