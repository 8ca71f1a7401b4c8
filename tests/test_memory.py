"""Tests for the RecallMesh data model.

Covers construction-time validation of :class:`Memory`, lenient parsing
of stored access patterns, relationship edges and temporal patterns.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from recallmesh.memory import (
    AccessPattern,
    Memory,
    Relationship,
    TemporalPattern,
    parse_timestamp,
    pattern_signature,
)

# ------------------------------------------------------------------
# Memory
# ------------------------------------------------------------------


def test_memory_defaults():
    """A new memory starts neutral: helpfulness 0.5, never used."""
    mem = Memory(text="The user prefers dark mode.")
    assert mem.helpfulness_score == 0.5
    assert mem.usage_count == 0
    assert mem.last_accessed is None
    assert mem.owner_id == "default"
    assert len(mem.id) == 32


def test_memory_clamps_scores():
    """Out-of-range helpfulness and negative usage are clamped."""
    assert Memory(text="x", helpfulness_score=1.7).helpfulness_score == 1.0
    assert Memory(text="x", helpfulness_score=-0.2).helpfulness_score == 0.0
    assert Memory(text="x", usage_count=-3).usage_count == 0


def test_memory_rejects_empty_text():
    with pytest.raises(ValueError):
        Memory(text="")


def test_memory_deduplicates_tags():
    mem = Memory(text="x", tags=["deploy", " deploy ", "docker", ""])
    assert mem.tags == ["deploy", "docker"]


def test_memory_dict_round_trip():
    """to_dict/from_dict preserve learning state and timestamps."""
    now = datetime(2025, 3, 1, 14, 0, tzinfo=timezone.utc)
    mem = Memory(
        text="Pricing: Pro plan is $49/month",
        owner_id="alice",
        tags=["pricing"],
        usage_count=7,
        helpfulness_score=0.8,
        last_accessed=now,
    )
    mem.access_pattern.add_co_access(["other"])

    restored = Memory.from_dict(mem.to_dict())
    assert restored.id == mem.id
    assert restored.owner_id == "alice"
    assert restored.last_accessed == now
    assert restored.access_pattern.co_accessed_with == ["other"]


def test_to_dict_can_omit_embedding():
    mem = Memory(text="x", embedding=[0.1, 0.2])
    assert "embedding" not in mem.to_dict(include_embedding=False)
    assert mem.to_dict()["embedding"] == [0.1, 0.2]


# ------------------------------------------------------------------
# AccessPattern
# ------------------------------------------------------------------


def test_access_pattern_from_garbage():
    """Unparseable stored data becomes an empty pattern."""
    for raw in (None, "", "not json", 42, ["a"]):
        pattern = AccessPattern.from_dict(raw)
        assert pattern.co_accessed_with == []
        assert pattern.contexts == {}


def test_access_pattern_coerces_fields():
    """Malformed entries are coerced where possible and dropped otherwise."""
    pattern = AccessPattern.from_dict(
        {
            "co_accessed_with": ["a", 3, "a", ""],
            "contexts": {"search_result": "2", "bad": "x", "zero": 0},
            "feedback_contexts": [{"context": "deploy", "helpful": 1}, "junk"],
            "access_timestamps": ["2025-01-02T10:00:00+00:00", "nope", "2025-01-01T10:00:00"],
        }
    )
    assert pattern.co_accessed_with == ["a"]
    assert pattern.contexts == {"search_result": 2}
    assert len(pattern.feedback_contexts) == 1
    assert pattern.feedback_contexts[0].helpful is True
    assert [t.day for t in pattern.access_timestamps] == [1, 2]
    assert all(t.tzinfo is not None for t in pattern.access_timestamps)


def test_record_access_keeps_full_history():
    """Every access timestamp is kept, oldest first."""
    pattern = AccessPattern()
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    for i in range(250):
        pattern.record_access(start + timedelta(minutes=i), "search_result")
    assert len(pattern.access_timestamps) == 250
    assert pattern.access_timestamps[0] == start
    assert pattern.contexts["search_result"] == 250

    reloaded = AccessPattern.from_dict(pattern.to_dict())
    assert len(reloaded.access_timestamps) == 250


def test_add_co_access_ignores_duplicates():
    """Partners are kept once each while every episode is counted."""
    pattern = AccessPattern()
    pattern.add_co_access(["a", "b"])
    pattern.add_co_access(["b", "c"])
    pattern.add_co_access([])
    assert pattern.co_accessed_with == ["a", "b", "c"]
    assert pattern.co_access_episodes == 2


def test_co_access_episodes_round_trip_and_coerce():
    """The episode counter survives storage and bad values become zero."""
    assert AccessPattern.from_dict({"co_access_episodes": "4"}).co_access_episodes == 4
    assert AccessPattern.from_dict({"co_access_episodes": "many"}).co_access_episodes == 0
    assert AccessPattern.from_dict({"co_access_episodes": -3}).co_access_episodes == 0
    assert AccessPattern.from_dict({}).co_access_episodes == 0


def test_parse_timestamp_naive_is_utc():
    ts = parse_timestamp("2025-01-01T12:00:00")
    assert ts is not None
    assert ts.tzinfo == timezone.utc
    assert parse_timestamp("yesterday") is None


# ------------------------------------------------------------------
# Relationship
# ------------------------------------------------------------------


def test_relationship_rejects_self_reference():
    with pytest.raises(ValueError):
        Relationship(memory_id="a", related_memory_id="a")


def test_relationship_rejects_unknown_type():
    with pytest.raises(ValueError, match="relationship type"):
        Relationship(memory_id="a", related_memory_id="b", relationship_type="likes")


def test_relationship_clamps_strength():
    assert Relationship(memory_id="a", related_memory_id="b", strength=3).strength == 1.0


# ------------------------------------------------------------------
# TemporalPattern
# ------------------------------------------------------------------


def test_temporal_pattern_clamps_and_orders_timestamps():
    """Confidence is clamped and last_seen never precedes first_seen."""
    first = datetime(2025, 1, 2, tzinfo=timezone.utc)
    pattern = TemporalPattern(
        owner_id="alice",
        pattern_type="hourly",
        pattern_data={"hour": 14, "memories": ["a", 1, "b"]},
        confidence=1.4,
        first_seen=first,
        last_seen=first - timedelta(days=1),
    )
    assert pattern.confidence == 1.0
    assert pattern.last_seen >= pattern.first_seen
    assert pattern.memories == ["a", "b"]
    assert pattern.signature == "hour:14"


def test_temporal_pattern_rejects_unknown_type():
    with pytest.raises(ValueError):
        TemporalPattern(owner_id="alice", pattern_type="monthly", pattern_data={})


def test_pattern_signatures():
    assert pattern_signature("daily", {"weekday": "Monday"}) == "weekday:monday"
    assert pattern_signature("sequence", {"sequence": ["a", "b"]}) == "sequence:a,b"


@pytest.mark.parametrize(
    "pattern_type, data",
    [
        ("hourly", {"hour": 24}),
        ("hourly", {}),
        ("daily", {"weekday": "someday"}),
        ("sequence", {"sequence": ["only-one"]}),
    ],
)
def test_pattern_signature_rejects_bad_payload(pattern_type, data):
    with pytest.raises(ValueError):
        pattern_signature(pattern_type, data)
