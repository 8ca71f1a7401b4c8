"""Tests for the best-effort usage tracker."""

from __future__ import annotations

import logging
import threading

from recallmesh.memory import Memory
from recallmesh.usage import UsageTracker


def _save(store, text: str = "memory") -> Memory:
    mem = Memory(text=text, owner_id="alice")
    store.save(mem)
    return mem


def test_usage_is_applied_after_flush(store):
    mem = _save(store)
    tracker = UsageTracker(store)
    for _ in range(5):
        assert tracker.record_usage(mem.id, "direct_access") is True
    tracker.flush()

    loaded = store.get(mem.id)
    assert loaded.usage_count == 5
    assert loaded.access_pattern.contexts == {"direct_access": 5}
    tracker.close()


def test_co_access_is_applied(store):
    a, b = _save(store, "a"), _save(store, "b")
    tracker = UsageTracker(store)
    tracker.record_co_access([a.id, b.id])
    tracker.flush()
    assert store.get(a.id).access_pattern.co_accessed_with == [b.id]
    tracker.close()


def test_single_id_co_access_is_a_noop(store):
    tracker = UsageTracker(store)
    assert tracker.record_co_access(["only"]) is True
    assert tracker.pending == 0


def test_missing_memory_is_skipped(store):
    tracker = UsageTracker(store)
    tracker.record_usage("ghost")
    tracker.flush()
    assert tracker.failed == 0
    tracker.close()


def test_full_queue_drops_jobs(store, caplog):
    """Submissions beyond capacity are dropped, never blocking the caller."""
    mem = _save(store)
    gate = threading.Event()
    tracker = UsageTracker(store, maxsize=1)

    original = store.increment_usage

    def slow_increment(*args, **kwargs):
        gate.wait(5)
        return original(*args, **kwargs)

    store.increment_usage = slow_increment
    with caplog.at_level(logging.WARNING, logger="recallmesh.usage"):
        results = [tracker.record_usage(mem.id) for _ in range(5)]
    gate.set()
    tracker.flush()

    assert results[0] is True
    assert False in results
    assert tracker.dropped >= 1
    assert "Usage queue full" in caplog.text
    tracker.close()


def test_failed_job_is_counted(store):
    tracker = UsageTracker(store)

    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    store.increment_usage = broken
    tracker.record_usage("any")
    tracker.flush()
    assert tracker.failed == 1
    tracker.close()


def test_closed_tracker_drops(store):
    tracker = UsageTracker(store)
    tracker.close()
    assert tracker.record_usage("x") is False
    assert tracker.dropped == 1
