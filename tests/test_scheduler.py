"""Tests for the background learning scheduler."""

from __future__ import annotations

import threading

import pytest

from recallmesh.scheduler import LearningScheduler


class _FakeMiner:
    """Records run_cycle calls; optionally fails or blocks."""

    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[bool] = []
        self.error = error
        self.ran = threading.Event()
        self.release = threading.Event()
        self.release.set()

    def run_cycle(self, auto_apply: bool = False):
        self.calls.append(auto_apply)
        self.ran.set()
        self.release.wait(5)
        if self.error is not None:
            raise self.error
        return {"owners": 1, "totals": {"relationship_suggestions": 2}, "processing_time_ms": 3}


def test_trigger_runs_a_cycle():
    miner = _FakeMiner()
    scheduler = LearningScheduler(miner, auto_apply=True)

    result = scheduler.trigger()
    assert result["owners"] == 1
    assert miner.calls == [True]
    status = scheduler.status()
    assert status["last_run"] is not None
    assert status["last_error"] is None
    assert status["is_analyzing"] is False
    assert status["auto_apply"] is True


def test_trigger_skips_while_a_cycle_runs():
    """A second trigger during a cycle returns immediately."""
    miner = _FakeMiner()
    miner.release.clear()
    scheduler = LearningScheduler(miner)

    worker = threading.Thread(target=scheduler.trigger)
    worker.start()
    assert miner.ran.wait(5)
    assert scheduler.is_analyzing is True
    assert scheduler.trigger() is None

    miner.release.set()
    worker.join(5)
    assert miner.calls == [False]
    assert scheduler.is_analyzing is False


def test_failed_cycle_records_error():
    scheduler = LearningScheduler(_FakeMiner(error=RuntimeError("database is locked")))
    assert scheduler.trigger() is None
    assert scheduler.last_error == "database is locked"
    assert scheduler.status()["last_run"] is None
    # The lock is released after a failure.
    assert scheduler.is_analyzing is False


def test_success_clears_previous_error():
    miner = _FakeMiner(error=RuntimeError("boom"))
    scheduler = LearningScheduler(miner)
    scheduler.trigger()
    miner.error = None
    scheduler.trigger()
    assert scheduler.last_error is None


def test_start_runs_on_start_and_stops():
    miner = _FakeMiner()
    scheduler = LearningScheduler(miner, interval_hours=24)
    scheduler.start()
    try:
        assert miner.ran.wait(5)
        assert scheduler.is_running is True
        scheduler.start()  # second start only warns
    finally:
        scheduler.stop(timeout=5)
    assert scheduler.is_running is False
    assert miner.calls == [False]


def test_start_without_initial_run():
    miner = _FakeMiner()
    scheduler = LearningScheduler(miner, interval_hours=24, run_on_start=False)
    scheduler.start()
    scheduler.stop(timeout=5)
    assert miner.calls == []


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        LearningScheduler(_FakeMiner(), interval_hours=0)


def test_interval_in_seconds():
    assert LearningScheduler(_FakeMiner(), interval_hours=0.5).interval_seconds == 1800
