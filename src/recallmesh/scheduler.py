"""Periodic learning for RecallMesh.

:class:`LearningScheduler` runs :meth:`PatternMiner.run_cycle` on a fixed
interval from a daemon thread.  At most one cycle runs at a time within
the process; a tick that arrives while a cycle is still running is
skipped, never queued.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .miner import PatternMiner

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_HOURS = 1.0


class LearningScheduler:
    """Runs learning cycles in the background.

    Args:
        miner: The :class:`PatternMiner` whose ``run_cycle`` is called.
        interval_hours: Hours between cycles.
        auto_apply: Forwarded to ``run_cycle``.
        run_on_start: Run one cycle as soon as the scheduler starts.
    """

    def __init__(
        self,
        miner: PatternMiner,
        interval_hours: float = DEFAULT_INTERVAL_HOURS,
        auto_apply: bool = False,
        run_on_start: bool = True,
    ) -> None:
        if interval_hours <= 0:
            raise ValueError(f"interval_hours must be positive, got {interval_hours!r}")
        self._miner = miner
        self.interval_seconds = interval_hours * 3600
        self.auto_apply = auto_apply
        self.run_on_start = run_on_start

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.last_run_time: datetime | None = None
        self.last_result: dict[str, Any] | None = None
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_analyzing(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> None:
        """Start the background thread.  A second call only logs a warning."""
        if self.is_running:
            logger.warning("Learning scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="recallmesh-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "Started learning scheduler (every %.2f hours, auto-apply: %s)",
            self.interval_seconds / 3600,
            self.auto_apply,
        )

    def stop(self, timeout: float | None = None) -> None:
        """Stop the background thread and wait for it to exit.

        A cycle in progress is allowed to finish.
        """
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout)
        self._thread = None
        logger.info("Learning scheduler stopped")

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def trigger(self) -> dict[str, Any] | None:
        """Run one cycle now in the calling thread.

        Returns:
            The cycle result, or ``None`` when a cycle was already running
            or this one failed (see :attr:`last_error`).
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Learning analysis already in progress, skipping this cycle")
            return None
        try:
            logger.info("Starting scheduled learning analysis")
            result = self._miner.run_cycle(auto_apply=self.auto_apply)
        except Exception as exc:
            self.last_error = str(exc) or type(exc).__name__
            logger.exception("Scheduled learning analysis failed")
            return None
        finally:
            self._cycle_lock.release()

        self.last_run_time = datetime.now(timezone.utc)
        self.last_result = result
        self.last_error = None
        totals = result.get("totals", {})
        logger.info(
            "Scheduled learning analysis completed: %d owners, %d suggestions, %d stale, %dms",
            result.get("owners", 0),
            totals.get("relationship_suggestions", 0),
            totals.get("stale_memory_count", 0),
            result.get("processing_time_ms", 0),
        )
        return result

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "is_analyzing": self.is_analyzing,
            "last_run": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_error": self.last_error,
            "interval_seconds": self.interval_seconds,
            "auto_apply": self.auto_apply,
        }

    def _loop(self) -> None:
        if self.run_on_start:
            self.trigger()
        while not self._stop_event.wait(self.interval_seconds):
            self.trigger()

    def __repr__(self) -> str:  # pragma: no cover
        return f"LearningScheduler(interval_seconds={self.interval_seconds!r}, auto_apply={self.auto_apply!r})"
