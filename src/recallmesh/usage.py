"""Best-effort usage tracking for RecallMesh.

Reads never wait for their usage bookkeeping.  :class:`UsageTracker`
queues increments and co-access records on a bounded in-process queue
that a single daemon thread drains into the store.  Delivery is
at-least-once while the process is alive; jobs are dropped (and logged)
when the queue is full, and anything still queued is lost if the process
dies.  ``usage_count`` is a soft signal, so that trade-off is acceptable.
"""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .store import MemoryStore

logger = logging.getLogger(__name__)

_STOP = object()


class UsageTracker:
    """Fire-and-forget writer for usage increments.

    Args:
        store: Store receiving the increments.
        maxsize: Queue capacity.  Submissions beyond it are dropped.
    """

    def __init__(self, store: MemoryStore, maxsize: int = 1000) -> None:
        self._store = store
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max(1, maxsize))
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0
        self.failed = 0

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def record_usage(self, memory_id: str, context: str | None = None) -> bool:
        """Queue one usage increment.

        Returns:
            ``False`` if the job was dropped.
        """
        return self._submit(("usage", memory_id, context, datetime.now(timezone.utc)))

    def record_co_access(self, memory_ids: list[str]) -> bool:
        """Queue a co-access record for memories returned together."""
        if len(memory_ids) < 2:
            return True
        return self._submit(("co_access", list(memory_ids)))

    def _submit(self, job: tuple[Any, ...]) -> bool:
        if self._closed:
            logger.warning("Usage tracker is closed; dropping %s job", job[0])
            self.dropped += 1
            return False
        self._ensure_worker()
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            self.dropped += 1
            logger.warning("Usage queue full; dropping %s job", job[0])
            return False
        return True

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._run, name="recallmesh-usage", daemon=True
                )
                self._thread.start()

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self._apply(job)
            except Exception:
                self.failed += 1
                logger.warning("Usage tracking job %s failed", job[0], exc_info=True)
            finally:
                self._queue.task_done()

    def _apply(self, job: tuple[Any, ...]) -> None:
        kind = job[0]
        if kind == "usage":
            _, memory_id, context, when = job
            if not self._store.increment_usage(memory_id, context=context, now=when):
                logger.debug("Skipped usage increment for missing memory %s", memory_id)
        elif kind == "co_access":
            self._store.record_co_access(job[1])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Block until every queued job has been processed."""
        if self._thread is not None:
            self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        """Drain the queue and stop the worker thread."""
        if self._closed:
            return
        self._closed = True
        thread = self._thread
        if thread is not None and thread.is_alive():
            self._queue.put(_STOP)
            thread.join(timeout)

    @property
    def pending(self) -> int:
        return self._queue.qsize()
