"""Predictive prefetching for RecallMesh.

Guesses which memories are likely to be needed next by fusing four
independent signals:

1. **Co-access** -- memories that were retrieved together with the recent
   ones.
2. **Relationships** -- outgoing edges of the recent memories.
3. **Temporal patterns** -- mined hourly, daily and sequence patterns that
   match the current time or the recent set.
4. **Context** -- semantic neighbours of an optional free-text context.

Contributions are summed per candidate (a heuristic, not a probability),
scaled by helpfulness and clamped once at the end.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, NamedTuple

from .embeddings import EmbeddingProvider, NoopEmbedding, safe_embed
from .memory import WEEKDAYS
from .relevance import validate_limit

if TYPE_CHECKING:
    from .store import MemoryStore

logger = logging.getLogger(__name__)

CO_ACCESS_BOOST = 0.3
RELATIONSHIP_FACTOR = 0.4
TEMPORAL_FACTOR = 0.3
CONTEXT_FACTOR = 0.4
TEMPORAL_MIN_CONFIDENCE = 0.5
CONTEXT_MATCH_THRESHOLD = 0.6
CONTEXT_MATCH_COUNT = 20
PREVIEW_LENGTH = 150


class Contribution(NamedTuple):
    """One signal's vote for a candidate memory."""

    memory_id: str
    amount: float
    reason: str
    related_to: str | None = None


@dataclass
class _Accumulator:
    confidence: float = 0.0
    reasons: set[str] = field(default_factory=set)
    related_to: set[str] = field(default_factory=set)


@dataclass
class Prediction:
    """A memory predicted to be needed soon.

    Attributes:
        memory_id: The predicted memory.
        confidence: Heuristic score in ``[0, 1]``, rounded to 2 places.
        reasons: Sorted, de-duplicated signal tags.
        related_to: Sorted ids of the recent memories that led here.
        text: First 150 characters of the memory text.
        helpfulness_score: Helpfulness used to scale the confidence.
        usage_count: Current usage count.
    """

    memory_id: str
    confidence: float
    reasons: list[str]
    related_to: list[str]
    text: str = ""
    helpfulness_score: float = 0.5
    usage_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory_id": self.memory_id,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "related_to": list(self.related_to),
            "text": self.text,
            "helpfulness_score": self.helpfulness_score,
            "usage_count": self.usage_count,
        }


class PredictionEngine:
    """Fuses behavioural signals into ranked predictions.

    The four signal passes are independent and run concurrently on a
    thread pool; the store uses per-thread connections so this is safe.

    Args:
        store: Backing :class:`MemoryStore`.
        embedder: Provider used for the context pass.
        max_workers: Thread pool size for the signal passes.
        clock: Callable returning the current time, used for temporal
            matching.  Defaults to UTC now.
    """

    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingProvider | None = None,
        max_workers: int = 4,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder or NoopEmbedding()
        self._max_workers = max(1, max_workers)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def predict(
        self,
        owner_id: str,
        recent_memory_ids: Iterable[str] = (),
        context: str | None = None,
        limit: int = 10,
    ) -> list[Prediction]:
        """Predict the memories an owner is likely to need next.

        Args:
            owner_id: Owner whose memories are considered.
            recent_memory_ids: Memories accessed recently.  They are never
                predicted themselves.
            context: Optional free-text description of the current task.
            limit: Maximum number of predictions.

        Returns:
            Predictions sorted by descending confidence, ties by memory id.

        Raises:
            ValueError: If *limit* is not a positive integer.
        """
        validate_limit(limit)
        recent = [m for m in dict.fromkeys(recent_memory_ids) if m]
        now = self._clock()

        passes: list[Callable[[], list[Contribution]]] = [
            lambda: self._co_access_signals(owner_id, recent),
            lambda: self._relationship_signals(owner_id, recent),
            lambda: self._temporal_signals(owner_id, recent, now),
            lambda: self._context_signals(owner_id, recent, context),
        ]
        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(passes)),
            thread_name_prefix="recallmesh-predict",
        ) as pool:
            futures = [pool.submit(fn) for fn in passes]
            results = [f.result() for f in futures]

        accumulated: dict[str, _Accumulator] = {}
        for contributions in results:
            for c in contributions:
                acc = accumulated.setdefault(c.memory_id, _Accumulator())
                acc.confidence += c.amount
                acc.reasons.add(c.reason)
                if c.related_to:
                    acc.related_to.add(c.related_to)

        if not accumulated:
            return []

        memories = self._store.get_many(accumulated)
        predictions: list[Prediction] = []
        for memory_id, acc in accumulated.items():
            mem = memories.get(memory_id)
            if mem is None or mem.owner_id != owner_id:
                continue
            helpfulness = mem.helpfulness_score
            final = min(acc.confidence * (0.5 + helpfulness * 0.5), 1.0)
            predictions.append(
                Prediction(
                    memory_id=memory_id,
                    confidence=round(final, 2),
                    reasons=sorted(acc.reasons),
                    related_to=sorted(acc.related_to),
                    text=mem.preview(PREVIEW_LENGTH),
                    helpfulness_score=helpfulness,
                    usage_count=mem.usage_count,
                )
            )

        predictions.sort(key=lambda p: (-p.confidence, p.memory_id))
        return predictions[:limit]

    # ------------------------------------------------------------------
    # Signal passes
    # ------------------------------------------------------------------

    def _co_access_signals(self, owner_id: str, recent: list[str]) -> list[Contribution]:
        if not recent:
            return []
        recent_set = set(recent)
        out: list[Contribution] = []
        memories = self._store.get_many(recent)
        for memory_id in recent:
            mem = memories.get(memory_id)
            if mem is None or mem.owner_id != owner_id:
                continue
            for other in mem.access_pattern.co_accessed_with:
                if other in recent_set:
                    continue
                out.append(Contribution(other, CO_ACCESS_BOOST, "frequently_accessed_with", mem.id))
        return out

    def _relationship_signals(self, owner_id: str, recent: list[str]) -> list[Contribution]:
        if not recent:
            return []
        recent_set = set(recent)
        out: list[Contribution] = []
        for rel in self._store.get_relationships(recent):
            if rel.related_memory_id in recent_set:
                continue
            out.append(
                Contribution(
                    rel.related_memory_id,
                    rel.strength * RELATIONSHIP_FACTOR,
                    f"{rel.relationship_type}_relationship",
                    rel.memory_id,
                )
            )
        return out

    def _temporal_signals(
        self,
        owner_id: str,
        recent: list[str],
        now: datetime,
    ) -> list[Contribution]:
        recent_set = set(recent)
        weekday = WEEKDAYS[now.weekday()]
        out: list[Contribution] = []
        patterns = self._store.get_temporal_patterns(owner_id, min_confidence=TEMPORAL_MIN_CONFIDENCE)
        for pattern in patterns:
            data = pattern.pattern_data
            if pattern.pattern_type == "hourly":
                matches = data.get("hour") == now.hour
            elif pattern.pattern_type == "daily":
                matches = str(data.get("weekday", "")).lower() == weekday
            else:
                sequence = data.get("sequence") or []
                matches = bool(sequence) and sequence[0] in recent_set
            if not matches:
                continue
            for memory_id in pattern.memories:
                if memory_id in recent_set:
                    continue
                out.append(
                    Contribution(
                        memory_id,
                        pattern.confidence * TEMPORAL_FACTOR,
                        f"temporal_pattern_{pattern.pattern_type}",
                    )
                )
        return out

    def _context_signals(
        self,
        owner_id: str,
        recent: list[str],
        context: str | None,
    ) -> list[Contribution]:
        if not context or not context.strip():
            return []
        embedding = safe_embed(self._embedder, context)
        if embedding is None:
            return []
        recent_set = set(recent)
        matches = self._store.match_candidates(
            embedding, CONTEXT_MATCH_THRESHOLD, CONTEXT_MATCH_COUNT, owner_id
        )
        return [
            Contribution(mem.id, similarity * CONTEXT_FACTOR, "context_similarity")
            for mem, similarity in matches
            if mem.id not in recent_set
        ]
