"""Ranking engine for RecallMesh.

Blends semantic similarity with learned usage signals -- usage count,
recency and helpfulness -- using per-owner :class:`LearningWeights`, then
applies an optional recency boost or age penalty.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .analytics import LearningWeights, MemoryAnalytics
from .embeddings import EmbeddingProvider, NoopEmbedding, safe_embed
from .memory import Memory

if TYPE_CHECKING:
    from .store import MemoryStore
    from .usage import UsageTracker

logger = logging.getLogger(__name__)

VECTOR_MATCH_THRESHOLD = 0.5
OVERFETCH_FACTOR = 3
SIMILARITY_WEIGHT = 0.4
RECENT_DAYS = 7
STALE_DAYS = 90
RECENCY_BOOST = 1.2
AGE_PENALTY = 0.7
USAGE_BOOST_THRESHOLD = 5
SEARCH_CONTEXT = "search_result"


def usage_score(usage_count: int) -> float:
    """Log-scale a usage count into ``[0, 1]``, saturating near 99 uses."""
    return min(math.log(usage_count + 1) / math.log(100), 1.0)


def weighted_score(
    base_similarity: float,
    analytics: MemoryAnalytics,
    weights: LearningWeights,
) -> float:
    """Blend similarity with usage, recency and helpfulness.

    ``base_similarity * 0.4 + usage * w_u + recency * w_r + helpfulness * w_h``
    """
    return (
        base_similarity * SIMILARITY_WEIGHT
        + usage_score(analytics.usage_count) * weights.usage_weight
        + analytics.recency_score * weights.recency_weight
        + analytics.helpfulness_score * weights.helpfulness_weight
    )


def validate_unit_interval(name: str, value: float | None) -> None:
    """Raise ``ValueError`` if *value* is set and outside ``[0, 1]``."""
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be a number between 0 and 1, got {value!r}")


def validate_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit!r}")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class RankedMemory:
    """A search hit together with its score breakdown.

    Attributes:
        memory: The matched memory.
        base_similarity: Vector similarity, or ``None`` for text matches.
        weighted_score: Final score used for ordering.
        boosted_by_usage: Whether usage weighting applied to a memory read
            more than five times.
        boosted_by_recency: Whether the recency boost was applied.
        penalized_by_age: Whether the age penalty was applied.
        access_frequency: Usage bucket from the analytics view.
    """

    memory: Memory
    base_similarity: float | None
    weighted_score: float
    boosted_by_usage: bool = False
    boosted_by_recency: bool = False
    penalized_by_age: bool = False
    access_frequency: str = "unused"

    def to_dict(self) -> dict[str, Any]:
        data = self.memory.to_dict(include_embedding=False)
        data.update(
            base_similarity=self.base_similarity,
            weighted_score=self.weighted_score,
            boosted_by_usage=self.boosted_by_usage,
            boosted_by_recency=self.boosted_by_recency,
            penalized_by_age=self.penalized_by_age,
            access_frequency=self.access_frequency,
        )
        return data


@dataclass
class SearchResult:
    """Outcome of one :meth:`RankingEngine.search` call."""

    query: str
    memories: list[RankedMemory]
    search_method: str
    weighted: bool
    learning_mode: bool

    @property
    def count(self) -> int:
        return len(self.memories)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memories": [m.to_dict() for m in self.memories],
            "count": self.count,
            "query": self.query,
            "weighted": self.weighted,
            "learning_mode": self.learning_mode,
            "search_method": self.search_method,
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RankingEngine:
    """Scores and orders search candidates for one owner.

    Args:
        store: Backing :class:`MemoryStore`.
        embedder: Embedding provider; failures fall back to text search.
        usage: Tracker receiving best-effort usage increments in learning
            mode.  When ``None`` learning mode writes synchronously.
    """

    def __init__(
        self,
        store: MemoryStore,
        embedder: EmbeddingProvider | None = None,
        usage: UsageTracker | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder or NoopEmbedding()
        self._usage = usage

    def search(
        self,
        owner_id: str,
        query: str,
        limit: int = 10,
        weight_by_usage: bool = False,
        decay_old_memories: bool = False,
        learning_mode: bool = False,
        min_helpfulness_score: float | None = None,
        now: datetime | None = None,
    ) -> SearchResult:
        """Search an owner's memories and rank the hits.

        Args:
            owner_id: Owner whose memories are searched.
            query: Search text.
            limit: Maximum number of results.
            weight_by_usage: Blend in usage, recency and helpfulness with
                the owner's learned weights.
            decay_old_memories: Boost memories read within 7 days by 1.2x
                and penalise those untouched for 90+ days by 0.7x.
            learning_mode: Record a ``"search_result"`` access for every
                returned memory.
            min_helpfulness_score: Drop memories below this helpfulness.
            now: Reference time.  Defaults to UTC now.

        Returns:
            A :class:`SearchResult`.

        Raises:
            ValueError: On an empty query, bad limit or threshold.
        """
        if not query or not query.strip():
            raise ValueError("query must not be empty")
        validate_limit(limit)
        validate_unit_interval("min_helpfulness_score", min_helpfulness_score)
        if now is None:
            now = datetime.now(timezone.utc)

        weighting = weight_by_usage or decay_old_memories
        fetch_limit = limit * OVERFETCH_FACTOR if weighting else limit

        embedding = safe_embed(self._embedder, query)
        candidates: list[tuple[Memory, float | None]]
        if embedding is not None:
            search_method = "vector_similarity"
            candidates = list(
                self._store.match_candidates(
                    embedding, VECTOR_MATCH_THRESHOLD, fetch_limit, owner_id
                )
            )
        else:
            search_method = "text_search"
            candidates = [
                (mem, None)
                for mem in self._store.search_by_text(owner_id, query, limit=fetch_limit)
            ]

        weights = self._store.get_learning_weights(owner_id) if weight_by_usage else LearningWeights()
        analytics = self._store.analytics([m.id for m, _ in candidates], now=now)

        ranked: list[RankedMemory] = []
        excluded: set[str] = set()
        for mem, similarity in candidates:
            stats = analytics.get(mem.id)
            if stats is None:
                continue
            hit = self._score(mem, similarity, stats, weights, weight_by_usage, decay_old_memories)
            if (
                min_helpfulness_score is not None
                and stats.helpfulness_score < min_helpfulness_score
            ):
                hit.weighted_score = 0.0
                excluded.add(mem.id)
            ranked.append(hit)

        # list.sort is stable, so equal scores keep retrieval order.
        ranked.sort(key=lambda hit: hit.weighted_score, reverse=True)
        ranked = [hit for hit in ranked if hit.memory.id not in excluded][:limit]

        if learning_mode and ranked:
            self._track([hit.memory.id for hit in ranked])

        return SearchResult(
            query=query,
            memories=ranked,
            search_method=search_method,
            weighted=weighting,
            learning_mode=learning_mode,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _score(
        memory: Memory,
        similarity: float | None,
        stats: MemoryAnalytics,
        weights: LearningWeights,
        weight_by_usage: bool,
        decay_old_memories: bool,
    ) -> RankedMemory:
        boosted_by_usage = False
        if similarity is None:
            if weight_by_usage:
                score = (1 + stats.usage_count) * stats.helpfulness_score
                boosted_by_usage = stats.usage_count > USAGE_BOOST_THRESHOLD
            else:
                score = 0.0
        elif weight_by_usage:
            score = weighted_score(similarity, stats, weights)
            boosted_by_usage = stats.usage_count > USAGE_BOOST_THRESHOLD
        else:
            score = similarity

        boosted_by_recency = False
        penalized_by_age = False
        days = stats.days_since_access
        if decay_old_memories and days is not None:
            if days <= RECENT_DAYS:
                score *= RECENCY_BOOST
                boosted_by_recency = True
            elif days >= STALE_DAYS:
                score *= AGE_PENALTY
                penalized_by_age = True

        return RankedMemory(
            memory=memory,
            base_similarity=similarity,
            weighted_score=score,
            boosted_by_usage=boosted_by_usage,
            boosted_by_recency=boosted_by_recency,
            penalized_by_age=penalized_by_age,
            access_frequency=stats.access_frequency,
        )

    def _track(self, memory_ids: list[str]) -> None:
        if self._usage is not None:
            for memory_id in memory_ids:
                self._usage.record_usage(memory_id, SEARCH_CONTEXT)
            self._usage.record_co_access(memory_ids)
            return
        try:
            for memory_id in memory_ids:
                self._store.increment_usage(memory_id, context=SEARCH_CONTEXT)
            self._store.record_co_access(memory_ids)
        except Exception:
            logger.warning("Failed to record search usage for %d memories", len(memory_ids), exc_info=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"RankingEngine(store={self._store!r}, embedder={self._embedder!r})"
