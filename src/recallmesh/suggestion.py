"""Context-aware suggestions for RecallMesh.

Proactively surfaces memories relevant to a free-text description of what
the agent is doing, scored with the owner's learned weights and optionally
explained.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .analytics import LearningWeights, MemoryAnalytics
from .embeddings import EmbeddingProvider, NoopEmbedding, safe_embed
from .relevance import (
    OVERFETCH_FACTOR,
    VECTOR_MATCH_THRESHOLD,
    validate_limit,
    validate_unit_interval,
    weighted_score,
)

if TYPE_CHECKING:
    from .store import MemoryStore

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY = 0.5
RELATED_MIN_STRENGTH = 0.6
FALLBACK_WORDS = 3


def semantic_bucket(similarity: float) -> str:
    if similarity > 0.7:
        return "high"
    if similarity > 0.5:
        return "medium"
    return "low"


@dataclass
class Suggestion:
    """A memory suggested for the current context.

    Attributes:
        memory_id: The suggested memory.
        text: Full memory text.
        similarity: Semantic similarity (``0.5`` for text matches).
        suggestion_score: Weighted score compared to ``min_confidence``.
        analytics: Analytics view of the memory.
        reasoning: Optional explanation of the score.
        related_memories: Strong edges touching the memory.
    """

    memory_id: str
    text: str
    similarity: float
    suggestion_score: float
    analytics: MemoryAnalytics
    reasoning: dict[str, Any] | None = None
    related_memories: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "memory_id": self.memory_id,
            "text": self.text,
            "similarity": self.similarity,
            "suggestion_score": self.suggestion_score,
            "analytics": self.analytics.to_dict(),
            "related_memories": list(self.related_memories),
        }
        if self.reasoning is not None:
            data["reasoning"] = self.reasoning
        return data


class SuggestionEngine:
    """Scores memories against a context string.

    Args:
        store: Backing :class:`MemoryStore`.
        embedder: Embedding provider; failures fall back to text matching
            on the first three words of the context.
    """

    def __init__(self, store: MemoryStore, embedder: EmbeddingProvider | None = None) -> None:
        self._store = store
        self._embedder = embedder or NoopEmbedding()

    def suggest(
        self,
        owner_id: str,
        context: str,
        limit: int = 5,
        min_confidence: float = 0.6,
        include_reasoning: bool = True,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Suggest memories for *context*.

        Returns:
            ``{suggestions, count, context, weights_used, min_confidence}``
            where ``suggestions`` holds :class:`Suggestion` objects.

        Raises:
            ValueError: On an empty context, bad limit or threshold.
        """
        if not context or not isinstance(context, str) or not context.strip():
            raise ValueError("context must be a non-empty string")
        validate_limit(limit)
        validate_unit_interval("min_confidence", min_confidence)
        if now is None:
            now = datetime.now(timezone.utc)

        weights = self._store.get_learning_weights(owner_id)
        fetch = limit * OVERFETCH_FACTOR

        embedding = safe_embed(self._embedder, context)
        if embedding is not None:
            candidates = [
                (mem, sim)
                for mem, sim in self._store.match_candidates(
                    embedding, VECTOR_MATCH_THRESHOLD, fetch, owner_id
                )
            ]
        else:
            words = " ".join(context.split()[:FALLBACK_WORDS])
            candidates = [
                (mem, DEFAULT_SIMILARITY)
                for mem in self._store.search_by_text(owner_id, words, limit=fetch, match_words=True)
            ]

        analytics = self._store.analytics([m.id for m, _ in candidates], now=now)
        suggestions: list[Suggestion] = []
        for mem, similarity in candidates:
            stats = analytics.get(mem.id)
            if stats is None:
                continue
            score = weighted_score(similarity, stats, weights)
            if score < min_confidence:
                continue
            reasoning = self._reasoning(similarity, stats, weights) if include_reasoning else None
            suggestions.append(
                Suggestion(
                    memory_id=mem.id,
                    text=mem.text,
                    similarity=similarity,
                    suggestion_score=score,
                    analytics=stats,
                    reasoning=reasoning,
                )
            )

        suggestions.sort(key=lambda s: s.suggestion_score, reverse=True)
        suggestions = suggestions[:limit]
        self._attach_relationships(suggestions)

        return {
            "suggestions": suggestions,
            "count": len(suggestions),
            "context": context,
            "weights_used": weights.to_dict(),
            "min_confidence": min_confidence,
        }

    @staticmethod
    def _reasoning(
        similarity: float,
        stats: MemoryAnalytics,
        weights: LearningWeights,
    ) -> dict[str, Any]:
        return {
            "semantic_match": semantic_bucket(similarity),
            "frequently_used": stats.usage_count > 10,
            "recently_accessed": stats.recency_score > 0.8,
            "high_helpfulness": stats.helpfulness_score > 0.7,
            "weights_applied": weights.to_dict(),
        }

    def _attach_relationships(self, suggestions: list[Suggestion]) -> None:
        if not suggestions:
            return
        by_id = {s.memory_id: s for s in suggestions}
        edges = self._store.get_relationships(
            by_id, min_strength=RELATED_MIN_STRENGTH, both_directions=True
        )
        for rel in edges:
            for own, other in (
                (rel.memory_id, rel.related_memory_id),
                (rel.related_memory_id, rel.memory_id),
            ):
                target = by_id.get(own)
                if target is None:
                    continue
                target.related_memories.append(
                    {
                        "related_memory_id": other,
                        "relationship_type": rel.relationship_type,
                        "strength": rel.strength,
                    }
                )
