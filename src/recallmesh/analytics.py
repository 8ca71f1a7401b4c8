"""Derived per-memory analytics and per-owner learning weights.

The store computes :class:`MemoryAnalytics` on read from the raw usage
columns; nothing here is persisted directly.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

DEFAULT_USAGE_WEIGHT = 0.3
DEFAULT_RECENCY_WEIGHT = 0.2
DEFAULT_HELPFULNESS_WEIGHT = 0.5
DEFAULT_RELATIONSHIP_WEIGHT = 0.2


@dataclass
class LearningWeights:
    """Per-owner weights used to blend ranking signals.

    The weights are adapted by feedback and are deliberately *not*
    renormalised, so their sum drifts as they adapt.  Scores built from
    them are comparable within one owner only.

    Attributes:
        usage_weight: Weight of the log-scaled usage signal.
        recency_weight: Weight of the bucketed recency signal.
        helpfulness_weight: Weight of the learned helpfulness score.
        relationship_weight: Weight reserved for relationship signals.
    """

    usage_weight: float = DEFAULT_USAGE_WEIGHT
    recency_weight: float = DEFAULT_RECENCY_WEIGHT
    helpfulness_weight: float = DEFAULT_HELPFULNESS_WEIGHT
    relationship_weight: float = DEFAULT_RELATIONSHIP_WEIGHT

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class MemoryAnalytics:
    """Computed usage view of a single memory.

    Attributes:
        memory_id: The memory described.
        usage_count: Number of reads.
        helpfulness_score: Learned usefulness in ``[0, 1]``.
        recency_score: Bucketed recency, see :func:`recency_score`.
        days_since_access: Whole days since the last read, ``None`` if the
            memory has never been read.
        access_frequency: Usage bucket, see :func:`access_frequency`.
        relationship_count: Number of outgoing relationship edges.
    """

    memory_id: str
    usage_count: int
    helpfulness_score: float
    recency_score: float
    days_since_access: int | None
    access_frequency: str
    relationship_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def days_since(when: datetime | None, now: datetime | None = None) -> int | None:
    """Return the number of whole days between *when* and *now*.

    Returns ``None`` when *when* is ``None``.
    """
    if when is None:
        return None
    if now is None:
        now = datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delta = now - when
    return max(0, delta.days)


def recency_score(last_accessed: datetime | None, now: datetime | None = None) -> float:
    """Bucket the time since last access into a recency score.

    Never accessed scores ``0.0``; within 7 days ``1.0``; within 30 days
    ``0.8``; within 90 days ``0.5``; anything older ``0.3``.
    """
    if last_accessed is None:
        return 0.0
    if now is None:
        now = datetime.now(timezone.utc)
    if last_accessed.tzinfo is None:
        last_accessed = last_accessed.replace(tzinfo=timezone.utc)
    age_days = (now - last_accessed).total_seconds() / 86400.0
    if age_days < 7:
        return 1.0
    if age_days < 30:
        return 0.8
    if age_days < 90:
        return 0.5
    return 0.3


def access_frequency(usage_count: int) -> str:
    """Bucket a usage count into ``very_high`` .. ``unused``."""
    if usage_count > 50:
        return "very_high"
    if usage_count > 20:
        return "high"
    if usage_count > 5:
        return "medium"
    if usage_count > 0:
        return "low"
    return "unused"
