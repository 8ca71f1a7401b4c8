"""Duplicate detection for RecallMesh.

Finds duplicate and near-duplicate memories within an owner's most recent
window.  All similarity computation is pure Python; the pairwise scan is
quadratic, so callers always pass a bounded window.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .memory import Memory

logger = logging.getLogger(__name__)

DUPLICATE_THRESHOLD = 0.85
MERGE_THRESHOLD = 0.95
DEFAULT_WINDOW = 500
MIN_CONTENT_WORDS = 3
# Smaller-to-larger content-word count needed before overlap is trusted.
MIN_CONTENT_RATIO = 0.75

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9'_-]*")

# Function words ignored by the content-word overlap check.
_STOPWORDS = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "nor", "so", "of", "to", "in",
        "on", "at", "by", "for", "from", "with", "without", "using", "via",
        "into", "onto", "over", "under", "as", "is", "are", "was", "were",
        "be", "been", "it", "its", "this", "that", "these", "those", "we",
        "our", "you", "your", "they", "their", "i", "my", "me",
    }
)


@dataclass
class DuplicateGroup:
    """Memories that look like copies of each other.

    Attributes:
        memory_ids: Ids in the group, most recent first.
        similarity: Pairwise similarity that put them together.
        suggestion: ``"merge"`` above 0.95, otherwise ``"review"``.
        texts: First 100 characters of each memory, aligned with
            ``memory_ids``.
    """

    memory_ids: list[str]
    similarity: float
    suggestion: str
    texts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory_ids": list(self.memory_ids),
            "similarity": round(self.similarity, 2),
            "suggestion": self.suggestion,
            "texts": list(self.texts),
        }


# ---------------------------------------------------------------------------
# Text similarity (pure Python)
# ---------------------------------------------------------------------------


def _word_set(text: str) -> set[str]:
    """Return the set of lower-cased whitespace-separated words."""
    return set(text.lower().split())


def _content_words(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if w not in _STOPWORDS}


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard index of the lower-cased word sets of *a* and *b*.

    Returns ``0.0`` if both texts are empty.
    """
    set_a = _word_set(a)
    set_b = _word_set(b)
    if not set_a and not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def text_similarity(a: str, b: str) -> float:
    """Similarity used for duplicate detection.

    The larger of plain word-set Jaccard and the overlap coefficient of
    the two texts' content words.  The overlap check only applies when the
    smaller content-word set has at least three words and at least three
    quarters as many words as the larger one, so a short memory is never
    matched against a longer one that merely mentions it.  An overlap
    score is capped at the merge threshold: a rewording is flagged for
    review, never for merging.  It catches rewordings such as "Deploy to
    production using Docker" and "Deploy to production with Docker
    containers", whose plain Jaccard is only about 0.57.

    Returns:
        Similarity in ``[0, 1]``.
    """
    score = jaccard_similarity(a, b)
    words_a = _content_words(a)
    words_b = _content_words(b)
    smaller, larger = sorted((len(words_a), len(words_b)))
    if smaller >= MIN_CONTENT_WORDS and smaller / larger >= MIN_CONTENT_RATIO:
        overlap = min(len(words_a & words_b) / smaller, MERGE_THRESHOLD)
        score = max(score, overlap)
    return score


# ---------------------------------------------------------------------------
# Duplicate detection
# ---------------------------------------------------------------------------


def find_duplicates(
    memories: list[Memory],
    threshold: float = DUPLICATE_THRESHOLD,
    window: int = DEFAULT_WINDOW,
) -> list[DuplicateGroup]:
    """Find pairs of memories whose text similarity reaches *threshold*.

    Only the first *window* memories are compared.  Callers pass them most
    recent first.

    Args:
        memories: Candidate memories, most recent first.
        threshold: Minimum similarity, in ``(0, 1]``.
        window: Maximum number of memories to compare.

    Returns:
        One :class:`DuplicateGroup` per qualifying pair, in scan order.
    """
    if not 0.0 < threshold <= 1.0:
        raise ValueError(f"threshold must be in (0, 1], got {threshold!r}")
    scanned = memories[: max(0, window)]
    groups: list[DuplicateGroup] = []
    for i in range(len(scanned)):
        for j in range(i + 1, len(scanned)):
            first, second = scanned[i], scanned[j]
            sim = text_similarity(first.text, second.text)
            if sim < threshold:
                continue
            groups.append(
                DuplicateGroup(
                    memory_ids=[first.id, second.id],
                    similarity=sim,
                    suggestion="merge" if sim > MERGE_THRESHOLD else "review",
                    texts=[first.text[:100], second.text[:100]],
                )
            )
    if len(memories) > len(scanned):
        logger.debug(
            "Duplicate scan limited to %d of %d memories", len(scanned), len(memories)
        )
    return groups
