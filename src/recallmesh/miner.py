"""Pattern mining for RecallMesh.

The miner is the offline half of the learning loop.  It reads access
histories and co-access records, and from them

* detects hourly, daily and sequence patterns and upserts them as
  :class:`~recallmesh.memory.TemporalPattern` rows;
* mines frequently co-accessed pairs and proposes relationship edges;
* flags duplicate, outdated and stale memories for maintenance;
* reports how useful each relationship type has been.

Every sub-task of an analysis is isolated: when one fails it is logged
and recorded in the report, and the others still run.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from .analytics import days_since
from .compaction import DEFAULT_WINDOW, DUPLICATE_THRESHOLD, DuplicateGroup, find_duplicates
from .memory import RELATIONSHIP_TYPES, WEEKDAYS, Memory, validate_relationship_type
from .relevance import validate_unit_interval

if TYPE_CHECKING:
    from .store import MemoryStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

CO_ACCESS_THRESHOLD = 5
SEQUENCE_THRESHOLD = 5
BUCKET_MIN_MEMORIES = 3
MAX_PATTERN_CONFIDENCE = 0.95
AUTO_APPLY_THRESHOLD = 0.75
STALE_DAYS = 180
STALE_LIMIT = 100
OUTDATED_DAYS = 90
OUTDATED_MAX_HELPFULNESS = 0.3
MAINTENANCE_LIMIT = 20
MAX_SCAN = 10_000


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class CoAccessPair:
    """Two memories that keep showing up together."""

    memory_id_1: str
    memory_id_2: str
    co_access_count: int


@dataclass
class RelationshipSuggestion:
    """A proposed relationship edge.

    Attributes:
        memory_id: Source memory.
        related_memory_id: Target memory.
        suggested_type: One of the relationship types.
        confidence: Heuristic confidence in ``[0, 0.95]``.
        reason: Human-readable justification.
        co_access_count: How often the pair was co-accessed.
    """

    memory_id: str
    related_memory_id: str
    suggested_type: str
    confidence: float
    reason: str
    co_access_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelationshipSuggestion:
        """Build a suggestion from caller-supplied data.

        Raises:
            ValueError: If a required field is missing or invalid.
        """
        try:
            memory_id = str(data["memory_id"])
            related = str(data["related_memory_id"])
            confidence = float(data["confidence"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid relationship suggestion: {data!r}") from exc
        suggested_type = validate_relationship_type(str(data.get("suggested_type", "related_to")))
        validate_unit_interval("confidence", confidence)
        return cls(
            memory_id=memory_id,
            related_memory_id=related,
            suggested_type=suggested_type,
            confidence=confidence,
            reason=str(data.get("reason", "")),
            co_access_count=int(data.get("co_access_count", 0) or 0),
        )


@dataclass
class DetectedPattern:
    """A temporal pattern found in one mining pass, before persistence."""

    owner_id: str
    pattern_type: str
    pattern_data: dict[str, Any]
    confidence: float


@dataclass
class LearningReport:
    """Summary of one analysis of a single owner."""

    owner_id: str
    timestamp: str
    clusters_detected: int = 0
    relationship_suggestions: list[RelationshipSuggestion] = field(default_factory=list)
    weight_adjustments: dict[str, float] = field(default_factory=dict)
    stale_memory_count: int = 0
    temporal_patterns_detected: int = 0
    temporal_patterns_stored: int = 0
    duplicate_groups_found: int = 0
    duplicates: list[DuplicateGroup] = field(default_factory=list)
    applied_count: int = 0
    processing_time_ms: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "timestamp": self.timestamp,
            "clusters_detected": self.clusters_detected,
            "relationship_suggestions": [s.to_dict() for s in self.relationship_suggestions],
            "weight_adjustments": dict(self.weight_adjustments),
            "stale_memory_count": self.stale_memory_count,
            "temporal_patterns_detected": self.temporal_patterns_detected,
            "temporal_patterns_stored": self.temporal_patterns_stored,
            "duplicate_groups_found": self.duplicate_groups_found,
            "duplicates": [d.to_dict() for d in self.duplicates[:10]],
            "applied_count": self.applied_count,
            "processing_time_ms": self.processing_time_ms,
            "errors": list(self.errors),
        }


# ---------------------------------------------------------------------------
# Miner
# ---------------------------------------------------------------------------


class PatternMiner:
    """Mines an owner's access history for learnable structure.

    Args:
        store: Backing :class:`MemoryStore`.
        co_access_threshold: Co-access count at which a pair qualifies for
            a relationship suggestion.
        duplicate_window: Number of most recent memories compared for
            duplicates.
        duplicate_threshold: Similarity at which two memories count as
            duplicates.
        auto_apply_threshold: Confidence at which suggestions are applied
            when ``auto_apply`` is requested.
        stale_days: Days without access after which a memory is stale.
        clock: Callable returning the current time.
    """

    def __init__(
        self,
        store: MemoryStore,
        co_access_threshold: int = CO_ACCESS_THRESHOLD,
        duplicate_window: int = DEFAULT_WINDOW,
        duplicate_threshold: float = DUPLICATE_THRESHOLD,
        auto_apply_threshold: float = AUTO_APPLY_THRESHOLD,
        stale_days: int = STALE_DAYS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self.co_access_threshold = max(1, co_access_threshold)
        self.duplicate_window = max(2, duplicate_window)
        self.duplicate_threshold = duplicate_threshold
        self.auto_apply_threshold = auto_apply_threshold
        self.stale_days = stale_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Temporal pattern detection
    # ------------------------------------------------------------------

    @staticmethod
    def _access_times(memory: Memory) -> list[datetime]:
        times = list(memory.access_pattern.access_timestamps)
        if memory.last_accessed is not None:
            times.append(memory.last_accessed)
        return [t.astimezone(timezone.utc) for t in times]

    def detect_hourly_patterns(self, owner_id: str, memories: list[Memory]) -> list[DetectedPattern]:
        """Emit one pattern per hour of day touched by 3+ distinct memories.

        Confidence is ``min(n / 10, 0.95)`` for ``n`` distinct memories.
        """
        buckets: dict[int, list[str]] = defaultdict(list)
        for mem in memories:
            for ts in self._access_times(mem):
                if mem.id not in buckets[ts.hour]:
                    buckets[ts.hour].append(mem.id)
        patterns = []
        for hour in sorted(buckets):
            ids = buckets[hour]
            if len(ids) < BUCKET_MIN_MEMORIES:
                continue
            patterns.append(
                DetectedPattern(
                    owner_id=owner_id,
                    pattern_type="hourly",
                    pattern_data={
                        "hour": hour,
                        "memories": ids,
                        "description": f"Memories frequently accessed at {hour}:00",
                    },
                    confidence=min(len(ids) / 10, MAX_PATTERN_CONFIDENCE),
                )
            )
        return patterns

    def detect_daily_patterns(self, owner_id: str, memories: list[Memory]) -> list[DetectedPattern]:
        """Emit one pattern per weekday touched by 3+ distinct memories.

        Confidence is ``min(n / 15, 0.95)``.
        """
        buckets: dict[str, list[str]] = defaultdict(list)
        for mem in memories:
            for ts in self._access_times(mem):
                day = WEEKDAYS[ts.weekday()]
                if mem.id not in buckets[day]:
                    buckets[day].append(mem.id)
        patterns = []
        for day in WEEKDAYS:
            ids = buckets.get(day, [])
            if len(ids) < BUCKET_MIN_MEMORIES:
                continue
            patterns.append(
                DetectedPattern(
                    owner_id=owner_id,
                    pattern_type="daily",
                    pattern_data={
                        "weekday": day,
                        "memories": ids,
                        "description": f"Memories frequently accessed on {day.capitalize()}s",
                    },
                    confidence=min(len(ids) / 15, MAX_PATTERN_CONFIDENCE),
                )
            )
        return patterns

    def detect_sequence_patterns(self, owner_id: str, memories: list[Memory]) -> list[DetectedPattern]:
        """Emit sequence patterns for co-access groups that recur 5+ times.

        Each memory contributes the key ``sorted({id, first two co-accessed
        ids})`` once per co-access episode it took part in (at least once),
        so reads where the memory came back alone never count.  Confidence is
        ``min(count / 20, 0.95)``.
        """
        keys: Counter[tuple[str, ...]] = Counter()
        for mem in memories:
            co = mem.access_pattern.co_accessed_with
            if not co:
                continue
            episodes = max(1, mem.access_pattern.co_access_episodes)
            keys[tuple(sorted({mem.id, *co[:2]}))] += episodes

        patterns = []
        for key, count in keys.items():
            if count < SEQUENCE_THRESHOLD or len(key) < 2:
                continue
            sequence = list(key)
            patterns.append(
                DetectedPattern(
                    owner_id=owner_id,
                    pattern_type="sequence",
                    pattern_data={
                        "sequence": sequence,
                        "memories": sequence,
                        "occurrences": count,
                        "description": f"Sequence pattern: {len(sequence)} memories accessed together",
                    },
                    confidence=min(count / 20, MAX_PATTERN_CONFIDENCE),
                )
            )
        return patterns

    def store_patterns(self, patterns: Iterable[DetectedPattern]) -> int:
        """Upsert detected patterns.

        A pattern that fails to store is logged and skipped.

        Returns:
            The number of patterns stored.
        """
        stored = 0
        for p in patterns:
            try:
                self._store.upsert_temporal_pattern(
                    p.owner_id, p.pattern_type, p.pattern_data, p.confidence, now=self._clock()
                )
            except (ValueError, RuntimeError):
                logger.warning("Failed to store %s pattern for %s", p.pattern_type, p.owner_id, exc_info=True)
                continue
            stored += 1
        return stored

    # ------------------------------------------------------------------
    # Co-access mining and relationship suggestions
    # ------------------------------------------------------------------

    def find_co_access_pairs(self, memories: list[Memory]) -> list[CoAccessPair]:
        """Count unordered co-accessed pairs and keep those at the threshold.

        Each memory contributes its co-access group, itself plus every id in
        its ``co_accessed_with`` set, and every pair inside the group is
        counted once.  A pair therefore scores once per memory that has seen
        both ends together.

        Returns:
            Qualifying pairs, most frequent first.
        """
        counts = _co_access_counts(memories)
        pairs = [
            CoAccessPair(a, b, count)
            for (a, b), count in counts.items()
            if count >= self.co_access_threshold
        ]
        pairs.sort(key=lambda p: p.co_access_count, reverse=True)
        return pairs

    def generate_suggestions(
        self,
        pairs: list[CoAccessPair],
        memories: dict[str, Memory] | None = None,
    ) -> list[RelationshipSuggestion]:
        """Propose an edge for every qualifying pair that lacks one.

        The type is ``similar_to`` when the texts share more than three
        words longer than four characters, else ``related_to``.
        Confidence is ``0.6 + min(count / 100, 0.3)``, plus 0.1 when the
        memories share a tag, capped at 0.95.
        """
        known = dict(memories or {})
        missing = {pid for p in pairs for pid in (p.memory_id_1, p.memory_id_2)} - set(known)
        if missing:
            known.update(self._store.get_many(missing))

        suggestions: list[RelationshipSuggestion] = []
        for pair in pairs:
            first = known.get(pair.memory_id_1)
            second = known.get(pair.memory_id_2)
            if first is None or second is None:
                continue
            if self._store.has_relationship(first.id, second.id):
                continue

            common_tags = set(first.tags) & set(second.tags)
            words_1 = {w for w in first.text.lower().split() if len(w) > 4}
            words_2 = {w for w in second.text.lower().split() if len(w) > 4}
            suggested_type = "similar_to" if len(words_1 & words_2) > 3 else "related_to"

            confidence = 0.6 + min(pair.co_access_count / 100, 0.3)
            if common_tags:
                confidence += 0.1
            reason = f"Co-accessed {pair.co_access_count} times"
            if common_tags:
                reason += f", {len(common_tags)} common tags"

            suggestions.append(
                RelationshipSuggestion(
                    memory_id=first.id,
                    related_memory_id=second.id,
                    suggested_type=suggested_type,
                    confidence=min(confidence, MAX_PATTERN_CONFIDENCE),
                    reason=reason,
                    co_access_count=pair.co_access_count,
                )
            )
        return suggestions

    def apply_suggestions(
        self,
        suggestions: Iterable[RelationshipSuggestion],
        min_confidence: float = AUTO_APPLY_THRESHOLD,
    ) -> int:
        """Persist suggestions at or above *min_confidence* as edges.

        A suggestion whose edge already exists is skipped silently.

        Returns:
            The number of edges created.

        Raises:
            ValueError: If *min_confidence* is outside ``[0, 1]``.
        """
        validate_unit_interval("min_confidence", min_confidence)
        applied = 0
        for s in suggestions:
            if s.confidence < min_confidence:
                continue
            created = self._store.add_relationship(
                s.memory_id,
                s.related_memory_id,
                relationship_type=s.suggested_type,
                strength=s.confidence,
                explanation=s.reason,
            )
            if created is None:
                logger.debug("Relationship %s -> %s already exists", s.memory_id, s.related_memory_id)
                continue
            applied += 1
            logger.info(
                "Auto-applied relationship: %s -> %s (%s)",
                s.memory_id,
                s.related_memory_id,
                s.suggested_type,
            )
        return applied

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def relationship_usefulness(
        self,
        owner_id: str,
        memories: dict[str, Memory] | None = None,
    ) -> dict[str, float]:
        """Average helpfulness of the memories at both ends of each edge type.

        Types without edges report ``0.5``.  The result is a diagnostic
        only and never changes the learned weights.
        """
        edges = self._store.list_relationships(owner_id)
        known = dict(memories or {})
        missing = {eid for e in edges for eid in (e.memory_id, e.related_memory_id)} - set(known)
        if missing:
            known.update(self._store.get_many(missing))

        scores: dict[str, list[float]] = defaultdict(list)
        for edge in edges:
            ends = [known.get(edge.memory_id), known.get(edge.related_memory_id)]
            values = [m.helpfulness_score for m in ends if m is not None]
            if values:
                scores[edge.relationship_type].append(sum(values) / len(values))

        return {
            rtype: round(sum(scores[rtype]) / len(scores[rtype]), 3) if scores.get(rtype) else 0.5
            for rtype in RELATIONSHIP_TYPES
        }

    def find_stale_memories(self, memories: list[Memory], now: datetime | None = None) -> list[Memory]:
        """Memories unread for ``stale_days`` or never used, up to 100."""
        if now is None:
            now = self._clock()
        stale = []
        for mem in memories:
            days = days_since(mem.last_accessed, now)
            if mem.usage_count == 0 or (days is not None and days >= self.stale_days):
                stale.append(mem)
                if len(stale) >= STALE_LIMIT:
                    break
        return stale

    def find_duplicates(self, memories: list[Memory]) -> list[DuplicateGroup]:
        return find_duplicates(
            memories, threshold=self.duplicate_threshold, window=self.duplicate_window
        )

    # ------------------------------------------------------------------
    # Analysis entry points
    # ------------------------------------------------------------------

    def analyze(self, owner_id: str, auto_apply: bool = False) -> LearningReport:
        """Run every mining step for one owner.

        Args:
            owner_id: Owner to analyse.
            auto_apply: Persist suggestions at or above
                ``auto_apply_threshold`` as relationship edges.

        Returns:
            A :class:`LearningReport`.
        """
        started = time.monotonic()
        now = self._clock()
        report = LearningReport(owner_id=owner_id, timestamp=now.isoformat())

        memories = self._step(report, "load_memories", lambda: self._store.list_for_owner(owner_id, limit=MAX_SCAN), [])
        by_id = {m.id: m for m in memories}

        patterns: list[DetectedPattern] = []
        patterns += self._step(report, "hourly_patterns", lambda: self.detect_hourly_patterns(owner_id, memories), [])
        patterns += self._step(report, "daily_patterns", lambda: self.detect_daily_patterns(owner_id, memories), [])
        patterns += self._step(report, "sequence_patterns", lambda: self.detect_sequence_patterns(owner_id, memories), [])
        report.temporal_patterns_detected = len(patterns)
        report.temporal_patterns_stored = self._step(report, "store_patterns", lambda: self.store_patterns(patterns), 0)

        pairs = self._step(report, "co_access_pairs", lambda: self.find_co_access_pairs(memories), [])
        report.clusters_detected = len(pairs)
        report.relationship_suggestions = self._step(
            report, "relationship_suggestions", lambda: self.generate_suggestions(pairs, by_id), []
        )
        report.weight_adjustments = self._step(
            report,
            "relationship_usefulness",
            lambda: self.relationship_usefulness(owner_id, by_id),
            {rtype: 0.5 for rtype in RELATIONSHIP_TYPES},
        )
        report.stale_memory_count = len(
            self._step(report, "stale_memories", lambda: self.find_stale_memories(memories, now), [])
        )
        report.duplicates = self._step(report, "duplicate_detection", lambda: self.find_duplicates(memories), [])
        report.duplicate_groups_found = len(report.duplicates)

        if auto_apply and report.relationship_suggestions:
            report.applied_count = self._step(
                report,
                "apply_suggestions",
                lambda: self.apply_suggestions(report.relationship_suggestions, self.auto_apply_threshold),
                0,
            )

        report.processing_time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Learning analysis for %s: %d pairs, %d suggestions, %d patterns, %d duplicates, "
            "%d stale, %d applied in %dms",
            owner_id,
            report.clusters_detected,
            len(report.relationship_suggestions),
            report.temporal_patterns_stored,
            report.duplicate_groups_found,
            report.stale_memory_count,
            report.applied_count,
            report.processing_time_ms,
        )
        return report

    def run_cycle(self, auto_apply: bool = False) -> dict[str, Any]:
        """Analyse every owner in the store.

        Returns:
            ``{timestamp, owners, reports, totals, processing_time_ms}``
            where ``reports`` maps owner id to its report dictionary.
        """
        started = time.monotonic()
        timestamp = self._clock().isoformat()
        reports: dict[str, Any] = {}
        totals: Counter[str] = Counter()
        for owner_id in self._store.list_owners():
            report = self.analyze(owner_id, auto_apply=auto_apply)
            reports[owner_id] = report.to_dict()
            totals["clusters_detected"] += report.clusters_detected
            totals["relationship_suggestions"] += len(report.relationship_suggestions)
            totals["temporal_patterns_stored"] += report.temporal_patterns_stored
            totals["duplicate_groups_found"] += report.duplicate_groups_found
            totals["stale_memory_count"] += report.stale_memory_count
            totals["applied_count"] += report.applied_count
            totals["errors"] += len(report.errors)
        return {
            "timestamp": timestamp,
            "owners": len(reports),
            "reports": reports,
            "totals": dict(totals),
            "processing_time_ms": int((time.monotonic() - started) * 1000),
        }

    def maintenance_suggestions(self, owner_id: str) -> dict[str, Any]:
        """Point out duplicates, outdated memories and archive candidates.

        Returns:
            ``{duplicates, outdated, archive_candidates,
            broken_relationships, summary}``.
        """
        now = self._clock()
        recent = self._store.list_for_owner(owner_id, limit=self.duplicate_window)
        duplicates = self.find_duplicates(recent)

        everything = self._store.list_for_owner(owner_id, limit=MAX_SCAN)
        outdated: list[tuple[int, Memory]] = []
        archive: list[tuple[int, Memory]] = []
        for mem in everything:
            days = days_since(mem.last_accessed, now)
            if days is not None and days >= OUTDATED_DAYS and mem.helpfulness_score <= OUTDATED_MAX_HELPFULNESS:
                outdated.append((days, mem))
            idle = days if days is not None else days_since(mem.created_at, now) or 0
            if mem.usage_count == 0 and idle >= self.stale_days:
                archive.append((idle, mem))
        outdated.sort(key=lambda pair: pair[0], reverse=True)
        archive.sort(key=lambda pair: pair[0], reverse=True)
        outdated = outdated[:MAINTENANCE_LIMIT]
        archive = archive[:MAINTENANCE_LIMIT]

        broken = self._store.count_broken_relationships(m.id for m in everything)

        return {
            "duplicates": [d.to_dict() for d in duplicates[:10]],
            "outdated": [
                {
                    "id": mem.id,
                    "text": _excerpt(mem.text),
                    "helpfulness_score": mem.helpfulness_score,
                    "days_since_access": days,
                    "suggestion": "update_or_remove",
                }
                for days, mem in outdated
            ],
            "archive_candidates": [
                {
                    "id": mem.id,
                    "text": _excerpt(mem.text),
                    "days_since_access": days,
                    "created_at": mem.created_at.isoformat(),
                    "suggestion": "archive",
                }
                for days, mem in archive
            ],
            "broken_relationships": broken,
            "summary": {
                "total_duplicates": len(duplicates),
                "total_outdated": len(outdated),
                "total_archive_candidates": len(archive),
                "total_broken_relationships": broken,
            },
        }

    def usage_insights(self, owner_id: str) -> dict[str, Any]:
        """Summarise how an owner's memories are being used."""
        now = self._clock()
        memories = self._store.list_for_owner(owner_id, limit=MAX_SCAN)

        tag_scores: dict[str, list[float]] = defaultdict(list)
        hours: Counter[int] = Counter()
        weekdays: Counter[str] = Counter()
        for mem in memories:
            for tag in mem.tags:
                tag_scores[tag].append(mem.helpfulness_score)
            for ts in mem.access_pattern.access_timestamps:
                ts = ts.astimezone(timezone.utc)
                hours[ts.hour] += 1
                weekdays[WEEKDAYS[ts.weekday()]] += 1

        useful_tags = sorted(
            (
                {"tag": tag, "avg_helpfulness": round(sum(v) / len(v), 3), "count": len(v)}
                for tag, v in tag_scores.items()
            ),
            key=lambda item: item["avg_helpfulness"],
            reverse=True,
        )[:10]

        together = _co_access_counts(memories)
        frequently_together = [
            {"memory_ids": list(pair), "count": count}
            for pair, count in together.most_common()
            if count >= 3
        ][:20]

        ages = {m.id: days_since(m.last_accessed, now) for m in memories}
        underutilized = [
            {
                "id": m.id,
                "text": _excerpt(m.text),
                "usage_count": m.usage_count,
                "days_since_access": ages[m.id],
            }
            for m in memories
            if m.usage_count == 0 or (ages[m.id] is not None and ages[m.id] > 90)
        ][:10]

        total = len(memories)
        return {
            "most_useful_tags": useful_tags,
            "frequently_accessed_together": frequently_together,
            "underutilized_memories": underutilized,
            "hourly_distribution": {str(h): hours[h] for h in sorted(hours)},
            "weekday_distribution": {d: weekdays[d] for d in WEEKDAYS if weekdays[d]},
            "relationship_usefulness": self.relationship_usefulness(owner_id, {m.id: m for m in memories}),
            "summary": {
                "total_memories": total,
                "total_accesses": sum(m.usage_count for m in memories),
                "avg_helpfulness": round(sum(m.helpfulness_score for m in memories) / total, 3) if total else 0.0,
                "active_memories": sum(1 for a in ages.values() if a is not None and a <= 30),
                "stale_memories": sum(1 for a in ages.values() if a is not None and a > 90),
            },
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _step(self, report: LearningReport, name: str, fn: Callable[[], T], default: T) -> T:
        try:
            return fn()
        except Exception as exc:
            logger.warning("Learning step %r failed for %s", name, report.owner_id, exc_info=True)
            report.errors.append({"step": name, "error": str(exc) or type(exc).__name__})
            return default


def _co_access_counts(memories: Iterable[Memory]) -> Counter[tuple[str, str]]:
    counts: Counter[tuple[str, str]] = Counter()
    for mem in memories:
        group = sorted({mem.id, *mem.access_pattern.co_accessed_with})
        for pair in itertools.combinations(group, 2):
            counts[pair] += 1
    return counts


def _excerpt(text: str, length: int = 100) -> str:
    return text if len(text) <= length else text[:length] + "..."
