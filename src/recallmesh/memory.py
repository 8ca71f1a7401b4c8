"""Data model for RecallMesh.

Defines the :class:`Memory` dataclass together with the learning records
that accumulate around it: the structured :class:`AccessPattern`, feedback
entries, relationship edges and mined temporal patterns.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_OWNER = "default"

RELATIONSHIP_TYPES: tuple[str, ...] = (
    "related_to",
    "caused_by",
    "similar_to",
    "follows",
    "contradicts",
)

PATTERN_TYPES: tuple[str, ...] = ("hourly", "daily", "sequence")

WEEKDAYS: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    """Generate a new unique identifier."""
    return uuid.uuid4().hex


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Args:
        value: A :class:`datetime`, an ISO-8601 string, or ``None``.

    Returns:
        A timezone-aware datetime, or ``None`` when *value* is empty or
        cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def validate_relationship_type(relationship_type: str) -> str:
    """Raise ``ValueError`` unless *relationship_type* is a known edge type."""
    if relationship_type not in RELATIONSHIP_TYPES:
        raise ValueError(
            f"Invalid relationship type {relationship_type!r}. "
            f"Must be one of: {', '.join(RELATIONSHIP_TYPES)}"
        )
    return relationship_type


# ---------------------------------------------------------------------------
# Access pattern
# ---------------------------------------------------------------------------


@dataclass
class FeedbackEntry:
    """One piece of explicit feedback recorded against a memory.

    Attributes:
        context: Free-text description of where the memory was used.
        helpful: Whether the caller found the memory helpful.
        timestamp: When the feedback was submitted (UTC).
    """

    context: str
    helpful: bool
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "context": self.context,
            "helpful": self.helpful,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AccessPattern:
    """Structured record of how a memory has been used.

    Every field is validated and defaulted by :meth:`from_dict`, so rows
    written by older versions or by hand never leak malformed values into
    the engines.

    Attributes:
        co_accessed_with: IDs of memories retrieved alongside this one.
        contexts: Access counts keyed by context label (for example
            ``"search_result"``).
        feedback_contexts: Feedback entries in submission order.
        access_timestamps: Every access time, oldest first.
        co_access_episodes: How many times this memory was retrieved
            together with at least one other memory.
    """

    co_accessed_with: list[str] = field(default_factory=list)
    contexts: dict[str, int] = field(default_factory=dict)
    feedback_contexts: list[FeedbackEntry] = field(default_factory=list)
    access_timestamps: list[datetime] = field(default_factory=list)
    co_access_episodes: int = 0

    def record_access(self, when: datetime, context: str | None = None) -> None:
        """Append an access timestamp and bump the context counter."""
        self.access_timestamps.append(when)
        if context:
            self.contexts[context] = self.contexts.get(context, 0) + 1

    def add_co_access(self, memory_ids: list[str]) -> None:
        """Record one retrieval alongside *memory_ids*."""
        others = [other for other in memory_ids if other]
        if not others:
            return
        self.co_access_episodes += 1
        for other in others:
            if other not in self.co_accessed_with:
                self.co_accessed_with.append(other)

    def to_dict(self) -> dict[str, Any]:
        return {
            "co_accessed_with": list(self.co_accessed_with),
            "contexts": dict(self.contexts),
            "feedback_contexts": [f.to_dict() for f in self.feedback_contexts],
            "access_timestamps": [t.isoformat() for t in self.access_timestamps],
            "co_access_episodes": self.co_access_episodes,
        }

    @classmethod
    def from_dict(cls, data: Any) -> AccessPattern:
        """Build an access pattern from untrusted stored data.

        Unknown shapes are coerced where possible and dropped otherwise.

        Args:
            data: A dictionary (or JSON string) as stored in the database.

        Returns:
            A valid :class:`AccessPattern`.
        """
        if isinstance(data, str):
            try:
                data = json.loads(data) if data else {}
            except ValueError:
                logger.debug("Discarding unparseable access pattern: %.60s", data)
                data = {}
        if not isinstance(data, dict):
            return cls()

        co_accessed: list[str] = []
        raw_co = data.get("co_accessed_with")
        if isinstance(raw_co, (list, tuple, set)):
            for item in raw_co:
                if isinstance(item, str) and item and item not in co_accessed:
                    co_accessed.append(item)

        contexts: dict[str, int] = {}
        raw_ctx = data.get("contexts")
        if isinstance(raw_ctx, dict):
            for key, value in raw_ctx.items():
                try:
                    count = int(value)
                except (TypeError, ValueError):
                    continue
                if count > 0:
                    contexts[str(key)] = count

        feedback: list[FeedbackEntry] = []
        raw_fb = data.get("feedback_contexts")
        if isinstance(raw_fb, list):
            for item in raw_fb:
                if not isinstance(item, dict):
                    continue
                ts = parse_timestamp(item.get("timestamp")) or _utcnow()
                feedback.append(
                    FeedbackEntry(
                        context=str(item.get("context", "")),
                        helpful=bool(item.get("helpful", False)),
                        timestamp=ts,
                    )
                )

        timestamps: list[datetime] = []
        raw_ts = data.get("access_timestamps")
        if isinstance(raw_ts, list):
            for item in raw_ts:
                ts = parse_timestamp(item)
                if ts is not None:
                    timestamps.append(ts)
        timestamps.sort()

        try:
            episodes = max(0, int(data.get("co_access_episodes", 0) or 0))
        except (TypeError, ValueError):
            episodes = 0

        return cls(
            co_accessed_with=co_accessed,
            contexts=contexts,
            feedback_contexts=feedback,
            access_timestamps=timestamps,
            co_access_episodes=episodes,
        )


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


@dataclass
class Memory:
    """A single unit of memory owned by one user.

    Attributes:
        text: The textual content of the memory.
        owner_id: The user (or agent) that owns this memory.
        id: Unique identifier (hex UUID). Auto-generated if not provided.
        tags: Free-form labels attached to the memory.
        metadata: Arbitrary key-value metadata.
        embedding: Vector embedding of the text, or ``None``.
        usage_count: Number of times the memory has been read.
        helpfulness_score: Learned usefulness in ``[0, 1]``.
        last_accessed: Time of the most recent read, ``None`` if never read.
        created_at: Timestamp when the memory was first stored (UTC).
        access_pattern: Structured usage record, see :class:`AccessPattern`.
    """

    text: str
    owner_id: str = DEFAULT_OWNER
    id: str = field(default_factory=_new_id)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None
    usage_count: int = 0
    helpfulness_score: float = 0.5
    last_accessed: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    access_pattern: AccessPattern = field(default_factory=AccessPattern)

    def __post_init__(self) -> None:
        """Validate field values after initialisation."""
        if not self.text:
            raise ValueError("Memory text must not be empty.")
        if not self.owner_id:
            raise ValueError("Memory owner_id must not be empty.")
        self.helpfulness_score = _clamp(self.helpfulness_score)
        self.usage_count = max(0, int(self.usage_count))
        seen: list[str] = []
        for tag in self.tags:
            tag = str(tag).strip()
            if tag and tag not in seen:
                seen.append(tag)
        self.tags = seen
        if not isinstance(self.access_pattern, AccessPattern):
            self.access_pattern = AccessPattern.from_dict(self.access_pattern)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def to_dict(self, include_embedding: bool = True) -> dict[str, Any]:
        """Serialise the memory to a JSON-safe dictionary.

        Args:
            include_embedding: When ``False`` the (large) embedding vector
                is left out.

        Returns:
            A dictionary with datetimes rendered as ISO-8601 strings.
        """
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["last_accessed"] = self.last_accessed.isoformat() if self.last_accessed else None
        data["access_pattern"] = self.access_pattern.to_dict()
        if not include_embedding:
            data.pop("embedding", None)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Memory:
        """Reconstruct a Memory from a dictionary produced by :meth:`to_dict`."""
        d = dict(data)
        created = parse_timestamp(d.get("created_at"))
        if created is not None:
            d["created_at"] = created
        else:
            d.pop("created_at", None)
        d["last_accessed"] = parse_timestamp(d.get("last_accessed"))
        d["access_pattern"] = AccessPattern.from_dict(d.get("access_pattern"))
        meta = d.get("metadata")
        if isinstance(meta, str):
            d["metadata"] = json.loads(meta)
        return cls(**d)

    def preview(self, length: int = 150) -> str:
        """Return the first *length* characters of the text."""
        return self.text[:length]

    def __repr__(self) -> str:  # pragma: no cover
        preview = self.text[:60] + ("..." if len(self.text) > 60 else "")
        return (
            f"Memory(id={self.id!r}, owner={self.owner_id!r}, text={preview!r}, "
            f"usage={self.usage_count}, helpfulness={self.helpfulness_score:.2f})"
        )


# ---------------------------------------------------------------------------
# Learning records
# ---------------------------------------------------------------------------


@dataclass
class Relationship:
    """A typed, weighted edge between two memories.

    Attributes:
        memory_id: Source memory.
        related_memory_id: Target memory.
        relationship_type: One of :data:`RELATIONSHIP_TYPES`.
        strength: Edge weight in ``[0, 1]``.
        explanation: Why the edge exists (for mined edges, the reason
            string of the suggestion).
    """

    memory_id: str
    related_memory_id: str
    relationship_type: str = "related_to"
    strength: float = 0.5
    explanation: str = ""
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        validate_relationship_type(self.relationship_type)
        if self.memory_id == self.related_memory_id:
            raise ValueError("A memory cannot be related to itself.")
        self.strength = _clamp(self.strength)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class TemporalPattern:
    """A recurring access pattern mined from usage history.

    Attributes:
        owner_id: Owner the pattern belongs to.
        pattern_type: ``"hourly"``, ``"daily"`` or ``"sequence"``.
        pattern_data: Type-specific payload: ``hour`` (0-23), ``weekday``
            (lower-case day name) or ``sequence`` (list of ids), plus
            ``memories`` listing the ids the pattern predicts.
        confidence: Strength of the pattern in ``[0, 1]``.
        occurrence_count: Number of mining passes that observed it.
        first_seen: When the pattern was first recorded.
        last_seen: When the pattern was last observed.
    """

    owner_id: str
    pattern_type: str
    pattern_data: dict[str, Any]
    confidence: float = 0.5
    occurrence_count: int = 1
    first_seen: datetime = field(default_factory=_utcnow)
    last_seen: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_new_id)

    def __post_init__(self) -> None:
        if self.pattern_type not in PATTERN_TYPES:
            raise ValueError(
                f"Invalid pattern type {self.pattern_type!r}. "
                f"Must be one of: {', '.join(PATTERN_TYPES)}"
            )
        self.confidence = _clamp(self.confidence)
        self.occurrence_count = max(1, int(self.occurrence_count))
        if self.last_seen < self.first_seen:
            self.last_seen = self.first_seen

    @property
    def memories(self) -> list[str]:
        raw = self.pattern_data.get("memories") or []
        return [m for m in raw if isinstance(m, str)]

    @property
    def signature(self) -> str:
        return pattern_signature(self.pattern_type, self.pattern_data)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["first_seen"] = self.first_seen.isoformat()
        data["last_seen"] = self.last_seen.isoformat()
        return data


def pattern_signature(pattern_type: str, pattern_data: dict[str, Any]) -> str:
    """Return the identity key of a temporal pattern.

    Two detections with the same owner, type and signature describe the
    same pattern and are merged on upsert.

    Raises:
        ValueError: If the payload lacks the field its type requires.
    """
    if pattern_type == "hourly":
        hour = pattern_data.get("hour")
        if not isinstance(hour, int) or not 0 <= hour <= 23:
            raise ValueError(f"Hourly pattern needs an integer hour in [0, 23], got {hour!r}")
        return f"hour:{hour}"
    if pattern_type == "daily":
        weekday = str(pattern_data.get("weekday", "")).lower()
        if weekday not in WEEKDAYS:
            raise ValueError(f"Daily pattern needs a weekday name, got {weekday!r}")
        return f"weekday:{weekday}"
    if pattern_type == "sequence":
        sequence = pattern_data.get("sequence")
        if not isinstance(sequence, list) or len(sequence) < 2:
            raise ValueError("Sequence pattern needs a list of at least two ids")
        return "sequence:" + ",".join(str(s) for s in sequence)
    raise ValueError(f"Invalid pattern type {pattern_type!r}")
