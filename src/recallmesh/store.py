"""SQLite storage backend for RecallMesh.

Provides durable, thread-safe persistence of memories and the learning
records around them (relationship edges, temporal patterns and per-owner
learning parameters).  Nearest-neighbour matching, atomic usage counters
and the analytics view are all served from here so the engines never talk
to SQLite directly.
"""

from __future__ import annotations

import contextlib
import json
import logging
import math
import os
import sqlite3
import struct
import threading
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from .analytics import LearningWeights, MemoryAnalytics, access_frequency, days_since, recency_score
from .memory import (
    AccessPattern,
    FeedbackEntry,
    Memory,
    Relationship,
    TemporalPattern,
    parse_timestamp,
    pattern_signature,
    validate_relationship_type,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default database location
# ---------------------------------------------------------------------------

_DEFAULT_DIR = os.path.join(os.path.expanduser("~"), ".recallmesh")
_DEFAULT_DB = os.path.join(_DEFAULT_DIR, "recallmesh.db")

HELPFUL_STEP = 0.1
UNHELPFUL_STEP = 0.05
SATISFACTION_ALPHA = 0.3
AVG_SATISFACTION_ALPHA = 0.1
WEIGHT_ADJUST_EVERY = 10
WEIGHT_STEP = 0.05
MAX_HELPFULNESS_WEIGHT = 0.8
MIN_USAGE_WEIGHT = 0.2
PATTERN_CONFIDENCE_STEP = 0.05


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StoreUnavailableError(RuntimeError):
    """Raised when the backing database cannot serve a request."""


class MemoryNotFoundError(KeyError):
    """Raised when a memory does not exist or belongs to another owner."""

    def __init__(self, memory_id: str) -> None:
        super().__init__(memory_id)
        self.memory_id = memory_id

    def __str__(self) -> str:
        return f"Memory {self.memory_id!r} not found"


# ---------------------------------------------------------------------------
# Vector helpers
# ---------------------------------------------------------------------------


def _pack_embedding(embedding: list[float] | None) -> bytes | None:
    """Pack a list of floats into a little-endian f32 blob."""
    if embedding is None or len(embedding) == 0:
        return None
    return struct.pack(f"<{len(embedding)}f", *embedding)


def _unpack_embedding(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    count = len(blob) // 4
    return list(struct.unpack(f"<{count}f", blob))


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Compute cosine similarity between two vectors in pure Python.

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        Cosine similarity in the range ``[-1, 1]``.  Returns ``0.0`` if
        either vector has zero magnitude.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError(f"Vectors must be the same length (got {len(a)} and {len(b)}).")

    dot = 0.0
    mag_a = 0.0
    mag_b = 0.0
    for ai, bi in zip(a, b):
        dot += ai * bi
        mag_a += ai * ai
        mag_b += bi * bi

    if mag_a == 0.0 or mag_b == 0.0:
        return 0.0

    return dot / (math.sqrt(mag_a) * math.sqrt(mag_b))


def _pair_key(a: str, b: str) -> str:
    """Order-independent identity of an edge's endpoints."""
    first, second = sorted((a, b))
    return f"{first}|{second}"


def _placeholders(count: int) -> str:
    return ",".join("?" * count)


class MemoryStore:
    """Thread-safe SQLite storage for memories and learning state.

    Each instance manages a single SQLite database file and uses
    per-thread connections to satisfy SQLite's threading constraints.
    Read-modify-write updates of the JSON access pattern are serialised
    by an instance-level lock.

    Any ``sqlite3.Error`` raised while serving a call surfaces as
    :class:`StoreUnavailableError`.

    Args:
        path: Path to the SQLite database file.  Parent directories are
            created automatically.  Defaults to
            ``~/.recallmesh/recallmesh.db``.
    """

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        raw_path = str(path) if path is not None else _DEFAULT_DB
        self._path = os.path.realpath(os.path.expanduser(raw_path))
        self._local = threading.local()
        self._write_lock = threading.RLock()

        parent = os.path.dirname(self._path)
        if parent:
            os.makedirs(parent, mode=0o700, exist_ok=True)
            with contextlib.suppress(OSError):
                os.chmod(parent, 0o700)

        from .migrations import ensure_schema

        try:
            conn = self._get_connection()
            self._schema_version = ensure_schema(conn)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open database at {self._path}: {exc}") from exc

    @property
    def path(self) -> str:
        return self._path

    @property
    def schema_version(self) -> int:
        return self._schema_version

    # ------------------------------------------------------------------
    # Connection management (per-thread)
    # ------------------------------------------------------------------

    def _get_connection(self) -> sqlite3.Connection:
        """Return (or create) a SQLite connection for the current thread."""
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self._path, timeout=30)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def _cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        """Yield a cursor, commit on success and roll back on failure."""
        try:
            conn = self._get_connection()
            cur = conn.cursor()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(str(exc)) from exc
        try:
            yield cur
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreUnavailableError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()

    # ------------------------------------------------------------------
    # Memory CRUD
    # ------------------------------------------------------------------

    def save(self, memory: Memory) -> None:
        """Insert or fully replace a memory."""
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT OR REPLACE INTO memories
                    (id, owner_id, text, tags_json, metadata_json, embedding_blob,
                     usage_count, helpfulness_score, last_accessed, created_at,
                     access_pattern_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.id,
                    memory.owner_id,
                    memory.text,
                    json.dumps(memory.tags, ensure_ascii=False),
                    json.dumps(memory.metadata, ensure_ascii=False),
                    _pack_embedding(memory.embedding),
                    memory.usage_count,
                    memory.helpfulness_score,
                    memory.last_accessed.isoformat() if memory.last_accessed else None,
                    memory.created_at.isoformat(),
                    json.dumps(memory.access_pattern.to_dict(), ensure_ascii=False),
                ),
            )

    def get(self, memory_id: str) -> Memory | None:
        """Retrieve a single memory by its ID, or ``None``."""
        with self._cursor() as cur:
            cur.execute("SELECT * FROM memories WHERE id = ?", (memory_id,))
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_memory(row)

    def get_many(self, memory_ids: Iterable[str]) -> dict[str, Memory]:
        """Fetch several memories at once.

        Returns:
            A mapping of id to :class:`Memory`.  Unknown ids are absent.
        """
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return {}
        with self._cursor() as cur:
            cur.execute(
                f"SELECT * FROM memories WHERE id IN ({_placeholders(len(ids))})",
                ids,
            )
            rows = cur.fetchall()
        return {row["id"]: self._row_to_memory(row) for row in rows}

    def delete(self, memory_id: str) -> bool:
        """Delete a memory.

        Relationship edges pointing at the memory are left in place and
        show up as broken relationships in maintenance reports.

        Returns:
            ``True`` if a row was deleted.
        """
        with self._cursor() as cur:
            cur.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            return cur.rowcount > 0

    def count(self, owner_id: str | None = None) -> int:
        with self._cursor() as cur:
            if owner_id is None:
                cur.execute("SELECT COUNT(*) FROM memories")
            else:
                cur.execute("SELECT COUNT(*) FROM memories WHERE owner_id = ?", (owner_id,))
            result = cur.fetchone()
        return result[0] if result else 0

    def list_owners(self) -> list[str]:
        """Return every owner id that has at least one memory."""
        with self._cursor() as cur:
            cur.execute("SELECT DISTINCT owner_id FROM memories ORDER BY owner_id")
            rows = cur.fetchall()
        return [row[0] for row in rows]

    def list_for_owner(self, owner_id: str, limit: int = 1000, offset: int = 0) -> list[Memory]:
        """List an owner's memories, most recently created first."""
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM memories
                WHERE owner_id = ?
                ORDER BY created_at DESC, id
                LIMIT ? OFFSET ?
                """,
                (owner_id, limit, offset),
            )
            rows = cur.fetchall()
        return [self._row_to_memory(r) for r in rows]

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def match_candidates(
        self,
        embedding: list[float],
        threshold: float,
        count: int,
        owner_id: str,
    ) -> list[tuple[Memory, float]]:
        """Nearest-neighbour search over an owner's embedded memories.

        Args:
            embedding: Query vector.
            threshold: Minimum cosine similarity to keep a candidate.
            count: Maximum number of candidates.
            owner_id: Only this owner's memories are considered.

        Returns:
            ``(memory, similarity)`` pairs in descending similarity, ties
            kept in creation order (newest first).
        """
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM memories
                WHERE owner_id = ? AND embedding_blob IS NOT NULL
                ORDER BY created_at DESC, id
                """,
                (owner_id,),
            )
            rows = cur.fetchall()

        scored: list[tuple[Memory, float]] = []
        for row in rows:
            mem = self._row_to_memory(row)
            if not mem.embedding or len(mem.embedding) != len(embedding):
                continue
            sim = cosine_similarity(embedding, mem.embedding)
            if sim >= threshold:
                scored.append((mem, sim))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:count]

    def search_by_text(
        self,
        owner_id: str,
        query: str,
        limit: int = 20,
        match_words: bool = False,
    ) -> list[Memory]:
        """Case-insensitive substring search, newest first.

        Args:
            owner_id: Only this owner's memories are searched.
            query: The search string.
            limit: Maximum number of results.
            match_words: When ``True`` the whitespace-separated words of
                *query* must appear in order, with anything in between.
        """

        def _escape(s: str) -> str:
            return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

        if match_words:
            pattern = "%" + "%".join(_escape(w) for w in query.split()) + "%"
        else:
            pattern = f"%{_escape(query)}%"
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM memories
                WHERE owner_id = ? AND text LIKE ? ESCAPE '\\'
                ORDER BY created_at DESC, id
                LIMIT ?
                """,
                (owner_id, pattern, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_memory(r) for r in rows]

    # ------------------------------------------------------------------
    # Usage and feedback
    # ------------------------------------------------------------------

    def increment_usage(
        self,
        memory_id: str,
        context: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Record one read of a memory.

        Increments ``usage_count``, refreshes ``last_accessed`` and appends
        to the access pattern (timestamp plus the per-context counter).

        Returns:
            ``False`` if the memory no longer exists.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._write_lock, self._cursor() as cur:
            cur.execute("SELECT access_pattern_json FROM memories WHERE id = ?", (memory_id,))
            row = cur.fetchone()
            if row is None:
                return False
            pattern = AccessPattern.from_dict(row[0])
            pattern.record_access(now, context)
            cur.execute(
                """
                UPDATE memories
                SET usage_count = usage_count + 1,
                    last_accessed = ?,
                    access_pattern_json = ?
                WHERE id = ?
                """,
                (now.isoformat(), json.dumps(pattern.to_dict()), memory_id),
            )
        return True

    def record_co_access(self, memory_ids: list[str]) -> None:
        """Mark every memory in *memory_ids* as co-accessed with the others."""
        ids = list(dict.fromkeys(memory_ids))
        if len(ids) < 2:
            return
        with self._write_lock, self._cursor() as cur:
            cur.execute(
                f"SELECT id, access_pattern_json FROM memories WHERE id IN ({_placeholders(len(ids))})",
                ids,
            )
            rows = cur.fetchall()
            for row in rows:
                pattern = AccessPattern.from_dict(row["access_pattern_json"])
                pattern.add_co_access([other for other in ids if other != row["id"]])
                cur.execute(
                    "UPDATE memories SET access_pattern_json = ? WHERE id = ?",
                    (json.dumps(pattern.to_dict()), row["id"]),
                )

    def update_helpfulness(
        self,
        memory_id: str,
        helpful: bool,
        satisfaction: float | None = None,
    ) -> float:
        """Adjust a memory's helpfulness score from one piece of feedback.

        Without *satisfaction* the score moves by ``+0.1`` (helpful) or
        ``-0.05`` (not helpful).  With *satisfaction* it becomes the
        moving average ``0.3 * satisfaction + 0.7 * current``.  The result
        is clamped to ``[0, 1]``.

        Returns:
            The new helpfulness score.

        Raises:
            MemoryNotFoundError: If the memory does not exist.
        """
        with self._write_lock, self._cursor() as cur:
            cur.execute("SELECT helpfulness_score FROM memories WHERE id = ?", (memory_id,))
            row = cur.fetchone()
            if row is None:
                raise MemoryNotFoundError(memory_id)
            current = float(row[0])
            if satisfaction is not None:
                new_score = SATISFACTION_ALPHA * satisfaction + (1 - SATISFACTION_ALPHA) * current
            elif helpful:
                new_score = current + HELPFUL_STEP
            else:
                new_score = current - UNHELPFUL_STEP
            new_score = max(0.0, min(1.0, new_score))
            cur.execute(
                "UPDATE memories SET helpfulness_score = ? WHERE id = ?",
                (new_score, memory_id),
            )
        return new_score

    def append_feedback_context(
        self,
        memory_id: str,
        context: str,
        helpful: bool,
        now: datetime | None = None,
    ) -> bool:
        """Append a feedback entry to the memory's access pattern."""
        entry = FeedbackEntry(context=context, helpful=helpful, timestamp=now or datetime.now(timezone.utc))
        with self._write_lock, self._cursor() as cur:
            cur.execute("SELECT access_pattern_json FROM memories WHERE id = ?", (memory_id,))
            row = cur.fetchone()
            if row is None:
                return False
            pattern = AccessPattern.from_dict(row[0])
            pattern.feedback_contexts.append(entry)
            cur.execute(
                "UPDATE memories SET access_pattern_json = ? WHERE id = ?",
                (json.dumps(pattern.to_dict()), memory_id),
            )
        return True

    # ------------------------------------------------------------------
    # Learning parameters
    # ------------------------------------------------------------------

    def get_learning_weights(self, owner_id: str) -> LearningWeights:
        """Return the owner's weights, or the defaults if none are stored."""
        row = self._learning_row(owner_id)
        if row is None:
            return LearningWeights()
        return LearningWeights(
            usage_weight=row["usage_weight"],
            recency_weight=row["recency_weight"],
            helpfulness_weight=row["helpfulness_weight"],
            relationship_weight=row["relationship_weight"],
        )

    def get_learning_params(self, owner_id: str) -> dict[str, Any]:
        """Return weights plus feedback counters for one owner."""
        row = self._learning_row(owner_id)
        if row is None:
            data: dict[str, Any] = LearningWeights().to_dict()
            data.update(
                total_feedback=0,
                positive_feedback_count=0,
                negative_feedback_count=0,
                avg_satisfaction=0.5,
            )
            return data
        return {key: row[key] for key in row.keys() if key not in ("owner_id", "updated_at")}

    def update_learning_params(
        self,
        owner_id: str,
        satisfaction: float | None,
        helpful: bool,
    ) -> LearningWeights:
        """Fold one piece of feedback into the owner's learning parameters.

        Counts the feedback, updates the satisfaction average and, on every
        tenth feedback, nudges the weights: a negative ratio above 0.3
        raises ``helpfulness_weight`` (capped at 0.8); a positive ratio
        above 0.7 lowers ``usage_weight`` (floored at 0.2).

        Returns:
            The weights after the update.
        """
        now = datetime.now(timezone.utc).isoformat()
        with self._write_lock, self._cursor() as cur:
            cur.execute(
                "INSERT OR IGNORE INTO learning_params (owner_id, updated_at) VALUES (?, ?)",
                (owner_id, now),
            )
            cur.execute("SELECT * FROM learning_params WHERE owner_id = ?", (owner_id,))
            row = cur.fetchone()

            total = row["total_feedback"] + 1
            positive = row["positive_feedback_count"] + (1 if helpful else 0)
            negative = row["negative_feedback_count"] + (0 if helpful else 1)
            avg_satisfaction = row["avg_satisfaction"]
            if satisfaction is not None:
                avg_satisfaction = (
                    AVG_SATISFACTION_ALPHA * satisfaction
                    + (1 - AVG_SATISFACTION_ALPHA) * avg_satisfaction
                )

            usage_weight = row["usage_weight"]
            helpfulness_weight = row["helpfulness_weight"]
            if total % WEIGHT_ADJUST_EVERY == 0:
                if negative / total > 0.3:
                    helpfulness_weight = min(MAX_HELPFULNESS_WEIGHT, helpfulness_weight + WEIGHT_STEP)
                if positive / total > 0.7:
                    usage_weight = max(MIN_USAGE_WEIGHT, usage_weight - WEIGHT_STEP)
                logger.debug(
                    "Adjusted weights for %s after %d feedbacks: usage=%.2f helpfulness=%.2f",
                    owner_id,
                    total,
                    usage_weight,
                    helpfulness_weight,
                )

            cur.execute(
                """
                UPDATE learning_params
                SET total_feedback = ?,
                    positive_feedback_count = ?,
                    negative_feedback_count = ?,
                    avg_satisfaction = ?,
                    usage_weight = ?,
                    helpfulness_weight = ?,
                    updated_at = ?
                WHERE owner_id = ?
                """,
                (
                    total,
                    positive,
                    negative,
                    avg_satisfaction,
                    usage_weight,
                    helpfulness_weight,
                    now,
                    owner_id,
                ),
            )
            weights = LearningWeights(
                usage_weight=usage_weight,
                recency_weight=row["recency_weight"],
                helpfulness_weight=helpfulness_weight,
                relationship_weight=row["relationship_weight"],
            )
        return weights

    def _learning_row(self, owner_id: str) -> sqlite3.Row | None:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM learning_params WHERE owner_id = ?", (owner_id,))
            return cur.fetchone()

    # ------------------------------------------------------------------
    # Temporal patterns
    # ------------------------------------------------------------------

    def upsert_temporal_pattern(
        self,
        owner_id: str,
        pattern_type: str,
        pattern_data: dict[str, Any],
        confidence: float,
        now: datetime | None = None,
    ) -> TemporalPattern:
        """Insert a pattern, or reinforce it if already known.

        Patterns are identified by ``(owner, type, signature)``.  A repeat
        detection bumps ``occurrence_count``, raises confidence to
        ``min(1, max(old + 0.05, confidence))``, refreshes ``last_seen``
        and replaces the stored payload.

        Raises:
            ValueError: If the type or payload is invalid.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        signature = pattern_signature(pattern_type, pattern_data)
        confidence = max(0.0, min(1.0, float(confidence)))
        payload = json.dumps(pattern_data, ensure_ascii=False, sort_keys=True)

        with self._write_lock, self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM temporal_patterns
                WHERE owner_id = ? AND pattern_type = ? AND signature = ?
                """,
                (owner_id, pattern_type, signature),
            )
            row = cur.fetchone()
            if row is None:
                pattern = TemporalPattern(
                    owner_id=owner_id,
                    pattern_type=pattern_type,
                    pattern_data=pattern_data,
                    confidence=confidence,
                    first_seen=now,
                    last_seen=now,
                )
                cur.execute(
                    """
                    INSERT INTO temporal_patterns
                        (id, owner_id, pattern_type, signature, pattern_data_json,
                         confidence, occurrence_count, first_seen, last_seen)
                    VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
                    """,
                    (
                        pattern.id,
                        owner_id,
                        pattern_type,
                        signature,
                        payload,
                        pattern.confidence,
                        now.isoformat(),
                        now.isoformat(),
                    ),
                )
                return pattern

            first_seen = parse_timestamp(row["first_seen"]) or now
            last_seen = max(now, first_seen)
            new_confidence = min(1.0, max(row["confidence"] + PATTERN_CONFIDENCE_STEP, confidence))
            occurrences = row["occurrence_count"] + 1
            cur.execute(
                """
                UPDATE temporal_patterns
                SET pattern_data_json = ?, confidence = ?, occurrence_count = ?, last_seen = ?
                WHERE id = ?
                """,
                (payload, new_confidence, occurrences, last_seen.isoformat(), row["id"]),
            )
        return TemporalPattern(
            id=row["id"],
            owner_id=owner_id,
            pattern_type=pattern_type,
            pattern_data=pattern_data,
            confidence=new_confidence,
            occurrence_count=occurrences,
            first_seen=first_seen,
            last_seen=last_seen,
        )

    def get_temporal_patterns(
        self,
        owner_id: str,
        min_confidence: float = 0.0,
        pattern_type: str | None = None,
    ) -> list[TemporalPattern]:
        """Return an owner's patterns, highest confidence first."""
        sql = "SELECT * FROM temporal_patterns WHERE owner_id = ? AND confidence >= ?"
        params: list[Any] = [owner_id, min_confidence]
        if pattern_type is not None:
            sql += " AND pattern_type = ?"
            params.append(pattern_type)
        sql += " ORDER BY confidence DESC, last_seen DESC"
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()

        patterns: list[TemporalPattern] = []
        for row in rows:
            try:
                data = json.loads(row["pattern_data_json"])
            except ValueError:
                logger.warning("Skipping temporal pattern %s with unreadable payload", row["id"])
                continue
            patterns.append(
                TemporalPattern(
                    id=row["id"],
                    owner_id=row["owner_id"],
                    pattern_type=row["pattern_type"],
                    pattern_data=data if isinstance(data, dict) else {},
                    confidence=row["confidence"],
                    occurrence_count=row["occurrence_count"],
                    first_seen=parse_timestamp(row["first_seen"]) or datetime.now(timezone.utc),
                    last_seen=parse_timestamp(row["last_seen"]) or datetime.now(timezone.utc),
                )
            )
        return patterns

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def add_relationship(
        self,
        memory_id: str,
        related_memory_id: str,
        relationship_type: str = "related_to",
        strength: float = 0.5,
        explanation: str = "",
    ) -> Relationship | None:
        """Create an edge unless the unordered pair is already linked.

        Returns:
            The new :class:`Relationship`, or ``None`` when an edge between
            the two memories already exists.
        """
        validate_relationship_type(relationship_type)
        rel = Relationship(
            memory_id=memory_id,
            related_memory_id=related_memory_id,
            relationship_type=relationship_type,
            strength=strength,
            explanation=explanation,
        )
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT OR IGNORE INTO memory_relationships
                    (id, memory_id, related_memory_id, pair_key,
                     relationship_type, strength, explanation, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rel.id,
                    rel.memory_id,
                    rel.related_memory_id,
                    _pair_key(memory_id, related_memory_id),
                    rel.relationship_type,
                    rel.strength,
                    rel.explanation,
                    rel.created_at.isoformat(),
                ),
            )
            created = cur.rowcount > 0
        return rel if created else None

    def has_relationship(self, memory_id: str, related_memory_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "SELECT 1 FROM memory_relationships WHERE pair_key = ?",
                (_pair_key(memory_id, related_memory_id),),
            )
            return cur.fetchone() is not None

    def get_relationships(
        self,
        memory_ids: Iterable[str],
        min_strength: float = 0.0,
        relationship_type: str | None = None,
        both_directions: bool = False,
    ) -> list[Relationship]:
        """Return edges leaving (or, optionally, touching) *memory_ids*.

        Results are ordered strongest first.
        """
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return []
        marks = _placeholders(len(ids))
        if both_directions:
            where = f"(memory_id IN ({marks}) OR related_memory_id IN ({marks}))"
            params: list[Any] = ids + ids
        else:
            where = f"memory_id IN ({marks})"
            params = list(ids)
        sql = f"SELECT * FROM memory_relationships WHERE {where} AND strength >= ?"
        params.append(min_strength)
        if relationship_type is not None:
            sql += " AND relationship_type = ?"
            params.append(relationship_type)
        sql += " ORDER BY strength DESC, created_at"
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [self._row_to_relationship(r) for r in rows]

    def list_relationships(self, owner_id: str) -> list[Relationship]:
        """Return every edge whose source belongs to *owner_id*."""
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT r.* FROM memory_relationships r
                JOIN memories m ON m.id = r.memory_id
                WHERE m.owner_id = ?
                ORDER BY r.strength DESC, r.created_at
                """,
                (owner_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_relationship(r) for r in rows]

    def count_broken_relationships(self, memory_ids: Iterable[str]) -> int:
        """Count edges touching *memory_ids* whose other end is gone."""
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return 0
        marks = _placeholders(len(ids))
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT COUNT(*) FROM memory_relationships r
                WHERE (r.memory_id IN ({marks}) OR r.related_memory_id IN ({marks}))
                  AND (NOT EXISTS (SELECT 1 FROM memories m WHERE m.id = r.memory_id)
                       OR NOT EXISTS (SELECT 1 FROM memories m WHERE m.id = r.related_memory_id))
                """,
                ids + ids,
            )
            result = cur.fetchone()
        return result[0] if result else 0

    # ------------------------------------------------------------------
    # Analytics view
    # ------------------------------------------------------------------

    def analytics(
        self,
        memory_ids: Iterable[str],
        now: datetime | None = None,
    ) -> dict[str, MemoryAnalytics]:
        """Compute the analytics view for several memories.

        Returns:
            A mapping of id to :class:`MemoryAnalytics`; ids that no longer
            exist are absent.
        """
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return {}
        if now is None:
            now = datetime.now(timezone.utc)
        marks = _placeholders(len(ids))
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT m.id, m.usage_count, m.helpfulness_score, m.last_accessed,
                       (SELECT COUNT(*) FROM memory_relationships r
                        WHERE r.memory_id = m.id) AS relationship_count
                FROM memories m
                WHERE m.id IN ({marks})
                """,
                ids,
            )
            rows = cur.fetchall()

        result: dict[str, MemoryAnalytics] = {}
        for row in rows:
            last = parse_timestamp(row["last_accessed"])
            result[row["id"]] = MemoryAnalytics(
                memory_id=row["id"],
                usage_count=row["usage_count"],
                helpfulness_score=row["helpfulness_score"],
                recency_score=recency_score(last, now),
                days_since_access=days_since(last, now),
                access_frequency=access_frequency(row["usage_count"]),
                relationship_count=row["relationship_count"],
            )
        return result

    def close(self) -> None:
        """Close the current thread's database connection, if open."""
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_memory(row: sqlite3.Row) -> Memory:
        """Convert a database row into a :class:`Memory` instance."""
        try:
            tags = json.loads(row["tags_json"])
        except ValueError:
            tags = []
        return Memory(
            id=row["id"],
            owner_id=row["owner_id"],
            text=row["text"],
            tags=tags if isinstance(tags, list) else [],
            metadata=json.loads(row["metadata_json"]),
            embedding=_unpack_embedding(row["embedding_blob"]),
            usage_count=row["usage_count"],
            helpfulness_score=row["helpfulness_score"],
            last_accessed=parse_timestamp(row["last_accessed"]),
            created_at=parse_timestamp(row["created_at"]) or datetime.now(timezone.utc),
            access_pattern=AccessPattern.from_dict(row["access_pattern_json"]),
        )

    @staticmethod
    def _row_to_relationship(row: sqlite3.Row) -> Relationship:
        return Relationship(
            id=row["id"],
            memory_id=row["memory_id"],
            related_memory_id=row["related_memory_id"],
            relationship_type=row["relationship_type"],
            strength=row["strength"],
            explanation=row["explanation"],
            created_at=parse_timestamp(row["created_at"]) or datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Context manager support
    # ------------------------------------------------------------------

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def __repr__(self) -> str:  # pragma: no cover
        return f"MemoryStore(path={self._path!r})"
