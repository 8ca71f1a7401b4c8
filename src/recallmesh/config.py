"""Runtime configuration for RecallMesh.

Every knob has a default that matches the library constructors, and each
can be overridden from the environment:

    RECALLMESH_PATH                  Path to the SQLite database file.
    RECALLMESH_EMBEDDING             Embedding provider name (default: "none").
    RECALLMESH_SCHEDULER_HOURS       Hours between learning cycles (default: 1).
    RECALLMESH_AUTO_APPLY            Apply strong relationship suggestions
                                     automatically ("1", "true", "yes").
    RECALLMESH_AUTO_APPLY_THRESHOLD  Minimum confidence to auto-apply (0.75).
    RECALLMESH_DUPLICATE_WINDOW      Recent memories scanned for duplicates (500).
    RECALLMESH_DUPLICATE_THRESHOLD   Similarity that marks a duplicate (0.85).
    RECALLMESH_CO_ACCESS_THRESHOLD   Co-accesses before an edge is suggested (5).
    RECALLMESH_STALE_DAYS            Idle days before a memory is stale (180).
    RECALLMESH_USAGE_QUEUE_SIZE      Capacity of the usage queue (1000).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


@dataclass
class LearningConfig:
    """Settings for the learning layer.

    Attributes:
        path: SQLite database path, or ``None`` for the default location.
        embedding: Embedding provider name.
        scheduler_interval_hours: Hours between scheduled learning cycles.
        auto_apply: Whether scheduled cycles persist strong suggestions.
        auto_apply_threshold: Confidence needed to auto-apply a suggestion.
        duplicate_window: Recent memories compared for duplicates.
        duplicate_threshold: Similarity at which two memories are duplicates.
        co_access_threshold: Co-access count that qualifies a pair.
        stale_days: Days without access before a memory counts as stale.
        usage_queue_size: Capacity of the best-effort usage queue.
    """

    path: str | None = None
    embedding: str = "none"
    scheduler_interval_hours: float = 1.0
    auto_apply: bool = False
    auto_apply_threshold: float = 0.75
    duplicate_window: int = 500
    duplicate_threshold: float = 0.85
    co_access_threshold: int = 5
    stale_days: int = 180
    usage_queue_size: int = 1000

    def __post_init__(self) -> None:
        if self.scheduler_interval_hours <= 0:
            raise ValueError("scheduler_interval_hours must be positive")
        if not 0.0 <= self.auto_apply_threshold <= 1.0:
            raise ValueError("auto_apply_threshold must be between 0 and 1")
        if not 0.0 < self.duplicate_threshold <= 1.0:
            raise ValueError("duplicate_threshold must be in (0, 1]")
        if self.duplicate_window < 2:
            raise ValueError("duplicate_window must be at least 2")
        if self.co_access_threshold < 1:
            raise ValueError("co_access_threshold must be at least 1")
        if self.stale_days < 1:
            raise ValueError("stale_days must be at least 1")
        if self.usage_queue_size < 1:
            raise ValueError("usage_queue_size must be at least 1")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LearningConfig:
        """Build a config from ``RECALLMESH_*`` environment variables.

        Args:
            environ: Mapping to read instead of :data:`os.environ`.

        Raises:
            ValueError: If a variable cannot be parsed or is out of range.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            path=env.get("RECALLMESH_PATH") or None,
            embedding=env.get("RECALLMESH_EMBEDDING", defaults.embedding),
            scheduler_interval_hours=_number(
                env, "RECALLMESH_SCHEDULER_HOURS", float, defaults.scheduler_interval_hours
            ),
            auto_apply=_flag(env, "RECALLMESH_AUTO_APPLY", defaults.auto_apply),
            auto_apply_threshold=_number(
                env, "RECALLMESH_AUTO_APPLY_THRESHOLD", float, defaults.auto_apply_threshold
            ),
            duplicate_window=_number(env, "RECALLMESH_DUPLICATE_WINDOW", int, defaults.duplicate_window),
            duplicate_threshold=_number(
                env, "RECALLMESH_DUPLICATE_THRESHOLD", float, defaults.duplicate_threshold
            ),
            co_access_threshold=_number(
                env, "RECALLMESH_CO_ACCESS_THRESHOLD", int, defaults.co_access_threshold
            ),
            stale_days=_number(env, "RECALLMESH_STALE_DAYS", int, defaults.stale_days),
            usage_queue_size=_number(env, "RECALLMESH_USAGE_QUEUE_SIZE", int, defaults.usage_queue_size),
        )


def _number(env: Mapping[str, str], name: str, kind: type, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be {'an integer' if kind is int else 'a number'}, got {raw!r}") from exc


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")
