"""Explicit feedback handling for RecallMesh.

A single piece of feedback moves three things: the memory's helpfulness
score, the owner's learning parameters (counters, satisfaction average
and, every tenth feedback, the ranking weights) and the memory's recorded
feedback contexts.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .relevance import validate_unit_interval
from .store import MemoryNotFoundError

if TYPE_CHECKING:
    from .store import MemoryStore

logger = logging.getLogger(__name__)


class FeedbackAdapter:
    """Folds user feedback into scores and weights.

    Args:
        store: Backing :class:`MemoryStore`.
    """

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def submit(
        self,
        owner_id: str,
        memory_id: str,
        helpful: bool,
        user_satisfaction: float | None = None,
        context: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Record feedback on one memory.

        Args:
            owner_id: Owner submitting the feedback.
            memory_id: The memory being rated.
            helpful: Whether the memory helped.
            user_satisfaction: Optional satisfaction in ``[0, 1]``.  When
                given, the helpfulness score moves towards it instead of
                taking a fixed step.
            context: Optional description of where the memory was used.
            now: Feedback time.  Defaults to UTC now.

        Returns:
            ``{success, memory_id, new_helpfulness_score, feedback}``.

        Raises:
            ValueError: If *helpful* is not a bool or the satisfaction is
                out of range.
            MemoryNotFoundError: If the memory does not exist or belongs to
                another owner.
        """
        if not isinstance(helpful, bool):
            raise ValueError(f"helpful must be a boolean, got {helpful!r}")
        validate_unit_interval("user_satisfaction", user_satisfaction)
        if user_satisfaction is not None:
            user_satisfaction = float(user_satisfaction)

        memory = self._store.get(memory_id)
        if memory is None or memory.owner_id != owner_id:
            raise MemoryNotFoundError(memory_id)

        new_score = self._store.update_helpfulness(memory_id, helpful, user_satisfaction)
        weights = self._store.update_learning_params(owner_id, user_satisfaction, helpful)
        if context:
            self._store.append_feedback_context(
                memory_id, context, helpful, now=now or datetime.now(timezone.utc)
            )

        logger.debug(
            "Feedback on %s (helpful=%s): helpfulness %.3f -> %.3f",
            memory_id,
            helpful,
            memory.helpfulness_score,
            new_score,
        )
        return {
            "success": True,
            "memory_id": memory_id,
            "new_helpfulness_score": new_score,
            "feedback": {
                "helpful": helpful,
                "user_satisfaction": user_satisfaction,
                "context": context,
            },
            "weights": weights.to_dict(),
        }
