"""Core RecallMesh class -- the main entry point for the library.

Ties together storage, embeddings, ranking, prediction, suggestion,
feedback and pattern mining behind one object.  Every operation works on
behalf of one owner: the instance's default owner unless ``owner_id`` is
passed explicitly.
"""

from __future__ import annotations

import builtins
import logging
import os
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from .config import LearningConfig
from .embeddings import EmbeddingProvider, create_embedding_provider, safe_embed
from .feedback import FeedbackAdapter
from .graph import DEFAULT_MIN_STRENGTH, RelationshipGraph
from .memory import DEFAULT_OWNER, Memory, Relationship, validate_relationship_type
from .miner import LearningReport, PatternMiner, RelationshipSuggestion
from .prediction import Prediction, PredictionEngine
from .relevance import RankingEngine, SearchResult, validate_limit, validate_unit_interval
from .scheduler import LearningScheduler
from .store import MemoryNotFoundError, MemoryStore
from .suggestion import SuggestionEngine
from .usage import UsageTracker

logger = logging.getLogger(__name__)

DIRECT_ACCESS_CONTEXT = "direct_access"
ACTIVE_PATTERN_DAYS = 30


class RecallMesh:
    """A memory store that learns which memories matter.

    Usage::

        from recallmesh import RecallMesh

        mesh = RecallMesh(path="memories.db", embedding="local")
        mid = mesh.remember("Pricing: the Pro plan costs $49/month", tags=["pricing"])
        result = mesh.search("pricing", weight_by_usage=True, learning_mode=True)
        mesh.feedback(mid, helpful=True, user_satisfaction=0.9)

    Args:
        path: Path to the SQLite database file.  Defaults to
            ``config.path`` or ``~/.recallmesh/recallmesh.db``.
        embedding: Embedding provider to use.  Accepts a string name
            (``"local"``, ``"ollama"``, ``"openai"``, ``"none"``) or an
            :class:`EmbeddingProvider` instance.  Defaults to
            ``config.embedding``.
        owner_id: Owner used when a method is called without one.
        config: Learning settings.  Defaults to :class:`LearningConfig`
            defaults (not the environment; use
            :meth:`LearningConfig.from_env` for that).
        clock: Callable returning the current time, used by prediction and
            mining.  Defaults to UTC now.
        **kwargs: Extra options forwarded to the embedding provider
            constructor.  Common keys:

            * ``ollama_model`` -- Ollama model name.
            * ``ollama_base_url`` -- Ollama server URL.
            * ``openai_api_key`` -- OpenAI API key.
            * ``openai_model`` -- OpenAI embedding model.
            * ``openai_base_url`` -- OpenAI-compatible API URL.
            * ``local_model`` -- sentence-transformers model name.
            * ``local_device`` -- PyTorch device for local embeddings.
    """

    def __init__(
        self,
        path: str | os.PathLike[str] | None = None,
        embedding: str | EmbeddingProvider | None = None,
        owner_id: str = DEFAULT_OWNER,
        config: LearningConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        **kwargs: Any,
    ) -> None:
        if not owner_id:
            raise ValueError("owner_id must not be empty")
        self.config = config or LearningConfig()
        self.owner_id = owner_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # -- Storage -----------------------------------------------------
        self._store = MemoryStore(path=path if path is not None else self.config.path)

        # -- Embedding provider ------------------------------------------
        if isinstance(embedding, EmbeddingProvider):
            self._embedder = embedding
        else:
            self._embedder = self._build_embedder(embedding or self.config.embedding, **kwargs)

        # -- Engines -----------------------------------------------------
        self._usage = UsageTracker(self._store, maxsize=self.config.usage_queue_size)
        self._ranking = RankingEngine(self._store, self._embedder, usage=self._usage)
        self._prediction = PredictionEngine(self._store, self._embedder, clock=self._clock)
        self._suggestion = SuggestionEngine(self._store, self._embedder)
        self._feedback = FeedbackAdapter(self._store)
        self._graph = RelationshipGraph(self._store)
        self._miner = PatternMiner(
            self._store,
            co_access_threshold=self.config.co_access_threshold,
            duplicate_window=self.config.duplicate_window,
            duplicate_threshold=self.config.duplicate_threshold,
            auto_apply_threshold=self.config.auto_apply_threshold,
            stale_days=self.config.stale_days,
            clock=self._clock,
        )
        self._scheduler: LearningScheduler | None = None

        logger.info("RecallMesh initialised  store=%r  embedder=%r", self._store, self._embedder)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> str:
        return self._store.path

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def miner(self) -> PatternMiner:
        return self._miner

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def remember(
        self,
        text: str,
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
        owner_id: str | None = None,
    ) -> str:
        """Store a new memory.

        The text is embedded when the provider allows it; otherwise the
        memory is stored without a vector and is found by text search.

        Returns:
            The new memory's id.

        Raises:
            ValueError: If *text* is empty.
        """
        if not text or not text.strip():
            raise ValueError("text must not be empty")
        memory = Memory(
            text=text,
            owner_id=self._owner(owner_id),
            tags=list(tags or []),
            metadata=dict(metadata or {}),
            embedding=safe_embed(self._embedder, text),
        )
        self._store.save(memory)
        logger.debug("Stored memory %s for %s", memory.id, memory.owner_id)
        return memory.id

    def get(self, memory_id: str, owner_id: str | None = None) -> Memory | None:
        """Retrieve one memory and record the read.

        Returns:
            The :class:`Memory`, or ``None`` if it does not exist or
            belongs to another owner.
        """
        memory = self._store.get(memory_id)
        if memory is None or memory.owner_id != self._owner(owner_id):
            return None
        self._usage.record_usage(memory.id, DIRECT_ACCESS_CONTEXT)
        return memory

    def forget(self, memory_id: str, owner_id: str | None = None) -> bool:
        """Delete a memory.

        Returns:
            ``True`` if the memory existed, belonged to the owner and was
            deleted.
        """
        memory = self._store.get(memory_id)
        if memory is None or memory.owner_id != self._owner(owner_id):
            return False
        deleted = self._store.delete(memory_id)
        if deleted:
            logger.debug("Forgot memory %s", memory_id)
        return deleted

    def count(self, owner_id: str | None = None) -> int:
        return self._store.count(self._owner(owner_id))

    def list(self, limit: int = 10, offset: int = 0, owner_id: str | None = None) -> list[Memory]:
        """List memories, most recently created first."""
        validate_limit(limit)
        return self._store.list_for_owner(self._owner(owner_id), limit=limit, offset=max(0, offset))

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        limit: int = 10,
        weight_by_usage: bool = False,
        decay_old_memories: bool = False,
        learning_mode: bool = False,
        min_helpfulness_score: float | None = None,
        owner_id: str | None = None,
    ) -> SearchResult:
        """Search memories and rank them with the owner's learned weights.

        See :meth:`RankingEngine.search` for the scoring rules.
        """
        return self._ranking.search(
            self._owner(owner_id),
            query,
            limit=limit,
            weight_by_usage=weight_by_usage,
            decay_old_memories=decay_old_memories,
            learning_mode=learning_mode,
            min_helpfulness_score=min_helpfulness_score,
        )

    def predict(
        self,
        recent_memory_ids: Iterable[str] = (),
        context: str | None = None,
        limit: int = 10,
        owner_id: str | None = None,
    ) -> builtins.list[Prediction]:
        """Predict which memories the owner will need next."""
        return self._prediction.predict(
            self._owner(owner_id),
            recent_memory_ids=list(recent_memory_ids),
            context=context,
            limit=limit,
        )

    def suggest(
        self,
        context: str,
        limit: int = 5,
        min_confidence: float = 0.6,
        include_reasoning: bool = True,
        owner_id: str | None = None,
    ) -> dict[str, Any]:
        """Suggest memories relevant to what the agent is doing."""
        return self._suggestion.suggest(
            self._owner(owner_id),
            context,
            limit=limit,
            min_confidence=min_confidence,
            include_reasoning=include_reasoning,
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def feedback(
        self,
        memory_id: str,
        helpful: bool,
        user_satisfaction: float | None = None,
        context: str | None = None,
        owner_id: str | None = None,
    ) -> dict[str, Any]:
        """Tell RecallMesh whether a memory helped.

        Raises:
            ValueError: On a non-bool *helpful* or bad satisfaction.
            MemoryNotFoundError: If the memory is unknown to the owner.
        """
        return self._feedback.submit(
            self._owner(owner_id),
            memory_id,
            helpful,
            user_satisfaction=user_satisfaction,
            context=context,
        )

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def learning_analyze(self, auto_apply: bool = False, owner_id: str | None = None) -> LearningReport:
        """Mine the owner's history for patterns, edges and clean-up work."""
        return self._miner.analyze(self._owner(owner_id), auto_apply=auto_apply)

    def apply_suggestions(
        self,
        suggestions: Iterable[RelationshipSuggestion | dict[str, Any]],
        min_confidence: float = 0.75,
        owner_id: str | None = None,
    ) -> int:
        """Persist relationship suggestions as edges.

        Suggestions may be :class:`RelationshipSuggestion` objects or the
        dictionaries produced by :meth:`RelationshipSuggestion.to_dict`.
        Both ends of every suggestion must belong to the owner.

        Returns:
            The number of edges created.

        Raises:
            ValueError: On a malformed suggestion or bad threshold.
            MemoryNotFoundError: If a referenced memory is unknown to the
                owner.
        """
        validate_unit_interval("min_confidence", min_confidence)
        parsed = [
            s if isinstance(s, RelationshipSuggestion) else RelationshipSuggestion.from_dict(s)
            for s in suggestions
        ]
        owner = self._owner(owner_id)
        ids = {mid for s in parsed for mid in (s.memory_id, s.related_memory_id)}
        known = self._store.get_many(ids)
        for memory_id in sorted(ids):
            mem = known.get(memory_id)
            if mem is None or mem.owner_id != owner:
                raise MemoryNotFoundError(memory_id)
        return self._miner.apply_suggestions(parsed, min_confidence=min_confidence)

    def maintenance_suggestions(self, owner_id: str | None = None) -> dict[str, Any]:
        """List duplicates, outdated memories and archive candidates."""
        return self._miner.maintenance_suggestions(self._owner(owner_id))

    def usage_insights(self, owner_id: str | None = None) -> dict[str, Any]:
        """Summarise tag usefulness, co-access and access timing."""
        return self._miner.usage_insights(self._owner(owner_id))

    def learning_status(self, owner_id: str | None = None) -> dict[str, Any]:
        """Report the scheduler state and the owner's learning progress."""
        owner = self._owner(owner_id)
        memories = self._store.list_for_owner(owner, limit=10_000)
        total = len(memories)
        cutoff = self._clock() - timedelta(days=ACTIVE_PATTERN_DAYS)
        patterns = self._store.get_temporal_patterns(owner)
        scheduler = (
            self._scheduler.status()
            if self._scheduler is not None
            else {"running": False, "is_analyzing": False, "last_run": None}
        )
        return {
            "scheduler": scheduler,
            "current_stats": {
                "avg_helpfulness": (
                    round(sum(m.helpfulness_score for m in memories) / total, 2) if total else 0.5
                ),
                "total_usage": sum(m.usage_count for m in memories),
                "active_memories": sum(1 for m in memories if m.usage_count > 0),
                "total_memories": total,
            },
            "learning_params": self._store.get_learning_params(owner),
            "active_patterns": sum(1 for p in patterns if p.last_seen >= cutoff),
            "pending_usage_jobs": self._usage.pending,
        }

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def relate(
        self,
        memory_id: str,
        related_memory_id: str,
        relationship_type: str = "related_to",
        strength: float = 0.5,
        explanation: str = "",
        owner_id: str | None = None,
    ) -> Relationship | None:
        """Create an edge between two of the owner's memories.

        Returns:
            The new edge, or ``None`` if the pair is already linked.
        """
        validate_relationship_type(relationship_type)
        validate_unit_interval("strength", strength)
        owner = self._owner(owner_id)
        known = self._store.get_many([memory_id, related_memory_id])
        for mid in (memory_id, related_memory_id):
            if mid not in known or known[mid].owner_id != owner:
                raise MemoryNotFoundError(mid)
        return self._store.add_relationship(
            memory_id,
            related_memory_id,
            relationship_type=relationship_type,
            strength=strength,
            explanation=explanation,
        )

    def relationships(
        self,
        memory_id: str,
        relationship_type: str | None = None,
        min_strength: float = 0.0,
        limit: int = 50,
        owner_id: str | None = None,
    ) -> builtins.list[Relationship]:
        """List the edges leaving one memory, strongest first."""
        if relationship_type is not None:
            validate_relationship_type(relationship_type)
        validate_unit_interval("min_strength", min_strength)
        validate_limit(limit)
        memory = self._store.get(memory_id)
        if memory is None or memory.owner_id != self._owner(owner_id):
            raise MemoryNotFoundError(memory_id)
        edges = self._store.get_relationships(
            [memory_id], min_strength=min_strength, relationship_type=relationship_type
        )
        return edges[:limit]

    def relationship_graph(
        self,
        memory_id: str,
        depth: int = 1,
        min_strength: float = DEFAULT_MIN_STRENGTH,
        owner_id: str | None = None,
    ) -> dict[str, Any]:
        """Breadth-first graph of the edges around a memory."""
        return self._graph.build(
            memory_id, depth=depth, min_strength=min_strength, owner_id=self._owner(owner_id)
        )

    def relationship_types(self, owner_id: str | None = None) -> dict[str, Any]:
        """Edge counts and average strength per relationship type."""
        return self._graph.type_stats(self._owner(owner_id))

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def start_scheduler(
        self,
        interval_hours: float | None = None,
        auto_apply: bool | None = None,
        run_on_start: bool = True,
    ) -> LearningScheduler:
        """Start periodic learning cycles over every owner in the store."""
        if self._scheduler is not None and self._scheduler.is_running:
            logger.warning("Learning scheduler already running")
            return self._scheduler
        self._scheduler = LearningScheduler(
            self._miner,
            interval_hours=interval_hours or self.config.scheduler_interval_hours,
            auto_apply=self.config.auto_apply if auto_apply is None else auto_apply,
            run_on_start=run_on_start,
        )
        self._scheduler.start()
        return self._scheduler

    def stop_scheduler(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Wait until queued usage tracking has reached the store."""
        self._usage.flush()

    def close(self) -> None:
        """Stop background work and close the database connection."""
        self.stop_scheduler()
        self._usage.close()
        self._store.close()

    def __enter__(self) -> RecallMesh:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _owner(self, owner_id: str | None) -> str:
        return owner_id or self.owner_id

    @staticmethod
    def _build_embedder(name: str, **kwargs: Any) -> EmbeddingProvider:
        """Translate user-friendly kwargs to provider-specific ones."""
        provider_kwargs: dict[str, Any] = {}

        name_lower = name.lower().strip()

        if name_lower == "ollama":
            if "ollama_model" in kwargs:
                provider_kwargs["model"] = kwargs["ollama_model"]
            if "ollama_base_url" in kwargs:
                provider_kwargs["base_url"] = kwargs["ollama_base_url"]

        elif name_lower == "openai":
            if "openai_api_key" in kwargs:
                provider_kwargs["api_key"] = kwargs["openai_api_key"]
            if "openai_model" in kwargs:
                provider_kwargs["model"] = kwargs["openai_model"]
            if "openai_base_url" in kwargs:
                provider_kwargs["base_url"] = kwargs["openai_base_url"]

        elif name_lower in ("local", "sentence-transformers"):
            if "local_model" in kwargs:
                provider_kwargs["model_name"] = kwargs["local_model"]
            if "local_device" in kwargs:
                provider_kwargs["device"] = kwargs["local_device"]

        return create_embedding_provider(name, **provider_kwargs)

    def __repr__(self) -> str:  # pragma: no cover
        return f"RecallMesh(store={self._store!r}, embedder={self._embedder!r}, owner={self.owner_id!r})"
