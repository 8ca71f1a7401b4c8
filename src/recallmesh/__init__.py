"""RecallMesh -- a memory store for AI agents that learns which memories matter.

Search results are ranked by semantic similarity blended with what the
store has learned from use: how often a memory is read, how recently, and
how helpful callers said it was.  Explicit feedback tunes each owner's
ranking weights, and a background pattern miner turns access history into
temporal patterns, relationship edges and clean-up suggestions.

Quick start::

    from recallmesh import RecallMesh

    mesh = RecallMesh(path="memories.db")
    mid = mesh.remember("Deploy to production using Docker", tags=["deploy"])
    result = mesh.search("deploy", weight_by_usage=True, learning_mode=True)
    mesh.feedback(mid, helpful=True)
    predictions = mesh.predict(recent_memory_ids=[mid])

Memories are stored locally in SQLite.  No external server is needed.
"""

from __future__ import annotations

__version__ = "1.0.0"

from .analytics import LearningWeights, MemoryAnalytics
from .compaction import DuplicateGroup, find_duplicates, text_similarity
from .config import LearningConfig
from .core import RecallMesh
from .embeddings import (
    EmbeddingProvider,
    LocalEmbedding,
    NoopEmbedding,
    OllamaEmbedding,
    OpenAIEmbedding,
    create_embedding_provider,
)
from .feedback import FeedbackAdapter
from .graph import RelationshipGraph
from .memory import (
    RELATIONSHIP_TYPES,
    AccessPattern,
    FeedbackEntry,
    Memory,
    Relationship,
    TemporalPattern,
)
from .miner import LearningReport, PatternMiner, RelationshipSuggestion
from .prediction import Prediction, PredictionEngine
from .relevance import RankedMemory, RankingEngine, SearchResult
from .scheduler import LearningScheduler
from .store import MemoryNotFoundError, MemoryStore, StoreUnavailableError
from .suggestion import Suggestion, SuggestionEngine
from .usage import UsageTracker

__all__ = [
    # Facade
    "RecallMesh",
    "LearningConfig",
    # Data model
    "Memory",
    "AccessPattern",
    "FeedbackEntry",
    "Relationship",
    "TemporalPattern",
    "RELATIONSHIP_TYPES",
    "LearningWeights",
    "MemoryAnalytics",
    # Storage
    "MemoryStore",
    "MemoryNotFoundError",
    "StoreUnavailableError",
    "UsageTracker",
    # Embeddings
    "EmbeddingProvider",
    "LocalEmbedding",
    "OllamaEmbedding",
    "OpenAIEmbedding",
    "NoopEmbedding",
    "create_embedding_provider",
    # Engines
    "RankingEngine",
    "RankedMemory",
    "SearchResult",
    "PredictionEngine",
    "Prediction",
    "SuggestionEngine",
    "Suggestion",
    "FeedbackAdapter",
    "RelationshipGraph",
    # Learning
    "PatternMiner",
    "LearningReport",
    "RelationshipSuggestion",
    "LearningScheduler",
    "DuplicateGroup",
    "find_duplicates",
    "text_similarity",
    "__version__",
]
