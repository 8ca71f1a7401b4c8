"""Shared fixtures for the RecallMesh test suite."""

from __future__ import annotations

import pytest

from recallmesh.embeddings import EmbeddingProvider
from recallmesh.store import MemoryStore


class FakeEmbedding(EmbeddingProvider):
    """Deterministic provider returning preset vectors.

    Unknown texts raise, which the engines treat as "fall back to text
    matching".
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.vectors = dict(vectors or {})
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text not in self.vectors:
            raise LookupError(f"no vector for {text!r}")
        return list(self.vectors[text])


@pytest.fixture()
def store(tmp_path):
    """A fresh MemoryStore in a temporary directory."""
    s = MemoryStore(path=tmp_path / "recallmesh.db")
    yield s
    s.close()
