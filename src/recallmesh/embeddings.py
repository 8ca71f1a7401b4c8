"""Pluggable embedding providers for RecallMesh.

Each provider turns text into a vector of floats.  Heavy dependencies are
imported lazily so that the keyword-only configuration stays lightweight.

Embedding is best effort: the engines call :func:`safe_embed`, which turns
provider failures and empty vectors into ``None`` so callers fall back to
text matching.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class EmbeddingProvider(ABC):
    """Abstract base class for all embedding providers."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Compute the embedding vector for a single piece of text.

        May raise on transport or model errors; callers that need a
        best-effort result should use :func:`safe_embed`.
        """

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Compute embeddings for multiple texts, one call per text."""
        return [self.embed(t) for t in texts]

    @property
    def enabled(self) -> bool:
        """Whether this provider can ever return a vector."""
        return True


def safe_embed(provider: EmbeddingProvider, text: str) -> list[float] | None:
    """Embed *text*, returning ``None`` instead of raising.

    Args:
        provider: The embedding provider to use.
        text: Input text.

    Returns:
        The vector, or ``None`` when the provider is disabled, fails, or
        returns an empty vector.
    """
    if not provider.enabled:
        return None
    try:
        vector = provider.embed(text)
    except Exception:
        logger.debug("Embedding failed for %.40r, falling back to text search", text, exc_info=True)
        return None
    if not vector:
        return None
    return [float(v) for v in vector]


# ---------------------------------------------------------------------------
# Local (sentence-transformers)
# ---------------------------------------------------------------------------


class LocalEmbedding(EmbeddingProvider):
    """Embedding provider backed by a local ``sentence-transformers`` model.

    The model is loaded on first use.

    Args:
        model_name: Hugging Face model identifier.
        device: PyTorch device string.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str = "cpu") -> None:
        self._model_name = model_name
        self._device = device
        self._model: Any = None

    def _load_model(self) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ImportError(
                "The 'sentence-transformers' package is required for local "
                "embeddings.  Install it with:\n\n"
                "    pip install 'recallmesh[local]'\n\n"
                "Or pick another provider with RECALLMESH_EMBEDDING=none|ollama|openai"
            ) from exc

        logger.info("Loading sentence-transformers model '%s' on %s ...", self._model_name, self._device)
        self._model = SentenceTransformer(self._model_name, device=self._device)

    def embed(self, text: str) -> list[float]:
        if self._model is None:
            self._load_model()
        return self._model.encode(text, convert_to_numpy=True).tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        if self._model is None:
            self._load_model()
        return [v.tolist() for v in self._model.encode(texts, convert_to_numpy=True)]

    def __repr__(self) -> str:
        return f"LocalEmbedding(model={self._model_name!r}, device={self._device!r})"


# ---------------------------------------------------------------------------
# HTTP providers
# ---------------------------------------------------------------------------


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float) -> Any:
    """POST a JSON body and decode the JSON response.

    Raises:
        ConnectionError: If the server is unreachable.
        RuntimeError: If the server answers with an HTTP error.
    """
    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", **headers},
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except urllib.error.HTTPError as exc:
        body = exc.read().decode() if exc.fp else ""
        raise RuntimeError(f"Embedding API error ({exc.code}) at {url}: {body}") from exc
    except urllib.error.URLError as exc:
        raise ConnectionError(f"Could not connect to embedding API at {url}: {exc}") from exc


class OllamaEmbedding(EmbeddingProvider):
    """Embedding provider using a running Ollama server.

    Args:
        model: Ollama embedding model name.
        base_url: Ollama API base URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        timeout: float = 60.0,
    ) -> None:
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def embed(self, text: str) -> list[float]:
        data = _post_json(
            f"{self._base_url}/api/embed",
            {"model": self._model, "input": text},
            {},
            self._timeout,
        )
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not embeddings:
            raise RuntimeError(f"Ollama returned an unexpected response: {data}")
        return embeddings[0]

    def __repr__(self) -> str:
        return f"OllamaEmbedding(model={self._model!r}, base_url={self._base_url!r})"


class OpenAIEmbedding(EmbeddingProvider):
    """Embedding provider using the OpenAI Embeddings API.

    Args:
        api_key: API key; falls back to ``OPENAI_API_KEY``.
        model: Embedding model name.
        base_url: API base URL (OpenAI-compatible proxies work too).
        timeout: Request timeout in seconds.

    Raises:
        ValueError: If no API key is available.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self._api_key:
            raise ValueError(
                "An OpenAI API key is required.  Pass api_key=... or set OPENAI_API_KEY."
            )
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        data = _post_json(
            f"{self._base_url}/embeddings",
            {"model": self._model, "input": texts},
            {"Authorization": f"Bearer {self._api_key}"},
            self._timeout,
        )
        items = sorted(data.get("data", []), key=lambda d: d["index"])
        return [item["embedding"] for item in items]

    def __repr__(self) -> str:
        return f"OpenAIEmbedding(model={self._model!r})"


# ---------------------------------------------------------------------------
# Noop (text-only)
# ---------------------------------------------------------------------------


class NoopEmbedding(EmbeddingProvider):
    """Provider that never embeds; every lookup uses text matching."""

    def embed(self, text: str) -> list[float]:
        return []

    @property
    def enabled(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NoopEmbedding()"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_PROVIDER_ALIASES: dict[str, type[EmbeddingProvider]] = {
    "local": LocalEmbedding,
    "sentence-transformers": LocalEmbedding,
    "ollama": OllamaEmbedding,
    "openai": OpenAIEmbedding,
    "none": NoopEmbedding,
    "noop": NoopEmbedding,
}


def create_embedding_provider(name: str, **kwargs: Any) -> EmbeddingProvider:
    """Create an embedding provider by name.

    Args:
        name: ``"local"``, ``"sentence-transformers"``, ``"ollama"``,
            ``"openai"`` or ``"none"`` / ``"noop"``.
        **kwargs: Forwarded to the provider's constructor.

    Raises:
        ValueError: If *name* is not a recognised provider.
    """
    cls = _PROVIDER_ALIASES.get(name.lower().strip())
    if cls is None:
        supported = ", ".join(sorted(_PROVIDER_ALIASES))
        raise ValueError(f"Unknown embedding provider {name!r}. Supported providers: {supported}")
    return cls(**kwargs)
