"""Embedding generation for vector search: local fastembed (default) or Gemini, with diskcache."""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np

from pearls.errors import EmbedError

if TYPE_CHECKING:
    from collections.abc import Callable

    from diskcache import Cache
    from fastembed import TextEmbedding
    from google import genai
    from numpy.typing import NDArray

logger = logging.getLogger("pearls.embedder")


class Embedder(Protocol):
    """Anything that turns text into a fixed-length float32 vector."""

    @property
    def dimensions(self) -> int: ...

    def embed(self, text: str) -> NDArray[np.float32]: ...

    def embed_query(self, text: str) -> NDArray[np.float32]: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _safe_model_name(model: str) -> str:
    """Sanitize a model string for use as a filesystem directory name."""
    return model.replace("/", "_").replace(":", "_")


# ---------------------------------------------------------------------------
# GeminiEmbedder
# ---------------------------------------------------------------------------

@dataclass
class GeminiEmbedder:
    """Embedder backed by the Gemini embeddings API (needs GEMINI_API_KEY)."""

    model: str = "gemini-embedding-001"
    dimensions: int = 768
    document_task_type: str = "RETRIEVAL_DOCUMENT"
    query_task_type: str = "RETRIEVAL_QUERY"
    api_key: str | None = None

    _client: genai.Client | None = field(default=None, repr=False, init=False)  # pyright: ignore[reportUndefinedVariable]

    @property
    def client(self) -> genai.Client:  # pyright: ignore[reportUndefinedVariable]
        """Get or create the Gemini client (lazy)."""
        if self._client is None:
            try:
                from google import genai as _genai
            except ImportError as e:
                msg = "google-genai is required for Gemini embeddings: pip install 'pearls[gemini]'"
                raise EmbedError(msg) from e
            key = self.api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
            self._client = _genai.Client(api_key=key) if key else _genai.Client()
        return self._client

    def _embed(self, text: str, task_type: str) -> NDArray[np.float32]:
        try:
            result = self.client.models.embed_content(
                model=self.model,
                contents=text,
                config={
                    "task_type": task_type,
                    "output_dimensionality": self.dimensions,
                },
            )
        except EmbedError:
            raise
        except Exception as exc:
            msg = f"gemini embed failed: {exc}"
            raise EmbedError(msg) from exc
        if not result.embeddings:
            msg = "Gemini API returned no embeddings"
            raise EmbedError(msg)
        return np.array(result.embeddings[0].values, dtype=np.float32)

    def embed(self, text: str) -> NDArray[np.float32]:
        return self._embed(text, self.document_task_type)

    def embed_query(self, text: str) -> NDArray[np.float32]:
        return self._embed(text, self.query_task_type)


# ---------------------------------------------------------------------------
# FastEmbedEmbedder
# ---------------------------------------------------------------------------

@dataclass
class FastEmbedEmbedder:
    """Local embedder using fastembed TextEmbedding (ONNX, no API key needed)."""

    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimensions: int = 384  # all-MiniLM-L6-v2 is 384-dim
    _fe_model: TextEmbedding | None = field(default=None, repr=False, init=False)  # pyright: ignore[reportUndefinedVariable]

    @property
    def _model(self) -> TextEmbedding:  # pyright: ignore[reportUndefinedVariable]
        """Get or create the fastembed model (lazy: first call may download it)."""
        if self._fe_model is None:
            try:
                from fastembed import TextEmbedding
            except ImportError as e:
                msg = "fastembed is required for local embeddings: pip install fastembed"
                raise EmbedError(msg) from e
            try:
                self._fe_model = TextEmbedding(self.model)
            except Exception as exc:
                msg = f"load embedding model {self.model}: {exc}"
                raise EmbedError(msg) from exc
        return self._fe_model

    def embed(self, text: str) -> NDArray[np.float32]:
        model = self._model
        try:
            embeddings = list(model.embed([text]))
        except Exception as exc:
            msg = f"fastembed embed failed: {exc}"
            raise EmbedError(msg) from exc
        return np.array(embeddings[0], dtype=np.float32)

    def embed_query(self, text: str) -> NDArray[np.float32]:
        return self.embed(text)


# ---------------------------------------------------------------------------
# CachedEmbedder
# ---------------------------------------------------------------------------

@dataclass
class CachedEmbedder:
    """Wraps a GeminiEmbedder or FastEmbedEmbedder with diskcache on disk.

    Cache key: sha256 of "{task}:{text}:{dimensions}"
    Cache path: {cache_dir}/{safe_model_name}/
    Stored as raw float32 bytes (.tobytes() / np.frombuffer).
    """

    embedder: GeminiEmbedder | FastEmbedEmbedder
    cache_dir: Path = field(default_factory=lambda: Path.home() / ".cache" / "pearls" / "embeddings")
    _disk_cache: Cache | None = field(default=None, repr=False, init=False)  # pyright: ignore[reportUndefinedVariable]

    @property
    def dimensions(self) -> int:
        return self.embedder.dimensions

    @property
    def _cache(self) -> Cache:  # pyright: ignore[reportUndefinedVariable]
        """Get or create the diskcache instance (lazy, model-specific directory)."""
        if self._disk_cache is None:
            from diskcache import Cache
            model_dir = self.cache_dir / _safe_model_name(self.embedder.model)
            model_dir.mkdir(parents=True, exist_ok=True)
            self._disk_cache = Cache(str(model_dir))
        return self._disk_cache

    def _cache_key(self, text: str, task: str) -> str:
        raw = f"{task}:{text}:{self.dimensions}"
        return hashlib.sha256(raw.encode()).hexdigest()

    def _cached(
        self, text: str, task: str, compute: Callable[[str], NDArray[np.float32]]
    ) -> NDArray[np.float32]:
        from diskcache import Timeout

        key = self._cache_key(text, task)
        # An unusable cache degrades to uncached embedding.
        try:
            cached = self._cache.get(key)
        except (OSError, sqlite3.Error, Timeout) as exc:
            logger.warning("embedding cache unavailable at %s: %s", self.cache_dir, exc)
            return compute(text)
        if cached is not None:
            return np.frombuffer(cached, dtype=np.float32)  # type: ignore[arg-type]
        embedding = compute(text)
        try:
            self._cache.set(key, embedding.tobytes())
        except (OSError, sqlite3.Error, Timeout) as exc:
            logger.warning("embedding cache write failed at %s: %s", self.cache_dir, exc)
        return embedding

    def embed(self, text: str) -> NDArray[np.float32]:
        """Embed a document, returning the cached vector if available."""
        return self._cached(text, "document", self.embedder.embed)

    def embed_query(self, text: str) -> NDArray[np.float32]:
        return self._cached(text, "query", self.embedder.embed_query)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def get_embedder(model: str, cache_dir: Path) -> CachedEmbedder:
    """Create a CachedEmbedder for the given model string.

    Supported prefixes:
    - ``gemini:<model>``  → GeminiEmbedder (reads GEMINI_API_KEY or GOOGLE_API_KEY)
    - ``fastembed:<model>`` or bare name → FastEmbedEmbedder
    """
    lower = model.lower()
    if lower.startswith("gemini:"):
        base: GeminiEmbedder | FastEmbedEmbedder = GeminiEmbedder(model=model[len("gemini:"):])
    elif lower.startswith("fastembed:"):
        base = FastEmbedEmbedder(model=model[len("fastembed:"):])
    else:
        base = FastEmbedEmbedder(model=model)
    return CachedEmbedder(embedder=base, cache_dir=cache_dir)
