"""Embedding generators for semantic node search.

Provides two strategies behind one small interface:
1. Hashed character n-grams (scikit-learn, no model download)
2. Sentence transformers (if installed)

Only cosine similarity between vectors is relied upon elsewhere, so any
deterministic ``text -> fixed-length vector`` function can be plugged in.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from threading import RLock
from typing import Optional, Protocol, Sequence, runtime_checkable

import numpy as np
from sklearn.feature_extraction.text import HashingVectorizer
from sklearn.metrics.pairwise import cosine_similarity as _pairwise_cosine

from context_engine.errors import ContextEngineError

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 384
DEFAULT_TRANSFORMER_MODEL = "all-MiniLM-L6-v2"
DEFAULT_CACHE_ENTRIES = 10_000

# Try to import optional dependencies
try:
    from sentence_transformers import SentenceTransformer

    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False
    logger.debug("sentence-transformers not available, using hashed n-gram embeddings")


@runtime_checkable
class Embedder(Protocol):
    """Anything that maps text to a fixed-length vector deterministically."""

    dimension: int

    def embed(self, text: str) -> np.ndarray: ...

    def embed_many(self, texts: Sequence[str]) -> np.ndarray: ...


class _CachingEmbedder:
    """In-memory LRU cache keyed by a digest of the text."""

    method = "base"

    def __init__(self, max_cache_entries: Optional[int] = DEFAULT_CACHE_ENTRIES) -> None:
        self._cache: OrderedDict[str, np.ndarray] = OrderedDict()  # LRU ordering
        self._lock = RLock()
        self.max_cache_entries = max_cache_entries

    def _cache_key(self, text: str) -> str:
        return hashlib.md5(text.encode("utf-8", "surrogatepass")).hexdigest()

    def _encode(self, texts: list[str]) -> np.ndarray:
        raise NotImplementedError

    def embed(self, text: str) -> np.ndarray:
        """Generate the embedding for a single text."""
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        """Generate embeddings for several texts, one row per text."""
        if not texts:
            return np.zeros((0, self.dimension))

        keys = [self._cache_key(text) for text in texts]
        found: dict[str, np.ndarray] = {}
        missing: dict[str, str] = {}
        with self._lock:
            for key, text in zip(keys, texts):
                if key in self._cache:
                    self._cache.move_to_end(key)
                    found[key] = self._cache[key]
                elif key not in found:
                    missing[key] = text

        if missing:
            vectors = self._encode(list(missing.values()))
            with self._lock:
                for key, vector in zip(missing, vectors):
                    found[key] = vector
                    self._store(key, vector)

        return np.vstack([found[key] for key in keys])

    def _store(self, key: str, vector: np.ndarray) -> None:
        self._cache[key] = vector
        self._cache.move_to_end(key)
        if self.max_cache_entries:
            while len(self._cache) > self.max_cache_entries:
                # Evict least recently used (first in OrderedDict)
                self._cache.popitem(last=False)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        """Clear the embedding cache."""
        with self._lock:
            self._cache.clear()


class HashingEmbedder(_CachingEmbedder):
    """Hashed character 2-4-grams, L2-normalised.

    Deterministic and cheap: similar text shares n-grams and therefore gets a
    higher cosine, but the vectors carry no learned meaning.
    """

    method = "hashing"

    def __init__(self, dimension: int = DEFAULT_DIMENSION, max_cache_entries: Optional[int] = DEFAULT_CACHE_ENTRIES):
        super().__init__(max_cache_entries)
        self.dimension = dimension
        self._vectorizer = HashingVectorizer(
            n_features=dimension,
            ngram_range=(2, 4),
            analyzer="char",
            norm="l2",
            alternate_sign=False,
        )

    def _encode(self, texts: list[str]) -> np.ndarray:
        return self._vectorizer.transform(texts).toarray()


class TransformerEmbedder(_CachingEmbedder):
    """Sentence-transformers model wrapper."""

    method = "transformer"

    def __init__(self, model_name: str = DEFAULT_TRANSFORMER_MODEL):
        if not SENTENCE_TRANSFORMERS_AVAILABLE:
            raise ContextEngineError(
                "sentence-transformers is not installed; install the 'transformer' extra"
            )
        super().__init__()
        self.model_name = model_name
        self._model = SentenceTransformer(model_name)
        self.dimension = self._model.get_sentence_embedding_dimension()
        logger.info("Using transformer model: %s", model_name)

    def _encode(self, texts: list[str]) -> np.ndarray:
        return self._model.encode(texts, show_progress_bar=False, convert_to_numpy=True)


def create_embedder(method: str = "hashing", model_name: Optional[str] = None) -> Embedder:
    """Select an embedding strategy.

    Args:
        method: "hashing", "transformer", or "auto" (transformer when available)
        model_name: Model name for the transformer method

    Raises:
        ValueError: for an unknown method name
    """
    method = (method or "hashing").lower()
    if method == "auto":
        method = "transformer" if SENTENCE_TRANSFORMERS_AVAILABLE else "hashing"

    if method == "transformer":
        if not SENTENCE_TRANSFORMERS_AVAILABLE:
            logger.warning("Sentence transformers not available, falling back to hashed embeddings")
            return HashingEmbedder()
        try:
            return TransformerEmbedder(model_name or DEFAULT_TRANSFORMER_MODEL)
        except Exception as exc:
            logger.warning("Failed to load transformer model: %s, falling back to hashed embeddings", exc)
            return HashingEmbedder()

    if method == "hashing":
        return HashingEmbedder()

    raise ValueError(f"Unknown embedding method: {method}")


def cosine_similarity(a: Optional[np.ndarray], b: Optional[np.ndarray]) -> float:
    """Cosine of two vectors; 0.0 when either is missing or all zeros."""
    if a is None or b is None:
        return 0.0
    a = np.asarray(a, dtype=float).reshape(1, -1)
    b = np.asarray(b, dtype=float).reshape(1, -1)
    if a.shape != b.shape or not a.any() or not b.any():
        return 0.0
    return float(_pairwise_cosine(a, b)[0, 0])


def similarities(query: Optional[np.ndarray], matrix: np.ndarray) -> np.ndarray:
    """Cosine between ``query`` and every row of ``matrix`` (zero-safe)."""
    if matrix.size == 0:
        return np.zeros(matrix.shape[0])
    if query is None:
        return np.zeros(matrix.shape[0])
    query = np.asarray(query, dtype=float).reshape(1, -1)
    if query.shape[1] != matrix.shape[1] or not query.any():
        return np.zeros(matrix.shape[0])
    return _pairwise_cosine(query, matrix)[0]


__all__ = [
    "DEFAULT_DIMENSION",
    "SENTENCE_TRANSFORMERS_AVAILABLE",
    "Embedder",
    "HashingEmbedder",
    "TransformerEmbedder",
    "cosine_similarity",
    "create_embedder",
    "similarities",
]
