"""Content fingerprints and semantic similarity between task descriptions."""

import hashlib
import math
import re
from typing import List, Optional, Sequence

import structlog

from taskintel.llm.retry import RetryController

logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Case-fold and collapse whitespace.

    Args:
        text: Raw text

    Returns:
        Normalized text
    """
    return _WHITESPACE.sub(" ", text.casefold()).strip()


def fingerprint(text: str) -> str:
    """Deterministic fingerprint of the normalized text.

    Two texts differing only in case or whitespace share a fingerprint.

    Args:
        text: Raw text

    Returns:
        SHA-256 hex digest of ``normalize_text(text)``
    """
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors, clamped to [0, 1].

    Mismatched lengths and zero vectors yield 0.0.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return max(0.0, min(1.0, dot / (norm_a * norm_b)))


class SimilarityEngine:
    """Computes similarity between task texts.

    Fingerprint equality short-circuits to 1.0; otherwise embeddings are
    fetched through the retry controller (and cache) and compared by cosine.
    """

    def __init__(self, provider, retry=None, cache=None) -> None:
        """Initialize the engine.

        Args:
            provider: Inference provider exposing ``embed``
            retry: RetryController guarding embedding calls
            cache: Optional EmbeddingCache keyed by fingerprint
        """
        self.provider = provider
        self.retry = retry or RetryController()
        self.cache = cache

    async def embedding(self, text: str) -> Optional[List[float]]:
        """Embedding for ``text``, or None when inference is unavailable.

        Args:
            text: Text to embed

        Returns:
            Embedding vector, or None after retries are exhausted
        """
        key = fingerprint(text)
        model = getattr(self.provider, "embedding_model", "default")

        if self.cache is not None:
            cached = self.cache.get(key, model)
            if cached is not None:
                return cached

        result = await self.retry.call(
            lambda: self.provider.embed(text),
            lambda: None,
            name="embed",
        )
        if result.value is not None and self.cache is not None:
            self.cache.set(key, model, result.value)
        return result.value

    async def similarity(self, a: str, b: str) -> Optional[float]:
        """Semantic similarity of two texts in [0, 1].

        Args:
            a: First text
            b: Second text

        Returns:
            Similarity score, or None if an embedding could not be obtained
        """
        if fingerprint(a) == fingerprint(b):
            return 1.0

        vec_a = await self.embedding(a)
        if vec_a is None:
            return None
        vec_b = await self.embedding(b)
        if vec_b is None:
            return None

        return cosine_similarity(vec_a, vec_b)
