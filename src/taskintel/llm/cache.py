"""Caching layer for embeddings, keyed by content fingerprint."""

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class EmbeddingCache:
    """Two-level embedding cache: in-memory dict backed by optional JSON files.

    Keys combine the embedding model and the text fingerprint, so a repeated
    request for the same normalized text never reaches the provider twice.
    """

    def __init__(self, cache_dir: Optional[Path] = None) -> None:
        """Initialize cache.

        Args:
            cache_dir: Directory to store cache files; memory-only when None
        """
        self._memory: Dict[str, List[float]] = {}
        self.cache_dir: Optional[Path] = None
        self.embeddings_dir: Optional[Path] = None

        if cache_dir is not None:
            self.cache_dir = Path(cache_dir)
            self.embeddings_dir = self.cache_dir / "embeddings"
            self.embeddings_dir.mkdir(parents=True, exist_ok=True)

        # Stats
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _generate_key(text_fingerprint: str, model: str) -> str:
        """Generate cache key from a fingerprint and model name.

        Args:
            text_fingerprint: Fingerprint of the normalized text
            model: Embedding model name

        Returns:
            Cache key
        """
        return hashlib.sha256(f"{model}:{text_fingerprint}".encode()).hexdigest()

    def get(self, text_fingerprint: str, model: str) -> Optional[List[float]]:
        """Get cached embedding.

        Args:
            text_fingerprint: Fingerprint of the normalized text
            model: Embedding model name

        Returns:
            Cached embedding or None
        """
        key = self._generate_key(text_fingerprint, model)

        if key in self._memory:
            self.hits += 1
            return self._memory[key]

        if self.embeddings_dir is not None:
            cache_file = self.embeddings_dir / f"{key}.json"
            if cache_file.exists():
                try:
                    with open(cache_file, "r") as f:
                        embedding = json.load(f).get("embedding")
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning("embedding_cache_read_failed", key=key, error=str(e))
                    embedding = None
                if embedding:
                    self._memory[key] = embedding
                    self.hits += 1
                    return embedding

        self.misses += 1
        return None

    def set(self, text_fingerprint: str, model: str, embedding: List[float]) -> None:
        """Cache an embedding.

        Args:
            text_fingerprint: Fingerprint of the normalized text
            model: Embedding model name
            embedding: The embedding vector to cache
        """
        key = self._generate_key(text_fingerprint, model)
        self._memory[key] = embedding

        if self.embeddings_dir is None:
            return

        # Written to a temp file and renamed so readers never see a partial entry
        cache_file = self.embeddings_dir / f"{key}.json"
        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.embeddings_dir, prefix=f".{key}_", suffix=".json.tmp"
            )
        except OSError as e:
            logger.warning("embedding_cache_write_failed", key=key, error=str(e))
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"model": model, "embedding": embedding}, f)
            os.replace(temp_path, cache_file)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            logger.warning("embedding_cache_write_failed", key=key, error=str(e))

    def clear(self) -> None:
        """Clear all cached embeddings."""
        self._memory.clear()
        if self.embeddings_dir is not None:
            for cache_file in self.embeddings_dir.glob("*.json"):
                cache_file.unlink()

        self.hits = 0
        self.misses = 0

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with cache stats
        """
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0.0

        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
            "cached_embeddings": len(self._memory),
        }
