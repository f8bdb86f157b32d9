"""Tests for the embedding cache."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from taskintel.llm.cache import EmbeddingCache
from taskintel.similarity import fingerprint


@pytest.fixture
def temp_cache_dir():
    """Create temporary cache directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def cache(temp_cache_dir):
    """Create EmbeddingCache instance."""
    return EmbeddingCache(temp_cache_dir)


def test_cache_initialization(temp_cache_dir):
    """Test cache directory structure is created."""
    cache = EmbeddingCache(temp_cache_dir)

    assert cache.cache_dir.exists()
    assert cache.embeddings_dir.exists()
    assert cache.hits == 0
    assert cache.misses == 0


def test_memory_only_cache():
    """Test cache without a directory keeps entries in memory."""
    cache = EmbeddingCache()
    fp = fingerprint("Implement Apple Pay")

    assert cache.get(fp, "model") is None
    cache.set(fp, "model", [0.1, 0.2])

    assert cache.get(fp, "model") == [0.1, 0.2]
    assert cache.embeddings_dir is None


def test_embedding_caching(cache):
    """Test embedding caching and retrieval."""
    fp = fingerprint("Add checkout tests")
    embedding = [0.1, 0.2, 0.3, 0.4, 0.5]

    # First get should be a miss
    assert cache.get(fp, "text-embedding-3-small") is None
    assert cache.misses == 1

    cache.set(fp, "text-embedding-3-small", embedding)

    # Second get should be a hit
    assert cache.get(fp, "text-embedding-3-small") == embedding
    assert cache.hits == 1
    assert cache.misses == 1


def test_embedding_different_models(cache):
    """Test that different models have separate cache entries."""
    fp = fingerprint("Add checkout tests")

    cache.set(fp, "small", [0.1, 0.2])
    cache.set(fp, "large", [0.3, 0.4])

    assert cache.get(fp, "small") == [0.1, 0.2]
    assert cache.get(fp, "large") == [0.3, 0.4]


def test_cache_persistence(temp_cache_dir):
    """Test that cache persists across instances."""
    fp = fingerprint("Ship onboarding email")

    cache1 = EmbeddingCache(temp_cache_dir)
    cache1.set(fp, "model", [1.0, 2.0])

    cache2 = EmbeddingCache(temp_cache_dir)
    assert cache2.get(fp, "model") == [1.0, 2.0]
    assert cache2.hits == 1


def test_cache_file_format(cache):
    """Test cache entries are stored as JSON with the model name."""
    fp = fingerprint("Ship onboarding email")
    cache.set(fp, "model", [1.0, 2.0])

    files = list(cache.embeddings_dir.glob("*.json"))
    assert len(files) == 1
    with open(files[0]) as f:
        data = json.load(f)
    assert data == {"model": "model", "embedding": [1.0, 2.0]}


def test_cache_write_leaves_no_temp_files(cache):
    cache.set(fingerprint("Ship onboarding email"), "model", [1.0, 2.0])
    cache.set(fingerprint("Ship onboarding email"), "model", [3.0, 4.0])

    assert list(cache.embeddings_dir.glob("*.tmp")) == []
    assert len(list(cache.embeddings_dir.glob("*.json"))) == 1


def test_failed_cache_write_keeps_memory_entry(cache):
    """Test a failed rename removes the temp file and keeps the previous entry on disk."""
    fp = fingerprint("Ship onboarding email")
    cache.set(fp, "model", [1.0, 2.0])

    with patch("taskintel.llm.cache.os.replace", side_effect=OSError("disk full")):
        cache.set(fp, "model", [3.0, 4.0])

    assert list(cache.embeddings_dir.glob("*.tmp")) == []
    assert cache.get(fp, "model") == [3.0, 4.0]
    assert EmbeddingCache(cache.cache_dir).get(fp, "model") == [1.0, 2.0]


def test_corrupt_cache_file_is_a_miss(temp_cache_dir):
    """Test unreadable cache files are treated as misses."""
    fp = fingerprint("Ship onboarding email")
    cache = EmbeddingCache(temp_cache_dir)
    cache.set(fp, "model", [1.0])
    for cache_file in cache.embeddings_dir.glob("*.json"):
        cache_file.write_text("{not json")

    fresh = EmbeddingCache(temp_cache_dir)
    assert fresh.get(fp, "model") is None
    assert fresh.misses == 1


def test_cache_clear(cache):
    """Test clearing cache."""
    fp = fingerprint("Ship onboarding email")
    cache.set(fp, "model", [1.0])
    cache.get(fp, "model")

    cache.clear()

    assert cache.get(fp, "model") is None
    assert list(cache.embeddings_dir.glob("*.json")) == []
    assert cache.hits == 0
    assert cache.misses == 1


def test_cache_stats(cache):
    """Test cache statistics."""
    fp = fingerprint("Ship onboarding email")
    cache.get(fp, "model")
    cache.set(fp, "model", [1.0])
    cache.get(fp, "model")

    stats = cache.get_stats()

    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == "50.0%"
    assert stats["cached_embeddings"] == 1
