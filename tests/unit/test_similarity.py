"""Tests for fingerprinting and the similarity engine."""

import pytest

from taskintel.llm.cache import EmbeddingCache
from taskintel.similarity import SimilarityEngine, cosine_similarity, fingerprint, normalize_text

from .stubs import StubProvider


def test_normalize_text():
    """Test case folding and whitespace collapsing."""
    assert normalize_text("  Implement\tApple   PAY \n") == "implement apple pay"


@pytest.mark.parametrize(
    "variant",
    [
        "Implement Apple Pay",
        "implement apple pay",
        "  IMPLEMENT   APPLE PAY  ",
        "Implement\nApple\tPay",
    ],
)
def test_fingerprint_ignores_case_and_whitespace(variant):
    """Test whitespace/case variants share a fingerprint."""
    assert fingerprint(variant) == fingerprint("Implement Apple Pay")


def test_fingerprint_distinguishes_text():
    """Test different texts get different fingerprints."""
    assert fingerprint("Implement Apple Pay") != fingerprint("Implement Google Pay")
    assert len(fingerprint("anything")) == 64


def test_cosine_similarity():
    """Test cosine similarity bounds and degenerate inputs."""
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([], []) == 0.0


@pytest.mark.asyncio
async def test_similarity_fingerprint_short_circuit(retry):
    """Test identical normalized texts skip the embedding call."""
    provider = StubProvider()
    engine = SimilarityEngine(provider, retry)

    score = await engine.similarity("Fix login bug", "  fix LOGIN bug ")

    assert score == 1.0
    assert provider.embed_calls == []


@pytest.mark.asyncio
async def test_similarity_uses_embeddings(retry):
    """Test cosine of the provider's embeddings is returned."""
    provider = StubProvider(vectors={"a task": [1.0, 0.0], "b task": [0.6, 0.8]})
    engine = SimilarityEngine(provider, retry)

    score = await engine.similarity("a task", "b task")

    assert score == pytest.approx(0.6)
    assert provider.embed_calls == ["a task", "b task"]


@pytest.mark.asyncio
async def test_similarity_unavailable_after_retries(retry, sleep):
    """Test embedding failures degrade to None instead of raising."""
    provider = StubProvider(fail_embeddings=True)
    engine = SimilarityEngine(provider, retry)

    score = await engine.similarity("first text", "second text")

    assert score is None
    assert len(provider.embed_calls) == 3
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_embeddings_are_cached_by_fingerprint(retry):
    """Test repeated requests for the same normalized text hit the cache."""
    provider = StubProvider()
    cache = EmbeddingCache()
    engine = SimilarityEngine(provider, retry, cache)

    first = await engine.embedding("Write release notes")
    second = await engine.embedding("write   RELEASE notes")

    assert first == second
    assert provider.embed_calls == ["Write release notes"]
    assert cache.hits == 1
