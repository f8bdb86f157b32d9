"""Tests for draft deduplication."""

import pytest

from taskintel.models import DraftStatus, DraftTask, IntelligenceConfig, Task
from taskintel.services.dedup import DeduplicationService
from taskintel.similarity import SimilarityEngine

from .stubs import StubProvider, vector_with_similarity

EXISTING = "Implement Apple Pay"


def make_service(retry, vectors, config=None, fail_embeddings=False):
    provider = StubProvider(vectors=vectors, fail_embeddings=fail_embeddings)
    return DeduplicationService(SimilarityEngine(provider, retry), config), provider


def draft(draft_id, text, document_id=None):
    return DraftTask(id=draft_id, text=text, gap_area="payments", document_id=document_id)


@pytest.fixture
def existing():
    return [Task(id="t-1", text=EXISTING)]


@pytest.mark.asyncio
async def test_below_threshold_is_kept(retry, existing):
    """Test a draft at 0.84 similarity is retained."""
    service, _ = make_service(
        retry, {EXISTING: [1.0, 0.0], "Add Apple Pay to checkout": vector_with_similarity(0.84)}
    )

    decision = await service.check_duplicate(draft("d-1", "Add Apple Pay to checkout"), existing)

    assert not decision.is_duplicate
    assert decision.similarity == pytest.approx(0.84)
    assert decision.matched_task_id == "t-1"
    assert decision.borderline
    assert decision.reason == "borderline"


@pytest.mark.asyncio
async def test_above_threshold_is_suppressed(retry, existing):
    """Test a draft at 0.90 similarity is suppressed and linked to the match."""
    service, _ = make_service(
        retry, {EXISTING: [1.0, 0.0], "Integrate Apple Pay": vector_with_similarity(0.90)}
    )

    decision = await service.check_duplicate(draft("d-2", "Integrate Apple Pay"), existing)

    assert decision.is_duplicate
    assert decision.matched_task_id == "t-1"
    assert decision.similarity == pytest.approx(0.90)
    assert decision.reason == "similarity_above_threshold"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "similarity,duplicate,borderline",
    [(0.85, True, False), (0.849, False, True), (0.80, False, True), (0.79, False, False)],
)
async def test_threshold_boundaries(retry, existing, similarity, duplicate, borderline):
    """Test inclusive threshold boundaries."""
    service, _ = make_service(
        retry, {EXISTING: [1.0, 0.0], "Candidate draft": vector_with_similarity(similarity)}
    )

    decision = await service.check_duplicate(draft("d-1", "Candidate draft"), existing)

    assert decision.is_duplicate is duplicate
    assert decision.borderline is borderline


@pytest.mark.asyncio
async def test_thresholds_come_from_config(retry, existing):
    """Test recalibrated thresholds change the decision."""
    config = IntelligenceConfig(duplicate_threshold=0.95, borderline_threshold=0.9)
    service, _ = make_service(
        retry,
        {EXISTING: [1.0, 0.0], "Integrate Apple Pay": vector_with_similarity(0.90)},
        config=config,
    )

    decision = await service.check_duplicate(draft("d-2", "Integrate Apple Pay"), existing)

    assert not decision.is_duplicate
    assert decision.borderline


@pytest.mark.asyncio
async def test_fingerprint_match_skips_embeddings(retry, existing):
    """Test case/whitespace variants are certain duplicates."""
    service, provider = make_service(retry, {})

    decision = await service.check_duplicate(draft("d-3", "  implement   APPLE pay"), existing)

    assert decision.is_duplicate
    assert decision.similarity == 1.0
    assert decision.reason == "fingerprint_match"
    assert provider.embed_calls == []


@pytest.mark.asyncio
async def test_repeated_checks_are_idempotent(retry, existing):
    """Test the same draft and candidates always yield the same decision."""
    service, _ = make_service(
        retry, {EXISTING: [1.0, 0.0], "Add Apple Pay to checkout": vector_with_similarity(0.84)}
    )
    candidate = draft("d-1", "Add Apple Pay to checkout")

    first = await service.check_duplicate(candidate, existing)
    second = await service.check_duplicate(candidate, existing)

    assert first == second
    assert service.decision_for("d-1") == second
    assert len(service.audit_log) == 2


@pytest.mark.asyncio
async def test_scope_limits_candidates(retry):
    """Test drafts are only compared semantically with tasks of the same provenance scope."""
    service, provider = make_service(
        retry, {EXISTING: [1.0, 0.0], "Integrate Apple Pay": vector_with_similarity(0.95)}
    )
    other_scope = [Task(id="t-1", text=EXISTING, document_id="doc-b")]

    decision = await service.check_duplicate(
        draft("d-1", "Integrate Apple Pay", document_id="doc-a"), other_scope
    )

    assert not decision.is_duplicate
    assert decision.reason == "no_candidates"
    assert provider.embed_calls == []


@pytest.mark.asyncio
async def test_unscoped_draft_falls_back_to_all_tasks(retry):
    """Test a draft without scope compares against every task when none is unscoped."""
    service, _ = make_service(retry, {})
    scoped = [Task(id="t-1", text=EXISTING, document_id="doc-b")]

    decision = await service.check_duplicate(draft("d-1", EXISTING), scoped)

    assert decision.is_duplicate


@pytest.mark.asyncio
async def test_embedding_failure_keeps_draft(retry, existing):
    """Test similarity outages degrade to keeping the draft."""
    service, _ = make_service(retry, {}, fail_embeddings=True)

    decision = await service.check_duplicate(draft("d-1", "Totally new idea"), existing)

    assert not decision.is_duplicate
    assert decision.reason == "similarity_unavailable"
    assert decision.similarity is None


@pytest.mark.asyncio
async def test_filter_drafts(retry, existing):
    """Test batch filtering against tasks and earlier drafts of the batch."""
    service, _ = make_service(
        retry,
        {
            EXISTING: [1.0, 0.0],
            "Integrate Apple Pay": vector_with_similarity(0.90),
            "Add Apple Pay to checkout": vector_with_similarity(0.84),
            "Write checkout load tests": [0.0, 1.0],
        },
    )
    drafts = [
        draft("d-1", "Integrate Apple Pay"),
        draft("d-2", "Add Apple Pay to checkout"),
        draft("d-3", "Write checkout load tests"),
        draft("d-4", "write checkout LOAD tests"),
    ]

    kept, suppressed = await service.filter_drafts(drafts, existing)

    assert [d.id for d in kept] == ["d-2", "d-3"]
    assert [d.id for d in suppressed] == ["d-1", "d-4"]
    assert all(d.status == DraftStatus.KEPT for d in kept)
    assert suppressed[0].nearest_task_id == "t-1"
    assert suppressed[1].nearest_task_id == "d-3"
    assert kept[0].borderline
    assert len(service.audit_log) == 4


@pytest.mark.asyncio
async def test_fingerprint_match_crosses_scopes(retry):
    """Test a verbatim re-proposal of a scoped task is suppressed when unscoped tasks exist."""
    service, provider = make_service(retry, {})
    existing = [
        Task(id="t-pay", text=EXISTING, document_id="doc-1"),
        Task(id="t-bank", text="Call the bank"),
    ]

    decision = await service.check_duplicate(draft("d-1", "implement apple pay"), existing)

    assert decision.is_duplicate
    assert decision.matched_task_id == "t-pay"
    assert decision.reason == "fingerprint_match"
    assert provider.embed_calls == []


@pytest.mark.asyncio
async def test_score_just_below_threshold_is_kept(retry, existing):
    """Test the threshold compares the exact score, not the rounded one."""
    service, _ = make_service(
        retry, {EXISTING: [1.0, 0.0], "Candidate draft": vector_with_similarity(0.849996)}
    )

    decision = await service.check_duplicate(draft("d-1", "Candidate draft"), existing)

    assert not decision.is_duplicate
    assert decision.borderline
    assert decision.reason == "borderline"
    assert decision.similarity == pytest.approx(0.85)
