"""Tests for the session facade."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from taskintel.errors import InputValidationError, PersistenceUnavailable
from taskintel.llm.openai_provider import OpenAIProvider
from taskintel.llm.schemas import CoverageResponse, DraftProposal, DraftResponse
from taskintel.models import DraftStatus, IntelligenceConfig, Reflection, Task, TaskSource
from taskintel.pipeline import TaskIntelligenceSession
from taskintel.recalc import RecalcState
from taskintel.storage import InMemoryStore

from .stubs import StubProvider, vector_with_similarity

OUTCOME = "Increase payment conversion by 20%"


def near(similarity):
    return [*vector_with_similarity(similarity), 0.0]


class FlakyStore(InMemoryStore):
    """In-memory store whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.available = True

    def write(self, kind, record_id, record):
        if not self.available:
            raise PersistenceUnavailable("store unreachable")
        super().write(kind, record_id, record)


@pytest.fixture
def provider():
    return StubProvider(
        responses={
            CoverageResponse: CoverageResponse(coverage_percentage=40, missing_areas=["mobile wallets"]),
            DraftResponse: DraftResponse(
                draft_tasks=[
                    DraftProposal(task_text="Integrate Apple Pay into checkout", estimated_hours=4),
                    DraftProposal(task_text="Add Apple Pay express button", estimated_hours=2),
                    DraftProposal(task_text="Add one-click checkout", estimated_hours=3),
                ]
            ),
        },
        vectors={
            "Implement Apple Pay": [1.0, 0.0, 0.0],
            "Update API docs": [0.0, 1.0, 0.0],
            "Integrate Apple Pay into checkout": near(0.90),
            "Add Apple Pay express button": near(0.84),
            "Add one-click checkout": [0.0, 0.0, 1.0],
        },
    )


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def session(provider, store, retry):
    return TaskIntelligenceSession(
        OUTCOME,
        provider,
        tasks=[
            Task(id="t-docs", text="Update API docs"),
            Task(id="t-pay", text="Implement Apple Pay"),
        ],
        reflections=[Reflection(id="r-1", text="ignore documentation tasks")],
        store=store,
        config=IntelligenceConfig(debounce_ms=10),
        retry=retry,
    )


@pytest.mark.asyncio
async def test_recalculate_end_to_end(session, store):
    """Test exclusion, coverage, drafts and persistence in one pass."""
    status = await session.recalculate()

    assert status.status == "applied"
    assert status.plan_version == 1
    plan = session.plan
    assert plan.ordered_task_ids == ["t-pay"]
    assert [e.task_id for e in plan.excluded] == ["t-docs"]
    assert "ignore documentation tasks" in plan.excluded[0].reason
    assert plan.excluded[0].reflection_id == "r-1"
    assert plan.coverage.percentage == 40
    assert plan.coverage.low_confidence

    assert [d.text for d in session.pending_drafts] == [
        "Add Apple Pay express button",
        "Add one-click checkout",
    ]
    assert session.pending_drafts[0].borderline
    assert [d.text for d in session.suppressed_drafts] == ["Integrate Apple Pay into checkout"]

    assert store.read("plan", "default")["version"] == 1
    assert store.read("task", "t-pay")["strategic_score"]["priority"] > 0
    assert session.quality_for("t-pay") is not None
    assert session.quality_for("t-docs") is None


@pytest.mark.asyncio
async def test_audit_records_per_pass(session, store):
    await session.recalculate()

    operations = [r.operation for r in store.read_audit()]

    assert operations == ["coverage", "quality", "drafts"]
    coverage = store.read_audit()[0]
    assert coverage.task_count == 1
    assert coverage.details["percentage"] == 40


@pytest.mark.asyncio
async def test_plan_versions_increase(session):
    await session.recalculate()
    first = session.plan
    await session.recalculate()
    second = session.plan
    third = session.change_strategy("quick_wins")

    assert [first.version, second.version, third.version] == [1, 2, 3]
    assert first.strategy == "balanced"
    assert third.strategy == "quick_wins"


@pytest.mark.asyncio
async def test_change_strategy_without_inference(session, provider):
    """Test switching strategy only re-sorts the last computed scores."""
    await session.recalculate()
    completions = len(provider.complete_calls)
    embeddings = len(provider.embed_calls)
    before = session.plan

    plan = session.change_strategy("quick-wins")

    assert plan.ordered_task_ids == ["t-pay"]
    assert plan.excluded == before.excluded
    assert plan.coverage == before.coverage
    assert len(provider.complete_calls) == completions
    assert len(provider.embed_calls) == embeddings


@pytest.mark.asyncio
async def test_unknown_strategy_keeps_plan(session):
    await session.recalculate()
    before = session.plan

    with pytest.raises(InputValidationError):
        session.change_strategy("alphabetical")

    assert session.plan is before


def test_duplicate_task_ids_rejected(provider):
    with pytest.raises(InputValidationError, match="Duplicate task id"):
        TaskIntelligenceSession(
            OUTCOME,
            provider,
            tasks=[Task(id="t-1", text="Implement Apple Pay"), Task(id="t-1", text="Add refunds")],
        )


@pytest.mark.asyncio
async def test_empty_outcome_rejected(provider):
    session = TaskIntelligenceSession("  ", provider, tasks=[Task(id="t-1", text="Implement Apple Pay")])

    with pytest.raises(InputValidationError):
        await session.recalculate()

    assert provider.complete_calls == []
    assert session.plan is None


@pytest.mark.asyncio
async def test_store_failure_keeps_previous_plan(session, store):
    await session.recalculate()
    before = session.plan
    store.available = False

    status = await session.recalculate()

    assert status.status == "failed"
    assert status.retryable
    assert status.plan_version == 1
    assert "Please retry" in status.message
    assert session.plan is before

    store.available = True
    status = await session.recalculate()

    assert status.status == "applied"
    assert status.plan_version == 2


@pytest.mark.asyncio
async def test_empty_draft_selection_is_noop(session):
    await session.recalculate()
    pending = session.pending_drafts

    summary = session.apply_draft_decisions([])

    assert not summary.applied
    assert "No drafts selected" in summary.message
    assert summary.accepted == []
    assert summary.discarded == []
    assert session.pending_drafts == pending


@pytest.mark.asyncio
async def test_unknown_draft_rejected(session):
    await session.recalculate()

    with pytest.raises(InputValidationError):
        session.apply_draft_decisions(["no-such-draft"])

    assert len(session.pending_drafts) == 2


@pytest.mark.asyncio
async def test_apply_draft_decisions(session, store):
    """Test accepted drafts become tasks and discarded ones are not proposed again."""
    await session.recalculate()
    express, one_click = session.pending_drafts

    summary = session.apply_draft_decisions([express.id])

    assert summary.applied
    assert summary.accepted == [express.id]
    assert summary.discarded == [one_click.id]
    accepted = next(t for t in session.tasks if t.id == express.id)
    assert accepted.source == TaskSource.GENERATED
    assert not accepted.is_manual
    assert store.read("task", express.id)["text"] == "Add Apple Pay express button"

    # Accepting a draft is an edit; the debounced pass picks it up
    await session.controller.flush()

    assert session.controller.state == RecalcState.APPLIED
    assert session.plan.version == 2
    assert express.id in session.plan.ordered_task_ids
    assert session.pending_drafts == []


@pytest.mark.asyncio
async def test_discard_draft(session):
    await session.recalculate()
    draft = session.pending_drafts[1]

    discarded = session.discard_draft(draft.id)

    assert discarded.status == DraftStatus.DISCARDED
    assert draft.id not in [d.id for d in session.pending_drafts]
    with pytest.raises(InputValidationError):
        session.accept_draft(draft.id)


@pytest.mark.asyncio
async def test_edits_trigger_debounced_recalculation(session):
    await session.recalculate()
    passes = session.controller.calls

    session.add_task(Task(id="t-refund", text="Add refund button"))
    session.edit_task("t-refund", "Add refund button to checkout")
    await session.controller.flush()

    assert session.controller.calls == passes + 1
    assert session.plan.version == 2
    assert "t-refund" in session.plan.ordered_task_ids


@pytest.mark.asyncio
async def test_failed_background_pass_sets_stale_indicator(session, store):
    await session.recalculate()
    before = session.plan
    store.available = False

    session.remove_task("t-pay")
    await session.controller.flush()

    assert session.controller.state == RecalcState.FAILED
    assert session.controller.stale_indicator
    assert session.plan is before

    store.available = True
    session.controller.retry()
    await session.controller.flush()

    assert not session.controller.stale_indicator
    assert session.plan.ordered_task_ids == []


def test_supersede_reflection(session):
    replacement = session.supersede_reflection("r-1", "focus on checkout")

    reflections = session.reflections
    assert reflections[0].archived
    assert reflections[0].text == "ignore documentation tasks"
    assert reflections[1].id == replacement.id
    assert not reflections[1].archived

    with pytest.raises(InputValidationError):
        session.supersede_reflection("r-1", "again")


def test_edits_validate_input(session):
    with pytest.raises(InputValidationError):
        session.set_outcome("")
    with pytest.raises(InputValidationError):
        session.edit_task("missing", "text")
    with pytest.raises(InputValidationError):
        session.add_task(Task(id="t-pay", text="Another"))


@pytest.mark.asyncio
async def test_edit_during_manual_recalculation(session, provider):
    """Test a manual pass and a debounced pass never overlap."""
    gate = asyncio.Event()
    active = 0
    peak = []

    async def coverage(prompt):
        nonlocal active
        active += 1
        peak.append(active)
        await gate.wait()
        active -= 1
        return CoverageResponse(coverage_percentage=90)

    provider.responses[CoverageResponse] = coverage

    manual = asyncio.ensure_future(session.recalculate())
    while not peak:
        await asyncio.sleep(0.005)
    session.add_task(Task(id="t-refund", text="Add refund button"))
    await asyncio.sleep(0.05)

    assert peak == [1]
    gate.set()
    status = await manual

    assert max(peak) == 1
    assert session.controller.calls == 2
    assert status.status == "applied"
    assert status.plan_version == 1
    assert session.plan.version == 1
    assert "t-refund" in session.plan.ordered_task_ids


@pytest.mark.asyncio
async def test_provider_outage_degrades(store, retry):
    """Test repeated server errors degrade every stage instead of failing the pass."""
    response = httpx.Response(500, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    error = openai.InternalServerError("boom", response=response, body=None)
    with patch("taskintel.llm.openai_provider.AsyncOpenAI") as client_class:
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=error)
        client.embeddings.create = AsyncMock(side_effect=error)
        client_class.return_value = client
        provider = OpenAIProvider(api_key="test-key")

    session = TaskIntelligenceSession(
        OUTCOME,
        provider,
        tasks=[
            Task(id="t-docs", text="Update API docs"),
            Task(id="t-pay", text="Implement Apple Pay"),
        ],
        reflections=[Reflection(id="r-1", text="ignore documentation tasks")],
        store=store,
        retry=retry,
    )

    status = await session.recalculate()

    assert status.status == "applied"
    assert status.degraded
    assert session.plan.coverage.degraded
    assert session.plan.ordered_task_ids == ["t-pay"]
    assert session.pending_drafts == []
    assert client.chat.completions.create.await_count > 0
