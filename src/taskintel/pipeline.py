"""Session facade tying the analysis services into one recalculation pass."""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Dict, List, Optional, Sequence, Set

import structlog
from pydantic import BaseModel, ConfigDict, Field

from taskintel.errors import InputValidationError, PersistenceUnavailable
from taskintel.llm.cache import EmbeddingCache
from taskintel.llm.retry import RetryController, RetryPolicy
from taskintel.models import (
    AuditRecord,
    CoverageResult,
    DirectiveKind,
    DraftStatus,
    DraftTask,
    Exclusion,
    IntelligenceConfig,
    PriorityPlan,
    QualityResult,
    Reflection,
    Task,
)
from taskintel.recalc import RecalcState, RecalculationController
from taskintel.services.coverage import CoverageAnalyzer
from taskintel.services.dedup import DeduplicationService
from taskintel.services.drafts import DraftTaskGenerator
from taskintel.services.quality import QualityEvaluator, apply_quality
from taskintel.services.reflections import (
    ReflectionInterpreter,
    apply_directives,
    archive_reflection,
    weigh_reflections,
)
from taskintel.services.sorting import (
    DEFAULT_STRATEGY,
    get_strategy,
    normalize_strategy_name,
    sort_tasks,
)
from taskintel.services.strategic import score_tasks
from taskintel.similarity import SimilarityEngine
from taskintel.storage import InMemoryStore, RecordStore

logger = structlog.get_logger(__name__)


class RecalculationStatus(BaseModel):
    """Outcome of a recalculation request as seen by the caller."""

    model_config = ConfigDict(frozen=True)

    plan_version: int = Field(..., ge=0, description="Version of the plan now displayed")
    status: str = Field(..., description="applied or failed")
    trigger: str = Field("manual", description="What requested the recalculation")
    degraded: bool = Field(False, description="A heuristic fallback was used somewhere")
    retryable: bool = Field(False, description="The caller may retry")
    message: Optional[str] = Field(None, description="User-facing explanation")


class DraftDecisionSummary(BaseModel):
    """Result of applying a batch of draft decisions."""

    accepted: List[str] = Field(default_factory=list)
    discarded: List[str] = Field(default_factory=list)
    applied: bool = True
    message: Optional[str] = None


@dataclass
class PlanComputation:
    """Everything one pass computed, before it is published."""

    tasks: List[Task]
    exclusions: List[Exclusion]
    coverage: CoverageResult
    quality: List[QualityResult]
    drafts: List[DraftTask] = field(default_factory=list)
    suppressed: List[DraftTask] = field(default_factory=list)
    degraded: bool = False
    trigger: str = "manual"


class TaskIntelligenceSession:
    """One outcome with its tasks and reflections, analysed on demand.

    The session owns the current :class:`PriorityPlan`. Every published plan
    is a new frozen object with a higher version; readers never observe a
    partially updated plan.
    """

    def __init__(
        self,
        outcome: str,
        provider,
        tasks: Sequence[Task] = (),
        reflections: Sequence[Reflection] = (),
        store: Optional[RecordStore] = None,
        config: Optional[IntelligenceConfig] = None,
        strategy: str = DEFAULT_STRATEGY,
        retry: Optional[RetryController] = None,
        cache: Optional[EmbeddingCache] = None,
        session_id: str = "default",
    ) -> None:
        """Initialize the session.

        Args:
            outcome: Goal the tasks are measured against
            provider: Inference provider
            tasks: Initial tasks (ids must be unique)
            reflections: Initial reflections
            store: Persistence boundary (in-memory if omitted)
            config: Thresholds and budgets
            strategy: Initial sorting strategy
            retry: Retry controller shared by all inference calls
            cache: Optional embedding cache
            session_id: Id under which the plan is persisted

        Raises:
            InputValidationError: On duplicate task ids or an unknown strategy
        """
        self.config = config or IntelligenceConfig()
        self.outcome = outcome
        self.session_id = session_id
        self.store = store or InMemoryStore()
        self.strategy = get_strategy(strategy).name

        self._tasks: Dict[str, Task] = {}
        for task in tasks:
            if task.id in self._tasks:
                raise InputValidationError(f"Duplicate task id: {task.id}")
            self._tasks[task.id] = task
        self._reflections: List[Reflection] = list(reflections)

        self.retry = retry or RetryController(RetryPolicy.from_config(self.config))
        self.similarity = SimilarityEngine(provider, self.retry, cache)
        self.dedup = DeduplicationService(self.similarity, self.config)
        self.interpreter = ReflectionInterpreter(provider, self.retry)
        self.coverage_analyzer = CoverageAnalyzer(provider, self.retry, self.config)
        self.quality_evaluator = QualityEvaluator(provider, self.retry, self.config)
        self.draft_generator = DraftTaskGenerator(
            provider, self.dedup, self.interpreter, self.retry, self.config
        )

        self._plan: Optional[PriorityPlan] = None
        self._scored: List[Task] = []
        self._quality: Dict[str, QualityResult] = {}
        self._drafts: Dict[str, DraftTask] = {}
        self._suppressed: List[DraftTask] = []
        self._discarded_hashes: Set[str] = set()
        self._next_trigger = "edit"

        # Manual and debounced passes share one controller, so at most one runs at a time
        self.controller: RecalculationController[PlanComputation] = RecalculationController(
            self._compute_next,
            self._publish,
            debounce_ms=self.config.debounce_ms,
        )

    # ------------------------------------------------------------------
    # Read access

    @property
    def plan(self) -> Optional[PriorityPlan]:
        """Currently published plan."""
        return self._plan

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks.values())

    @property
    def scored_tasks(self) -> List[Task]:
        """Tasks of the last published pass, with scores attached."""
        return list(self._scored)

    @property
    def reflections(self) -> List[Reflection]:
        return list(self._reflections)

    @property
    def pending_drafts(self) -> List[DraftTask]:
        return [d for d in self._drafts.values() if d.status == DraftStatus.KEPT]

    @property
    def suppressed_drafts(self) -> List[DraftTask]:
        """Drafts suppressed as duplicates in the last pass (audit only)."""
        return list(self._suppressed)

    def quality_for(self, task_id: str) -> Optional[QualityResult]:
        return self._quality.get(task_id)

    # ------------------------------------------------------------------
    # Edits

    def _edited(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Without a loop the next explicit recalculate() picks the edit up
            return
        self.controller.notify_edit()

    def set_outcome(self, outcome: str) -> None:
        if not outcome or not outcome.strip():
            raise InputValidationError("Outcome text must not be empty")
        self.outcome = outcome
        self._edited()

    def add_task(self, task: Task) -> None:
        if task.id in self._tasks:
            raise InputValidationError(f"Duplicate task id: {task.id}")
        self._tasks[task.id] = task
        self._edited()

    def edit_task(self, task_id: str, text: str) -> Task:
        """Replace a task's text; scores are recomputed on the next pass."""
        task = self._require_task(task_id)
        updated = Task(
            id=task.id,
            text=text,
            source=task.source,
            is_manual=task.is_manual,
            document_id=task.document_id,
        )
        self._tasks[task_id] = updated
        self._edited()
        return updated

    def remove_task(self, task_id: str) -> None:
        self._require_task(task_id)
        del self._tasks[task_id]
        self._edited()

    def add_reflection(self, text: str, reflection_id: Optional[str] = None) -> Reflection:
        reflection = Reflection(id=reflection_id or str(uuid.uuid4()), text=text)
        self._reflections.append(reflection)
        self._edited()
        return reflection

    def supersede_reflection(self, reflection_id: str, text: str) -> Reflection:
        """Archive a reflection and add its replacement."""
        for i, reflection in enumerate(self._reflections):
            if reflection.id == reflection_id and not reflection.archived:
                archived, replacement = archive_reflection(reflection, text, str(uuid.uuid4()))
                self._reflections[i] = archived
                self._reflections.append(replacement)
                self._edited()
                return replacement
        raise InputValidationError(f"Unknown reflection id: {reflection_id}")

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise InputValidationError(f"Unknown task id: {task_id}")
        return task

    # ------------------------------------------------------------------
    # Recalculation

    def _compute_next(self) -> Awaitable[PlanComputation]:
        trigger, self._next_trigger = self._next_trigger, "edit"
        return self._compute(trigger)

    def _validate(self) -> None:
        if not self.outcome or not self.outcome.strip():
            raise InputValidationError("Outcome text must not be empty")

    async def _compute(self, trigger: str) -> PlanComputation:
        """Run one full analysis pass over a snapshot of the inputs."""
        self._validate()
        outcome = self.outcome
        tasks = list(self._tasks.values())
        reflections = weigh_reflections(self._reflections)

        directives = await self.interpreter.interpret_all(reflections)
        applied = apply_directives(tasks, directives)
        scored = score_tasks(applied.active, outcome, applied.boosts)

        (coverage, coverage_ms), (quality, quality_ms) = await asyncio.gather(
            _timed(self.coverage_analyzer.analyze(outcome, scored)),
            _timed(self.quality_evaluator.evaluate_batch(scored, outcome)),
        )
        self._audit("coverage", coverage_ms, coverage.task_count_considered, coverage.degraded, {
            "percentage": coverage.percentage,
            "low_confidence": coverage.low_confidence,
            "partial": coverage.partial,
        })
        quality_degraded = sum(1 for q in quality if q.degraded)
        self._audit("quality", quality_ms, len(quality), quality_degraded > 0, {
            "degraded_items": quality_degraded,
        })

        by_id = {q.task_id: q for q in quality}
        scored = [apply_quality(t, by_id[t.id]) if t.id in by_id else t for t in scored]

        computation = PlanComputation(
            tasks=scored,
            exclusions=applied.exclusions,
            coverage=coverage,
            quality=quality,
            degraded=coverage.degraded or quality_degraded > 0,
            trigger=trigger,
        )

        if coverage.percentage < self.config.gap_threshold and coverage.missing_areas:
            generated = await self.draft_generator.generate_drafts(
                outcome, reflections, tasks, coverage.missing_areas, directives=directives
            )
            computation.drafts = [
                d for d in generated.drafts if d.deduplication_hash not in self._discarded_hashes
            ]
            computation.suppressed = generated.suppressed
            computation.degraded = computation.degraded or bool(generated.degraded_areas)
            self._audit("drafts", generated.duration_ms, len(tasks), bool(generated.degraded_areas), {
                "kept": len(generated.drafts),
                "suppressed": len(generated.suppressed),
            })

        logger.info(
            "recalculation_computed",
            trigger=trigger,
            active=len(scored),
            excluded=len(applied.exclusions),
            coverage=coverage.percentage,
            drafts=len(computation.drafts),
            degraded=computation.degraded,
            focus_directives=sum(1 for d in directives if d.kind == DirectiveKind.INCLUDE),
        )
        return computation

    def _audit(
        self, operation: str, duration_ms: int, task_count: int, degraded: bool, details: dict
    ) -> None:
        self.store.append_audit(
            AuditRecord(
                operation=operation,
                duration_ms=duration_ms,
                task_count=task_count,
                degraded=degraded,
                details=details,
            )
        )

    def _next_plan(self, tasks: Sequence[Task], strategy: str, exclusions, coverage) -> PriorityPlan:
        version = self._plan.version + 1 if self._plan else 1
        return PriorityPlan(
            version=version,
            strategy=strategy,
            ordered_task_ids=sort_tasks(tasks, strategy),
            excluded=list(exclusions),
            coverage=coverage,
        )

    def _publish(self, computation: PlanComputation) -> PriorityPlan:
        """Persist and swap in the plan for a computation.

        The store is written before the reference is swapped, so a store
        failure leaves the previous plan in place.
        """
        plan = self._next_plan(
            computation.tasks, self.strategy, computation.exclusions, computation.coverage
        )
        for task in computation.tasks:
            self.store.write("task", task.id, task)
        for reflection in self._reflections:
            self.store.write("reflection", reflection.id, reflection)
        self.store.write("plan", self.session_id, plan)

        self._plan = plan
        self._scored = computation.tasks
        self._quality = {q.task_id: q for q in computation.quality}
        self._drafts = {d.id: d for d in computation.drafts}
        self._suppressed = computation.suppressed

        logger.info(
            "plan_published",
            version=plan.version,
            strategy=plan.strategy,
            tasks=len(plan.ordered_task_ids),
            excluded=len(plan.excluded),
        )
        return plan

    async def recalculate(self, trigger: str = "manual") -> RecalculationStatus:
        """Run a full pass now and publish its plan.

        The pass goes through the session's recalculation controller, so it
        never overlaps a debounced pass. If an edit arrives while it is in
        flight, its result is discarded and the status reports the pass that
        picked the edit up.

        Args:
            trigger: Label for what requested the pass

        Returns:
            RecalculationStatus; persistence failures yield a failed, retryable
            status and keep the previous plan

        Raises:
            InputValidationError: If the inputs are malformed
        """
        self._validate()
        self._next_trigger = trigger
        computation = await self.controller.run_now()
        if computation is None and self.controller.state != RecalcState.FAILED:
            await self.controller.flush()
            computation = self.controller.last_applied

        if self.controller.state == RecalcState.FAILED:
            error = self.controller.last_error
            if not isinstance(error, PersistenceUnavailable):
                raise error
            return RecalculationStatus(
                plan_version=self._plan.version if self._plan else 0,
                status="failed",
                trigger=trigger,
                retryable=True,
                message=f"Could not save results: {error}. Please retry.",
            )

        return RecalculationStatus(
            plan_version=self._plan.version if self._plan else 0,
            status="applied",
            trigger=trigger,
            degraded=computation.degraded if computation is not None else False,
        )

    def change_strategy(self, name: str) -> PriorityPlan:
        """Re-sort the last computed tasks under another strategy.

        No scores are recomputed and no inference is called.

        Raises:
            InputValidationError: If the strategy is unknown
            PersistenceUnavailable: If the plan cannot be saved
        """
        strategy = get_strategy(normalize_strategy_name(name)).name
        exclusions = self._plan.excluded if self._plan else []
        coverage = self._plan.coverage if self._plan else None

        plan = self._next_plan(self._scored, strategy, exclusions, coverage)
        self.store.write("plan", self.session_id, plan)
        self.strategy = strategy
        self._plan = plan
        logger.info("strategy_changed", strategy=strategy, version=plan.version)
        return plan

    # ------------------------------------------------------------------
    # Draft decisions

    def _require_draft(self, draft_id: str) -> DraftTask:
        draft = self._drafts.get(draft_id)
        if draft is None or draft.status != DraftStatus.KEPT:
            raise InputValidationError(f"No pending draft with id: {draft_id}")
        return draft

    def accept_draft(self, draft_id: str) -> Task:
        """Promote a pending draft to a task."""
        draft = self._require_draft(draft_id)
        task = draft.to_task()
        if task.id in self._tasks:
            raise InputValidationError(f"Duplicate task id: {task.id}")

        self.store.write("task", task.id, task)
        self._tasks[task.id] = task
        self._drafts[draft_id] = draft.model_copy(update={"status": DraftStatus.ACCEPTED})
        logger.info("draft_accepted", draft_id=draft_id, gap_area=draft.gap_area)
        self._edited()
        return task

    def discard_draft(self, draft_id: str) -> DraftTask:
        """Discard a pending draft; identical drafts are not proposed again."""
        draft = self._require_draft(draft_id)
        discarded = draft.model_copy(update={"status": DraftStatus.DISCARDED})
        self._drafts[draft_id] = discarded
        self._discarded_hashes.add(draft.deduplication_hash)
        logger.info("draft_discarded", draft_id=draft_id, gap_area=draft.gap_area)
        return discarded

    def apply_draft_decisions(self, accepted_ids: Sequence[str]) -> DraftDecisionSummary:
        """Accept the selected pending drafts and discard the rest.

        An empty selection is a guarded no-op: nothing is accepted or
        discarded and an informational message is returned.
        """
        if not accepted_ids:
            message = (
                "No drafts selected. Select at least one draft to apply, "
                "or discard them individually."
            )
            logger.info("draft_decisions_empty", pending=len(self.pending_drafts))
            return DraftDecisionSummary(applied=False, message=message)

        for draft_id in accepted_ids:
            self._require_draft(draft_id)

        summary = DraftDecisionSummary()
        selected = set(accepted_ids)
        for draft in self.pending_drafts:
            if draft.id in selected:
                self.accept_draft(draft.id)
                summary.accepted.append(draft.id)
            else:
                self.discard_draft(draft.id)
                summary.discarded.append(draft.id)

        summary.message = (
            f"Accepted {len(summary.accepted)} draft(s), "
            f"discarded {len(summary.discarded)}."
        )
        return summary


async def _timed(awaitable):
    started = time.monotonic()
    result = await awaitable
    return result, int((time.monotonic() - started) * 1000)
