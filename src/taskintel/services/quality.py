"""Task quality evaluation with a per-item heuristic fallback."""

import asyncio
import re
from typing import Dict, List, Optional, Sequence

import structlog

from taskintel.llm.prompts import PromptTemplates
from taskintel.llm.retry import RetryController
from taskintel.llm.schemas import QualityResponse
from taskintel.models import IntelligenceConfig, QualityResult, QualityTier, Task

logger = structlog.get_logger(__name__)

STRONG_VERBS = {
    "build", "create", "develop", "implement", "test", "deploy", "fix",
    "configure", "setup", "integrate", "launch", "ship", "write", "add",
}

_NUMBER = re.compile(r"\d+")
_ACCEPTANCE = re.compile(r"acceptance|criteria|target|goal|require", re.IGNORECASE)
_COMPOUND = re.compile(r"\b(and|then|also)\b", re.IGNORECASE)

BADGES: Dict[QualityTier, Dict[str, str]] = {
    QualityTier.EXCELLENT: {"label": "Clear", "color": "green"},
    QualityTier.GOOD: {"label": "Review", "color": "yellow"},
    QualityTier.NEEDS_WORK: {"label": "Needs Work", "color": "red"},
}


def tier_for(score: float, config: Optional[IntelligenceConfig] = None) -> QualityTier:
    """Map a 0-100 score to its tier (inclusive lower bounds)."""
    config = config or IntelligenceConfig()
    if score >= config.excellent_cutoff:
        return QualityTier.EXCELLENT
    if score >= config.good_cutoff:
        return QualityTier.GOOD
    return QualityTier.NEEDS_WORK


def badge_for(tier: QualityTier) -> Dict[str, str]:
    """Derived badge (label and colour) for a tier."""
    return dict(BADGES[tier])


def heuristic_quality(text: str) -> QualityResponse:
    """Length, verb and specificity heuristics on a 0-1 clarity scale."""
    length = len(text)
    if length < 10:
        score = 0.4
    elif length <= 30:
        score = 0.7
    elif length <= 80:
        score = 0.9
    else:
        score = 0.4

    words = text.strip().lower().split()
    first_word = words[0] if words else ""
    verb_strength = "strong" if first_word in STRONG_VERBS else "weak"
    if verb_strength == "strong":
        score += 0.1

    has_metrics = bool(_NUMBER.search(text))
    if has_metrics:
        score += 0.2

    suggestions: List[str] = []
    if verb_strength == "weak":
        suggestions.append("Use a more specific action verb")
    if not has_metrics:
        suggestions.append("Add specific metrics or measurements")
    if not _ACCEPTANCE.search(text):
        suggestions.append("Define clear acceptance criteria")
    if length > 80 or _COMPOUND.search(text) or len(words) > 10:
        suggestions.append("Consider breaking this task into smaller subtasks")

    return QualityResponse(
        clarity_score=round(min(score, 1.0), 4),
        verb_strength=verb_strength,
        improvement_suggestions=suggestions,
    )


def apply_quality(task: Task, result: QualityResult) -> Task:
    """Task copy carrying the evaluated score and tier."""
    return task.model_copy(update={"quality_score": result.score, "quality_tier": result.tier})


class QualityEvaluator:
    """Scores tasks against clarity, specificity and granularity rubrics."""

    def __init__(
        self,
        provider,
        retry: Optional[RetryController] = None,
        config: Optional[IntelligenceConfig] = None,
    ) -> None:
        self.provider = provider
        self.retry = retry or RetryController()
        self.config = config or IntelligenceConfig()
        self.prompts = PromptTemplates()

    async def evaluate(self, task: Task, outcome: str) -> QualityResult:
        """Evaluate one task.

        Args:
            task: Task to evaluate
            outcome: Outcome the task contributes to

        Returns:
            QualityResult, degraded when the heuristic was used
        """
        attempted = await self.retry.call(
            lambda: self.provider.complete(
                self.prompts.quality_evaluation(task.text, outcome), QualityResponse
            ),
            lambda: heuristic_quality(task.text),
            name="quality_evaluation",
        )
        response = attempted.value
        score = round(response.clarity_score * 100, 2)

        return QualityResult(
            task_id=task.id,
            score=score,
            tier=tier_for(score, self.config),
            degraded=attempted.degraded,
            suggestions=response.improvement_suggestions,
        )

    def heuristic_result(self, task: Task) -> QualityResult:
        """Degraded result computed without inference."""
        response = heuristic_quality(task.text)
        score = round(response.clarity_score * 100, 2)
        return QualityResult(
            task_id=task.id,
            score=score,
            tier=tier_for(score, self.config),
            degraded=True,
            suggestions=response.improvement_suggestions,
        )

    async def evaluate_batch(self, tasks: Sequence[Task], outcome: str) -> List[QualityResult]:
        """Evaluate many tasks under the concurrency budget.

        Tasks are processed in chunks; within a chunk at most
        ``max_concurrency`` requests are in flight. A failing item degrades to
        the heuristic without affecting the rest.

        Args:
            tasks: Tasks to evaluate
            outcome: Outcome text

        Returns:
            Results in input order
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(task: Task) -> QualityResult:
            async with semaphore:
                return await self.evaluate(task, outcome)

        results: List[QualityResult] = []
        chunk_size = self.config.quality_chunk_size
        for i in range(0, len(tasks), chunk_size):
            chunk = tasks[i : i + chunk_size]
            outcomes = await asyncio.gather(*(bounded(t) for t in chunk), return_exceptions=True)
            for task, outcome_or_error in zip(chunk, outcomes):
                if isinstance(outcome_or_error, Exception):
                    logger.error(
                        "quality_item_failed", task_id=task.id, error=str(outcome_or_error)
                    )
                    results.append(self.heuristic_result(task))
                else:
                    results.append(outcome_or_error)

        degraded = sum(1 for r in results if r.degraded)
        logger.info("quality_batch_evaluated", task_count=len(results), degraded=degraded)
        return results
