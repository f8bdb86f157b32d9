"""Coverage analysis: how much of the outcome the task set addresses."""

from typing import List, Optional, Sequence, Tuple

import structlog

from taskintel.errors import InputValidationError
from taskintel.llm.prompts import PromptTemplates
from taskintel.llm.retry import RetryController
from taskintel.llm.schemas import CoverageResponse
from taskintel.models import CoverageResult, IntelligenceConfig, Task
from taskintel.services.reflections import tokenize

logger = structlog.get_logger(__name__)


def select_considered(tasks: Sequence[Task], limit: int) -> Tuple[List[Task], bool]:
    """Bound the task set to ``limit`` tasks by current priority.

    Unscored tasks rank last; ties break by id.

    Returns:
        Tuple of (tasks considered, whether the set was truncated)
    """
    if len(tasks) <= limit:
        return list(tasks), False

    def key(task: Task):
        priority = task.strategic_score.priority if task.strategic_score else -1.0
        return (-priority, task.id)

    return sorted(tasks, key=key)[:limit], True


def keyword_coverage(outcome: str, task_texts: Sequence[str]) -> Tuple[int, List[str]]:
    """Share of outcome keywords that appear in any task text.

    Returns:
        Tuple of (percentage, outcome keywords not found in any task)
    """
    outcome_keywords: List[str] = []
    for token in tokenize(outcome):
        if len(token) >= 3 and not token.isdigit() and token not in outcome_keywords:
            outcome_keywords.append(token)
    if not outcome_keywords:
        return 0, []

    task_tokens = set()
    for text in task_texts:
        task_tokens.update(tokenize(text))

    def covered(keyword: str) -> bool:
        return any(t.startswith(keyword) or keyword.startswith(t) for t in task_tokens if len(t) >= 3)

    missing = [k for k in outcome_keywords if not covered(k)]
    percentage = round(100 * (len(outcome_keywords) - len(missing)) / len(outcome_keywords))
    return percentage, missing


class CoverageAnalyzer:
    """Estimates the fraction of the outcome addressed by the current tasks."""

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

    async def analyze(self, outcome: str, tasks: Sequence[Task]) -> CoverageResult:
        """Estimate coverage of ``outcome`` by ``tasks``.

        One inference call per analysis; on failure after retries, a
        keyword-overlap heuristic produces a degraded result.

        Args:
            outcome: Outcome text
            tasks: Active tasks

        Returns:
            CoverageResult

        Raises:
            InputValidationError: If the outcome is empty
        """
        if not outcome or not outcome.strip():
            raise InputValidationError("Outcome text is required for coverage analysis")

        considered, partial = select_considered(tasks, self.config.coverage_max_tasks)
        texts = [t.text for t in considered]
        low_confidence = len(considered) < self.config.coverage_min_tasks

        def fallback() -> CoverageResponse:
            percentage, missing = keyword_coverage(outcome, texts)
            return CoverageResponse(
                coverage_percentage=percentage,
                missing_areas=missing[: self.config.max_missing_areas],
            )

        attempted = await self.retry.call(
            lambda: self.provider.complete(
                self.prompts.coverage_analysis(outcome, texts), CoverageResponse
            ),
            fallback,
            name="coverage_analysis",
        )
        response = attempted.value

        result = CoverageResult(
            percentage=response.coverage_percentage,
            task_count_considered=len(considered),
            missing_areas=[a.strip() for a in response.missing_areas if a.strip()],
            low_confidence=low_confidence,
            partial=partial,
            degraded=attempted.degraded,
        )
        logger.info(
            "coverage_analyzed",
            percentage=result.percentage,
            task_count=len(considered),
            low_confidence=low_confidence,
            partial=partial,
            degraded=attempted.degraded,
        )
        return result
