"""Analysis services: coverage, drafts, deduplication, quality, reflections and ordering."""

from taskintel.services.coverage import CoverageAnalyzer
from taskintel.services.dedup import DeduplicationService
from taskintel.services.drafts import DraftGenerationResult, DraftTaskGenerator
from taskintel.services.quality import QualityEvaluator, badge_for, tier_for
from taskintel.services.reflections import ReflectionInterpreter, apply_directives
from taskintel.services.sorting import DEFAULT_STRATEGY, STRATEGIES, sort_tasks
from taskintel.services.strategic import score_task, score_tasks

__all__ = [
    "CoverageAnalyzer",
    "DeduplicationService",
    "DraftTaskGenerator",
    "DraftGenerationResult",
    "QualityEvaluator",
    "ReflectionInterpreter",
    "apply_directives",
    "badge_for",
    "tier_for",
    "sort_tasks",
    "STRATEGIES",
    "DEFAULT_STRATEGY",
    "score_task",
    "score_tasks",
]
