"""Draft task generation to close coverage gaps."""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from taskintel.errors import InputValidationError
from taskintel.llm.prompts import PromptTemplates
from taskintel.llm.retry import RetryController
from taskintel.llm.schemas import DraftResponse
from taskintel.models import (
    DirectiveKind,
    DraftTask,
    Exclusion,
    IntelligenceConfig,
    Reflection,
    ReflectionDirective,
    Task,
)
from taskintel.services.dedup import DeduplicationService
from taskintel.services.reflections import (
    ReflectionInterpreter,
    apply_directives,
    matches_topic,
    topics_of,
    weigh_reflections,
)

logger = structlog.get_logger(__name__)

SUMMARY_LIMIT = 10


@dataclass
class DraftGenerationResult:
    """Drafts that survived deduplication plus the audit of suppressed ones."""

    drafts: List[DraftTask] = field(default_factory=list)
    suppressed: List[DraftTask] = field(default_factory=list)
    exclusions: List[Exclusion] = field(default_factory=list)
    degraded_areas: List[str] = field(default_factory=list)
    duration_ms: int = 0


class DraftTaskGenerator:
    """Proposes new tasks for missing areas, routed through deduplication."""

    def __init__(
        self,
        provider,
        dedup: DeduplicationService,
        interpreter: Optional[ReflectionInterpreter] = None,
        retry: Optional[RetryController] = None,
        config: Optional[IntelligenceConfig] = None,
    ) -> None:
        """Initialize the generator.

        Args:
            provider: Inference provider
            dedup: Deduplication service every draft passes through
            interpreter: Reflection interpreter (built from provider if omitted)
            retry: Retry controller guarding generation calls
            config: Pipeline configuration
        """
        self.provider = provider
        self.dedup = dedup
        self.retry = retry or RetryController()
        self.interpreter = interpreter or ReflectionInterpreter(provider, self.retry)
        self.config = config or IntelligenceConfig()
        self.prompts = PromptTemplates()

    async def generate_drafts(
        self,
        outcome: str,
        reflections: Sequence[Reflection],
        existing_tasks: Sequence[Task],
        missing_areas: Sequence[str],
        directives: Optional[Sequence[ReflectionDirective]] = None,
        document_id: Optional[str] = None,
    ) -> DraftGenerationResult:
        """Generate deduplicated drafts for the given missing areas.

        Args:
            outcome: Outcome text
            reflections: Reflections (any order; sorted most-recent-first here)
            existing_tasks: Current tasks
            missing_areas: Gaps to address, e.g. from coverage analysis
            directives: Pre-interpreted directives; interpreted here if omitted
            document_id: Provenance scope given to every draft; drafts are
                compared semantically only with tasks of the same scope

        Returns:
            DraftGenerationResult

        Raises:
            InputValidationError: If the outcome is empty
        """
        if not outcome or not outcome.strip():
            raise InputValidationError("Outcome text is required for draft generation")

        started = time.monotonic()
        weighted = weigh_reflections(reflections)
        if directives is None:
            directives = await self.interpreter.interpret_all(weighted)

        applied = apply_directives(existing_tasks, directives)
        avoid = topics_of(directives, DirectiveKind.EXCLUDE)
        focus = topics_of(directives, DirectiveKind.INCLUDE)

        # Most relevant tasks first in the compact summary.
        summary_tasks = sorted(
            applied.active,
            key=lambda t: (-applied.boosts.get(t.id, 0.0), t.id),
        )
        summary = [t.text for t in summary_tasks[:SUMMARY_LIMIT]]
        reflection_texts = [r.text for r in weighted]

        areas = [a for a in missing_areas if a.strip()][: self.config.max_missing_areas]
        generated = await asyncio.gather(
            *(
                self._generate_for_area(
                    outcome, area, summary, reflection_texts, avoid, focus, document_id
                )
                for area in areas
            )
        )

        result = DraftGenerationResult(exclusions=applied.exclusions)
        candidates: List[DraftTask] = []
        for area, drafts in zip(areas, generated):
            if drafts is None:
                result.degraded_areas.append(area)
                continue
            for draft in drafts:
                if avoid and matches_topic(draft.text, avoid):
                    logger.info("draft_avoided_topic", draft_id=draft.id, draft=draft.text)
                    continue
                candidates.append(draft)

        # Dedup against the full existing set, excluded tasks included.
        kept, suppressed = await self.dedup.filter_drafts(candidates, existing_tasks)
        result.drafts = kept
        result.suppressed = suppressed
        result.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info(
            "drafts_generated",
            areas=len(areas),
            kept=len(kept),
            suppressed=len(suppressed),
            degraded_areas=len(result.degraded_areas),
            duration_ms=result.duration_ms,
        )
        return result

    async def _generate_for_area(
        self,
        outcome: str,
        area: str,
        summary: List[str],
        reflection_texts: List[str],
        avoid: List[str],
        focus: List[str],
        document_id: Optional[str] = None,
    ) -> Optional[List[DraftTask]]:
        prompt = self.prompts.draft_generation(
            outcome,
            area,
            summary,
            reflection_texts,
            avoid,
            focus,
            max_drafts=self.config.drafts_per_area,
        )
        attempted = await self.retry.call(
            lambda: self.provider.complete(prompt, DraftResponse),
            lambda: None,
            name="draft_generation",
        )
        if attempted.value is None:
            return None

        proposals = attempted.value.draft_tasks[: self.config.drafts_per_area]
        return [
            DraftTask(
                id=str(uuid.uuid4()),
                text=p.task_text.strip(),
                gap_area=area,
                reasoning=p.reasoning.strip(),
                estimated_hours=p.estimated_hours,
                confidence_score=p.confidence_score,
                document_id=document_id,
            )
            for p in proposals
        ]
