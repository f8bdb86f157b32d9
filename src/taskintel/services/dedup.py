"""Deduplication of generated drafts against existing tasks."""

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple, Union

import structlog

from taskintel.models import DedupDecision, DraftStatus, DraftTask, IntelligenceConfig, Task
from taskintel.similarity import SimilarityEngine

logger = structlog.get_logger(__name__)

Candidate = Union[Task, DraftTask]

# Absorbs float noise in cosine; real scores below a threshold stay below it
_TOLERANCE = 1e-9


class DeduplicationService:
    """Owns accept/suppress decisions for drafts.

    Fingerprint matches against any candidate are certain duplicates; semantic
    comparison is limited to candidates in the draft's provenance scope
    (``document_id``). Decisions inside one scope are serialized so each draft
    receives exactly one decision; unrelated scopes proceed in parallel.
    """

    def __init__(
        self,
        similarity: SimilarityEngine,
        config: Optional[IntelligenceConfig] = None,
    ) -> None:
        """Initialize the service.

        Args:
            similarity: Similarity engine used for semantic comparison
            config: Thresholds (defaults to IntelligenceConfig())
        """
        self.similarity = similarity
        self.config = config or IntelligenceConfig()
        self._locks: Dict[Optional[str], asyncio.Lock] = {}
        self._decided: Dict[str, DedupDecision] = {}
        self.audit_log: List[DedupDecision] = []

    def _lock_for(self, scope: Optional[str]) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope] = lock
        return lock

    @staticmethod
    def scope_candidates(draft: DraftTask, candidates: Sequence[Candidate]) -> List[Candidate]:
        """Candidates sharing the draft's provenance scope.

        Drafts without a scope compare against unscoped candidates, or all
        candidates when none is unscoped.
        """
        scoped = [c for c in candidates if c.document_id == draft.document_id]
        if scoped or draft.document_id is not None:
            return scoped
        return list(candidates)

    async def check_duplicate(
        self, draft: DraftTask, existing_tasks: Sequence[Candidate]
    ) -> DedupDecision:
        """Decide whether ``draft`` duplicates an existing task.

        Repeated calls for the same draft and candidates return the same
        decision.

        Args:
            draft: Generated draft
            existing_tasks: Tasks (or earlier drafts) to compare against

        Returns:
            The decision, also appended to ``audit_log``
        """
        async with self._lock_for(draft.document_id):
            decision = await self._decide(
                draft, existing_tasks, self.scope_candidates(draft, existing_tasks)
            )

        self._record(decision)
        return decision

    async def _decide(
        self,
        draft: DraftTask,
        everything: Sequence[Candidate],
        candidates: Sequence[Candidate],
    ) -> DedupDecision:
        # Fingerprint matches are certain duplicates regardless of scope
        for candidate in everything:
            if candidate.id != draft.id and candidate.deduplication_hash == draft.deduplication_hash:
                return DedupDecision(
                    draft_id=draft.id,
                    draft_text=draft.text,
                    is_duplicate=True,
                    matched_task_id=candidate.id,
                    similarity=1.0,
                    reason="fingerprint_match",
                )

        best: Tuple[Optional[str], Optional[float]] = (None, None)
        unavailable = False
        for candidate in candidates:
            if candidate.id == draft.id:
                continue
            score = await self.similarity.similarity(draft.text, candidate.text)
            if score is None:
                unavailable = True
                continue
            if best[1] is None or score > best[1]:
                best = (candidate.id, score)

        matched_id, score = best
        if score is None:
            return DedupDecision(
                draft_id=draft.id,
                draft_text=draft.text,
                is_duplicate=False,
                reason="similarity_unavailable" if unavailable else "no_candidates",
            )

        if score >= self.config.duplicate_threshold - _TOLERANCE:
            return DedupDecision(
                draft_id=draft.id,
                draft_text=draft.text,
                is_duplicate=True,
                matched_task_id=matched_id,
                similarity=round(score, 4),
                reason="similarity_above_threshold",
            )

        borderline = score >= self.config.borderline_threshold - _TOLERANCE
        return DedupDecision(
            draft_id=draft.id,
            draft_text=draft.text,
            is_duplicate=False,
            matched_task_id=matched_id,
            similarity=round(score, 4),
            borderline=borderline,
            reason="borderline" if borderline else "below_threshold",
        )

    def _record(self, decision: DedupDecision) -> None:
        self.audit_log.append(decision)
        self._decided[decision.draft_id] = decision
        logger.info(
            "dedup_decision",
            draft_id=decision.draft_id,
            draft=decision.draft_text,
            matched_task_id=decision.matched_task_id,
            similarity=decision.similarity,
            duplicate=decision.is_duplicate,
            borderline=decision.borderline,
            reason=decision.reason,
        )

    def decision_for(self, draft_id: str) -> Optional[DedupDecision]:
        """Latest decision recorded for a draft."""
        return self._decided.get(draft_id)

    async def filter_drafts(
        self, drafts: Sequence[DraftTask], existing_tasks: Sequence[Task]
    ) -> Tuple[List[DraftTask], List[DraftTask]]:
        """Split a batch of drafts into kept and suppressed.

        Drafts are also compared against earlier kept drafts of the same
        scope, so one batch never proposes the same task twice.

        Returns:
            Tuple of (kept drafts, suppressed drafts), with decision fields set
        """
        by_scope: Dict[Optional[str], List[DraftTask]] = {}
        for draft in drafts:
            by_scope.setdefault(draft.document_id, []).append(draft)

        async def run_scope(scope_drafts: List[DraftTask]) -> List[DraftTask]:
            kept_in_scope: List[DraftTask] = []
            results = []
            for draft in scope_drafts:
                decision = await self.check_duplicate(draft, [*existing_tasks, *kept_in_scope])
                updated = apply_decision(draft, decision)
                if updated.status == DraftStatus.KEPT:
                    kept_in_scope.append(updated)
                results.append(updated)
            return results

        scoped_results = await asyncio.gather(*(run_scope(d) for d in by_scope.values()))

        decided = {d.id: d for batch in scoped_results for d in batch}
        ordered = [decided[d.id] for d in drafts]
        kept = [d for d in ordered if d.status == DraftStatus.KEPT]
        suppressed = [d for d in ordered if d.status == DraftStatus.SUPPRESSED]
        return kept, suppressed


def apply_decision(draft: DraftTask, decision: DedupDecision) -> DraftTask:
    """Draft copy carrying the decision's match, score and status."""
    return draft.model_copy(
        update={
            "nearest_task_id": decision.matched_task_id,
            "nearest_similarity": decision.similarity,
            "borderline": decision.borderline,
            "status": DraftStatus.SUPPRESSED if decision.is_duplicate else DraftStatus.KEPT,
        }
    )
