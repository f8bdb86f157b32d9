"""Data models for tasks, reflections, drafts and computed artifacts."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from taskintel.similarity import fingerprint


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TaskSource(str, Enum):
    """Where a task came from."""

    MANUAL = "manual"
    GENERATED = "generated"


class QualityTier(str, Enum):
    """Categorical quality badge derived from a numeric score."""

    NEEDS_WORK = "needs-work"
    GOOD = "good"
    EXCELLENT = "excellent"


class StrategicScore(BaseModel):
    """Impact/effort/confidence-derived priority used by sort strategies."""

    model_config = ConfigDict(frozen=True)

    impact: float = Field(..., ge=0, le=10, description="Expected impact on the outcome (0-10)")
    effort: float = Field(..., ge=0.5, le=160, description="Estimated effort in hours")
    confidence: float = Field(..., ge=0, le=1, description="Confidence in the estimate")
    priority: float = Field(..., ge=0, le=100, description="Combined priority score")
    effort_source: str = Field("heuristic", description="extracted, heuristic or llm")
    impact_keywords: List[str] = Field(default_factory=list, description="Keywords that moved impact")


class Task(BaseModel):
    """A candidate task measured against the outcome."""

    id: str = Field(..., min_length=1, description="Unique, stable task id")
    text: str = Field(..., min_length=1, description="Task description")
    source: TaskSource = Field(TaskSource.MANUAL, description="manual or generated")
    quality_score: Optional[float] = Field(None, ge=0, le=100, description="Quality score once evaluated")
    quality_tier: Optional[QualityTier] = Field(None, description="Tier derived from quality_score")
    strategic_score: Optional[StrategicScore] = Field(None, description="Strategic score, if computed")
    is_manual: bool = Field(True, description="Whether the user authored the task")
    document_id: Optional[str] = Field(None, description="Provenance scope of the task")
    deduplication_hash: str = Field("", description="Fingerprint of the normalized text")

    @model_validator(mode="after")
    def _fill_hash(self) -> "Task":
        if not self.deduplication_hash:
            self.deduplication_hash = fingerprint(self.text)
        return self

    class Config:
        """Pydantic config."""
        json_schema_extra = {
            "example": {
                "id": "t-1",
                "text": "Implement Apple Pay",
                "source": "manual",
                "is_manual": True,
                "document_id": "doc-payments",
            }
        }


class Reflection(BaseModel):
    """A free-text steering note attached to the session."""

    id: str = Field(..., min_length=1, description="Reflection id")
    text: str = Field(..., min_length=1, description="Reflection text")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    recency_weight: float = Field(1.0, ge=0, le=1, description="Weight recomputed every scoring pass")
    archived: bool = Field(False, description="Superseded reflections are archived, not edited")


class DirectiveKind(str, Enum):
    """Interpretation of a reflection."""

    EXCLUDE = "exclude"
    INCLUDE = "include"
    CONTEXT = "context"


class ReflectionDirective(BaseModel):
    """Interpreted form of a reflection."""

    model_config = ConfigDict(frozen=True)

    reflection_id: str
    kind: DirectiveKind
    topic_keywords: List[str] = Field(default_factory=list)
    weight: float = Field(1.0, ge=0, le=1)
    source_text: str = ""
    degraded: bool = Field(False, description="Interpreted by pattern fallback")


class CoverageResult(BaseModel):
    """Estimated fraction of the outcome addressed by the task set."""

    model_config = ConfigDict(frozen=True)

    percentage: int = Field(..., ge=0, le=100)
    task_count_considered: int = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=utcnow)
    missing_areas: List[str] = Field(default_factory=list)
    low_confidence: bool = Field(False, description="Fewer tasks than the minimum were available")
    partial: bool = Field(False, description="Only a bounded subset of tasks was considered")
    degraded: bool = Field(False, description="Computed by the keyword heuristic")


class DraftStatus(str, Enum):
    """Lifecycle of a draft task."""

    GENERATED = "generated"
    KEPT = "kept"
    SUPPRESSED = "suppressed"
    ACCEPTED = "accepted"
    DISCARDED = "discarded"


class DraftTask(BaseModel):
    """An AI-proposed candidate awaiting deduplication and acceptance."""

    id: str
    text: str = Field(..., min_length=1)
    gap_area: str = Field(..., description="Missing area this draft addresses")
    reasoning: str = ""
    estimated_hours: Optional[float] = Field(None, ge=0.25, le=160)
    confidence_score: float = Field(0.5, ge=0, le=1)
    document_id: Optional[str] = None
    deduplication_hash: str = ""
    nearest_task_id: Optional[str] = None
    nearest_similarity: Optional[float] = Field(None, ge=0, le=1)
    borderline: bool = False
    status: DraftStatus = DraftStatus.GENERATED

    @model_validator(mode="after")
    def _fill_hash(self) -> "DraftTask":
        if not self.deduplication_hash:
            self.deduplication_hash = fingerprint(self.text)
        return self

    def to_task(self) -> Task:
        """Promote the draft to a task."""
        return Task(
            id=self.id,
            text=self.text,
            source=TaskSource.GENERATED,
            is_manual=False,
            document_id=self.document_id,
            deduplication_hash=self.deduplication_hash,
        )


class DedupDecision(BaseModel):
    """Accept/suppress decision for one draft."""

    model_config = ConfigDict(frozen=True)

    draft_id: str
    draft_text: str
    is_duplicate: bool
    matched_task_id: Optional[str] = None
    similarity: Optional[float] = None
    borderline: bool = False
    reason: str = ""


class QualityResult(BaseModel):
    """Quality evaluation for one task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    score: float = Field(..., ge=0, le=100)
    tier: QualityTier
    degraded: bool = False
    suggestions: List[str] = Field(default_factory=list)


class Exclusion(BaseModel):
    """A task removed from the active set by a reflection."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    reason: str
    reflection_id: Optional[str] = None


class PriorityPlan(BaseModel):
    """Ordered task ids for one strategy; replaced as a whole, never patched."""

    model_config = ConfigDict(frozen=True)

    version: int = Field(..., ge=0)
    strategy: str
    ordered_task_ids: List[str] = Field(default_factory=list)
    excluded: List[Exclusion] = Field(default_factory=list)
    coverage: Optional[CoverageResult] = None
    created_at: datetime = Field(default_factory=utcnow)


class AuditRecord(BaseModel):
    """Additive-only audit entry appended per coverage/quality pass."""

    operation: str
    duration_ms: int = Field(..., ge=0)
    task_count: int = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=utcnow)
    degraded: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
