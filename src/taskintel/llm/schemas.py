"""Response schemas that structured completions must validate against."""

from typing import List

from pydantic import BaseModel, Field


class CoverageResponse(BaseModel):
    """Coverage estimate returned by the model."""

    coverage_percentage: int = Field(..., ge=0, le=100)
    missing_areas: List[str] = Field(default_factory=list, max_length=5)


class DraftProposal(BaseModel):
    """One proposed task."""

    task_text: str = Field(..., min_length=10, max_length=200)
    estimated_hours: float = Field(..., ge=0.25, le=8.0)
    reasoning: str = Field("", max_length=300)
    confidence_score: float = Field(0.5, ge=0, le=1)


class DraftResponse(BaseModel):
    """Draft tasks proposed for one missing area."""

    draft_tasks: List[DraftProposal] = Field(default_factory=list)


class QualityResponse(BaseModel):
    """Quality assessment of one task."""

    clarity_score: float = Field(..., ge=0, le=1)
    verb_strength: str = Field("weak", pattern="^(strong|weak)$")
    improvement_suggestions: List[str] = Field(default_factory=list)


class ReflectionIntentResponse(BaseModel):
    """Interpretation of a reflection."""

    directive: str = Field(..., pattern="^(exclude|include|context)$")
    keywords: List[str] = Field(default_factory=list, max_length=10)
    summary: str = Field("", max_length=500)
