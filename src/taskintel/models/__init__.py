"""Data models for task intelligence."""

from taskintel.models.config import IntelligenceConfig, Settings
from taskintel.models.task import (
    AuditRecord,
    CoverageResult,
    DedupDecision,
    DirectiveKind,
    DraftStatus,
    DraftTask,
    Exclusion,
    PriorityPlan,
    QualityResult,
    QualityTier,
    Reflection,
    ReflectionDirective,
    StrategicScore,
    Task,
    TaskSource,
)

__all__ = [
    "Task",
    "TaskSource",
    "StrategicScore",
    "QualityTier",
    "QualityResult",
    "Reflection",
    "ReflectionDirective",
    "DirectiveKind",
    "CoverageResult",
    "DraftTask",
    "DraftStatus",
    "DedupDecision",
    "Exclusion",
    "PriorityPlan",
    "AuditRecord",
    "IntelligenceConfig",
    "Settings",
]
