"""Configuration models."""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IntelligenceConfig(BaseSettings):
    """Tunable thresholds and budgets for the pipeline.

    Settings can be loaded from environment variables or .env file.
    All settings are prefixed with TASKINTEL_ (e.g., TASKINTEL_DUPLICATE_THRESHOLD).
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKINTEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Deduplication
    duplicate_threshold: float = Field(
        default=0.85, ge=0, le=1, description="Similarity at or above which a draft is a duplicate"
    )
    borderline_threshold: float = Field(
        default=0.80, ge=0, le=1, description="Similarity at or above which a kept draft is flagged"
    )

    # Quality tiers (inclusive lower bounds on a 0-100 scale)
    excellent_cutoff: float = Field(default=80, ge=0, le=100, description="Score for the excellent tier")
    good_cutoff: float = Field(default=50, ge=0, le=100, description="Score for the good tier")
    quality_chunk_size: int = Field(default=5, ge=1, description="Tasks per quality batch chunk")
    max_concurrency: int = Field(
        default=3, ge=1, description="Concurrent inference requests allowed per batch"
    )

    # Coverage
    coverage_min_tasks: int = Field(default=5, ge=0, description="Below this the result is low-confidence")
    coverage_max_tasks: int = Field(default=50, ge=1, description="Above this only the top-N are considered")
    gap_threshold: int = Field(default=70, ge=0, le=100, description="Coverage below which drafts are generated")

    # Drafts
    drafts_per_area: int = Field(default=3, ge=1, le=10, description="Drafts requested per missing area")
    max_missing_areas: int = Field(default=5, ge=1, le=5, description="Missing areas considered per pass")

    # Retry/backoff
    max_attempts: int = Field(default=3, ge=1, description="Attempts per inference call")
    backoff_initial_seconds: float = Field(default=2.0, ge=0, description="Delay before the second attempt")
    backoff_base: float = Field(default=2.0, ge=1, description="Exponential backoff base")
    call_timeout_seconds: float = Field(default=20.0, gt=0, description="Per-call timeout")

    # Recalculation
    debounce_ms: int = Field(default=300, ge=0, description="Debounce window for edits")

    @model_validator(mode="after")
    def _check_ordering(self) -> "IntelligenceConfig":
        if self.borderline_threshold > self.duplicate_threshold:
            raise ValueError("borderline_threshold must not exceed duplicate_threshold")
        if self.good_cutoff > self.excellent_cutoff:
            raise ValueError("good_cutoff must not exceed excellent_cutoff")
        return self


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Settings
    openai_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"

    # Caching
    enable_caching: bool = True
    cache_dir: str = "./.taskintel/cache"

    # Persistence
    store_dir: str = "./.taskintel/store"

    # Logging
    log_level: str = "INFO"
