"""taskintel - outcome coverage, draft tasks, quality scoring and prioritization."""

__version__ = "0.1.0"
