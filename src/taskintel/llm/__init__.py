"""Inference boundary: providers, retry controller and caching."""

from taskintel.llm.base import BaseInferenceProvider
from taskintel.llm.cache import EmbeddingCache
from taskintel.llm.openai_provider import OpenAIProvider
from taskintel.llm.retry import Attempted, RetryController, RetryPolicy

__all__ = [
    "BaseInferenceProvider",
    "OpenAIProvider",
    "EmbeddingCache",
    "RetryController",
    "RetryPolicy",
    "Attempted",
]
