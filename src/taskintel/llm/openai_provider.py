"""OpenAI inference provider implementation."""

import json
from typing import Any, List, Optional, Type

import structlog
from pydantic import ValidationError

try:
    import openai
    from openai import AsyncOpenAI
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False

from taskintel.errors import ExternalTimeout, MalformedResponse, ProviderUnavailable, RateLimited
from taskintel.llm.base import BaseInferenceProvider, SchemaT

logger = structlog.get_logger(__name__)


def _retry_after_seconds(error: Exception) -> Optional[float]:
    """Read a server-advised delay from a rate-limit error, if present."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


class OpenAIProvider(BaseInferenceProvider):
    """OpenAI API provider for structured completions and embeddings."""

    # Pricing per 1M tokens
    PRICING = {
        "gpt-4o-mini": {"input": 0.15, "output": 0.60},
        "gpt-4o": {"input": 2.50, "output": 10.00},
        "text-embedding-3-small": {"input": 0.02, "output": 0.0},
        "text-embedding-3-large": {"input": 0.13, "output": 0.0},
    }

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        temperature: float = 0.3,
        **kwargs: Any,
    ) -> None:
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model: Model for completions
            embedding_model: Model for embeddings
            temperature: Sampling temperature for completions
            **kwargs: Additional parameters

        Raises:
            ImportError: If openai package not installed
        """
        if not OPENAI_AVAILABLE:
            raise ImportError(
                "openai package is required for OpenAI provider. "
                "Install with: pip install openai"
            )

        super().__init__(model, embedding_model, **kwargs)
        self.temperature = temperature
        # Retries are owned by the retry controller, not the SDK.
        self.client = AsyncOpenAI(api_key=api_key, max_retries=0)
        self.total_cost = 0.0
        self.total_tokens = {"input": 0, "output": 0}

    def _translate(self, error: Exception) -> Exception:
        """Map SDK exceptions onto the inference error taxonomy."""
        if isinstance(error, openai.APITimeoutError):
            return ExternalTimeout(f"OpenAI request timed out: {error}")
        if isinstance(error, openai.RateLimitError):
            return RateLimited(
                f"OpenAI rate limit: {error}", retry_after=_retry_after_seconds(error)
            )
        if isinstance(error, openai.APIConnectionError):
            return ExternalTimeout(f"OpenAI connection failed: {error}")
        if isinstance(error, openai.APIError):
            return ProviderUnavailable(
                f"OpenAI request failed: {error}",
                status_code=getattr(error, "status_code", None),
            )
        return error

    async def complete(self, prompt: str, schema: Type[SchemaT], **kwargs: Any) -> SchemaT:
        """Generate a JSON completion validated against ``schema``.

        Args:
            prompt: The prompt to send
            schema: Pydantic model the result must validate against
            **kwargs: Additional OpenAI parameters

        Returns:
            Parsed ``schema`` instance

        Raises:
            ExternalTimeout: If the request timed out or could not connect
            RateLimited: If the request was rate limited
            ProviderUnavailable: If the API returned any other error
            MalformedResponse: If the output is not valid JSON for ``schema``
        """
        system = (
            "Return only JSON matching this JSON schema:\n"
            + json.dumps(schema.model_json_schema())
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=kwargs.pop("temperature", self.temperature),
                response_format={"type": "json_object"},
                **kwargs,
            )
        except Exception as e:
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e

        if getattr(response, "usage", None) is not None:
            self.total_tokens["input"] += response.usage.prompt_tokens
            self.total_tokens["output"] += response.usage.completion_tokens
            self.total_cost += self.estimate_cost(
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )

        content = response.choices[0].message.content or ""
        try:
            return schema.model_validate_json(content)
        except ValidationError as e:
            logger.warning("malformed_completion", schema=schema.__name__, preview=content[:200])
            raise MalformedResponse(f"Completion did not match {schema.__name__}: {e}") from e

    async def embed(self, text: str) -> List[float]:
        """Generate embedding for text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts in one request.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order
        """
        if not texts:
            return []
        try:
            response = await self.client.embeddings.create(
                model=self.embedding_model,
                input=texts,
            )
        except Exception as e:
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e

        if getattr(response, "usage", None) is not None:
            self.total_tokens["input"] += response.usage.prompt_tokens
            self.total_cost += self.estimate_cost(
                response.usage.prompt_tokens,
                0,
                model=self.embedding_model,
            )

        embeddings = [data.embedding for data in response.data]
        if len(embeddings) != len(texts):
            raise MalformedResponse(
                f"Expected {len(texts)} embeddings, received {len(embeddings)}"
            )
        return embeddings

    def estimate_cost(
        self,
        input_tokens: int,
        output_tokens: int = 0,
        model: Optional[str] = None,
    ) -> float:
        """Estimate API call cost.

        Args:
            input_tokens: Number of input tokens
            output_tokens: Number of output tokens
            model: Model to use for pricing (defaults to self.model)

        Returns:
            Estimated cost in USD
        """
        model_name = model or self.model
        pricing = self.PRICING.get(model_name, self.PRICING["gpt-4o"])

        cost = (input_tokens / 1_000_000) * pricing["input"]
        cost += (output_tokens / 1_000_000) * pricing["output"]

        return cost

    def get_usage_stats(self) -> dict:
        """Get current usage statistics.

        Returns:
            Dictionary with token counts and costs
        """
        return {
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "model": self.model,
            "embedding_model": self.embedding_model,
        }
