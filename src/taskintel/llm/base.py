"""Base class for inference providers."""

from abc import ABC, abstractmethod
from typing import Any, List, Type, TypeVar

from pydantic import BaseModel

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class BaseInferenceProvider(ABC):
    """Abstract inference boundary: embeddings and schema-validated completions.

    Implementations raise ``ExternalTimeout``, ``RateLimited``,
    ``ProviderUnavailable`` or ``MalformedResponse`` from
    ``taskintel.errors``; any other exception is a programming error and is
    not retried.
    """

    def __init__(self, model: str, embedding_model: str, **kwargs: Any) -> None:
        """Initialize the provider.

        Args:
            model: Model name used for completions
            embedding_model: Model name used for embeddings
            **kwargs: Additional provider-specific parameters
        """
        self.model = model
        self.embedding_model = embedding_model
        self.config = kwargs

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Generate an embedding vector for text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """

    @abstractmethod
    async def complete(self, prompt: str, schema: Type[SchemaT], **kwargs: Any) -> SchemaT:
        """Generate a structured completion.

        Args:
            prompt: The prompt to send
            schema: Pydantic model the result must validate against
            **kwargs: Additional provider-specific parameters

        Returns:
            An instance of ``schema``

        Raises:
            MalformedResponse: If the output does not validate against ``schema``
        """

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts.

        The default implementation embeds one text at a time.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order
        """
        return [await self.embed(text) for text in texts]
