"""Embedding client wrapping the OpenAI embeddings endpoint."""
import logging
import math
from typing import List, Optional
from openai import OpenAI, OpenAIError

from kbhub.core.config import settings
from kbhub.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Turns text into fixed-length float vectors.

    Built once by the application entry point and injected into the
    retriever and the ingestion service.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
        client: Optional[OpenAI] = None,
    ):
        self.model = model or settings.EMBEDDING_MODEL
        self.batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        if client is not None:
            self.client = client
        else:
            self.client = OpenAI(api_key=api_key) if api_key else None

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed many texts, preserving input order.

        Requests are split into provider-sized sub-batches of at most
        ``batch_size`` inputs and the results concatenated.

        Raises:
            ConfigurationError: If no API key is configured
            ProviderError: If the provider fails or returns malformed output
        """
        if not self.is_configured:
            raise ConfigurationError("OpenAI API key is not configured")
        if not texts:
            return []

        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            embeddings.extend(self._embed_sub_batch(batch))
        return embeddings

    def _embed_sub_batch(self, batch: List[str]) -> List[List[float]]:
        try:
            response = self.client.embeddings.create(model=self.model, input=batch)
        except OpenAIError as e:
            logger.error("Embedding request failed (model=%s, inputs=%d): %s", self.model, len(batch), e)
            raise ProviderError(f"Embedding request failed: {e}", model=self.model) from e

        data = list(getattr(response, "data", None) or [])
        if len(data) != len(batch):
            logger.error(
                "Embedding provider returned %d vectors for %d inputs (model=%s)",
                len(data), len(batch), self.model,
            )
            raise ProviderError("Embedding provider returned the wrong number of vectors", model=self.model)

        data.sort(key=lambda item: item.index)
        return [self._validate_vector(item.embedding) for item in data]

    def _validate_vector(self, vector) -> List[float]:
        if not vector:
            raise ProviderError("Embedding provider returned an empty vector", model=self.model)
        try:
            values = [float(v) for v in vector]
        except (TypeError, ValueError) as e:
            raise ProviderError("Embedding provider returned a non-numeric vector", model=self.model) from e
        if not all(math.isfinite(v) for v in values):
            raise ProviderError("Embedding provider returned a non-finite vector", model=self.model)
        return values
