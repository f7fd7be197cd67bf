"""Embedding providers for converting text into vector embeddings.

The engine only consumes vectors; where they come from is decided by the
provider it is constructed with:

* :class:`OpenAIEmbeddingProvider` -- the OpenAI embeddings endpoint.
* :class:`HttpEmbeddingProvider` -- a local embedding service exposing
  ``POST /embed``.

:func:`get_embedding_provider` picks one from the settings, or returns
``None`` so semantic search reports itself unavailable.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx
from openai import APIError, AsyncOpenAI

from notesearch.config import Settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when an embedding call fails."""


class EmbeddingProvider(ABC):
    """Turns text into fixed-length vectors."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts, preserving input order.

        Raises
        ------
        EmbeddingError
            If the underlying call fails.
        """

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string.

        Returns an empty list when *text* is empty or whitespace-only.
        """
        if not text or not text.strip():
            return []

        vectors = await self.embed_batch([text])
        return vectors[0]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the OpenAI API.

    Parameters
    ----------
    api_key : str
        OpenAI API key.
    model : str
        Embedding model name (default: ``text-embedding-3-small``).
    dimensions : int
        Output vector dimensions (default: 1536).
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._client = AsyncOpenAI(api_key=api_key)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = await self._client.embeddings.create(
                input=texts,
                model=self._model,
                dimensions=self._dimensions,
            )
        except APIError as exc:
            logger.error("Embedding API error: %s", exc)
            raise EmbeddingError(str(exc)) from exc

        # The response data is ordered by index; sort to be safe.
        sorted_data = sorted(response.data, key=lambda d: d.index)
        return [item.embedding for item in sorted_data]


class HttpEmbeddingProvider(EmbeddingProvider):
    """Embeddings from a local HTTP service.

    Expects the service to expose a ``POST /embed`` endpoint that accepts
    ``{"input": [...], "dimensions": N}`` and returns
    ``{"embeddings": [[...], ...]}``.
    """

    def __init__(self, base_url: str, dimensions: int = 1536, timeout: float = 60.0) -> None:
        self._url = f"{base_url.rstrip('/')}/embed"
        self._dimensions = dimensions
        self._timeout = timeout

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        payload = {"input": texts, "dimensions": self._dimensions}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
                data = response.json()
                return data["embeddings"]
        except httpx.HTTPStatusError as exc:
            logger.error("Local embedding HTTP error: %s", exc)
            raise EmbeddingError(str(exc)) from exc
        except httpx.RequestError as exc:
            logger.error("Local embedding request error: %s", exc)
            raise EmbeddingError(str(exc)) from exc
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Local embedding response parse error: %s", exc)
            raise EmbeddingError(f"Unexpected response from local embedding service: {exc}") from exc


def get_embedding_provider(settings: Settings) -> EmbeddingProvider | None:
    """Build the configured provider.

    A local service URL takes precedence over the OpenAI key. Returns
    ``None`` when neither is set.
    """
    if settings.EMBEDDING_SERVICE_URL:
        logger.info("Embedding provider: local service (%s)", settings.EMBEDDING_SERVICE_URL)
        return HttpEmbeddingProvider(
            settings.EMBEDDING_SERVICE_URL,
            dimensions=settings.EMBEDDING_DIMENSION,
        )

    if settings.OPENAI_API_KEY:
        logger.info("Embedding provider: OpenAI (%s)", settings.EMBEDDING_MODEL)
        return OpenAIEmbeddingProvider(
            api_key=settings.OPENAI_API_KEY,
            model=settings.EMBEDDING_MODEL,
            dimensions=settings.EMBEDDING_DIMENSION,
        )

    logger.info("No embedding provider configured; semantic search disabled")
    return None
