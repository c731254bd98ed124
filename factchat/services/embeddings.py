"""Embedding service using the gateway's OpenAI-compatible embeddings endpoint."""

import logging
from typing import List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from factchat.config import settings

logger = logging.getLogger(__name__)


class EmbeddingDimensionError(ValueError):
    """Embedding vector size does not match the configured index dimension."""


def check_dimension(embedding: List[float], expected: Optional[int] = None) -> None:
    """Fail fast on a vector that cannot live in the index."""
    expected = expected or settings.EMBED_DIM
    if len(embedding) != expected:
        raise EmbeddingDimensionError(
            f"Embedding dimension mismatch: expected {expected}, got {len(embedding)}"
        )


class EmbeddingService:
    """Service for generating text embeddings."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        """Initialize the embedding service."""
        self.base_url = settings.OPENROUTER_BASE_URL
        self.api_key = settings.OPENROUTER_API_KEY
        self.model = settings.EMBEDDING_MODEL
        self.embed_dim = settings.EMBED_DIM
        self._client = http_client or httpx.AsyncClient(timeout=60.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def embed_text(self, text: str) -> List[float]:
        """Embed a single query text."""
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts in one request.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, in input order

        Raises:
            httpx.HTTPError: On API errors
            EmbeddingDimensionError: On dimension mismatch
        """
        if not texts:
            return []

        logger.info(f"Generating {len(texts)} embeddings with {self.model}")

        response = await self._client.post(
            f"{self.base_url}/embeddings",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"model": self.model, "input": texts},
        )
        response.raise_for_status()
        result = response.json()

        data = sorted(result["data"], key=lambda item: item["index"])
        if len(data) != len(texts):
            raise ValueError(f"Embedding count mismatch: expected {len(texts)}, got {len(data)}")

        embeddings = []
        for item in data:
            embedding = item["embedding"]
            check_dimension(embedding, self.embed_dim)
            embeddings.append(embedding)

        return embeddings
