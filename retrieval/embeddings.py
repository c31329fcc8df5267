"""
Query embeddings with a deterministic local fallback.

EmbeddingService calls Cohere when an API key is configured. Missing
credentials or any provider failure falls back to generate_simple_embedding,
a pure function of the input text, so retrieval always receives a vector.
"""

import math
import re
import time
from typing import List, Optional

import cohere

from logger import get_logger

logger = get_logger(__name__)

EMBEDDING_DIMENSIONS = 384

_WHITESPACE = re.compile(r"\s+")


class EmbeddingProviderError(Exception):
    """The remote embedding provider failed or returned an unusable result."""
    pass


def generate_simple_embedding(text: str, dimensions: int = EMBEDDING_DIMENSIONS) -> List[float]:
    """
    Hash-style embedding used when no provider is available.

    Each character of each lowercase whitespace-separated token adds
    sin(code * 0.1) * 0.1 at index (code + token_index + char_index) mod
    dimensions; the result is L2-normalized. Splitting keeps a leading empty
    token when the text starts with whitespace, which shifts token indices.

    Returns:
        A unit vector, or the zero vector when the text has no characters
        outside whitespace.
    """
    vector = [0.0] * dimensions
    for i, word in enumerate(_WHITESPACE.split(text.lower())):
        for j, char in enumerate(word):
            code = ord(char)
            vector[(code + i + j) % dimensions] += math.sin(code * 0.1) * 0.1

    magnitude = math.sqrt(sum(value * value for value in vector))
    if magnitude == 0:
        return vector
    return [value / magnitude for value in vector]


class EmbeddingService:
    """Turns text into vectors for the vector index."""

    def __init__(
        self,
        client: Optional[cohere.AsyncClient] = None,
        model: str = "embed-english-light-v3.0",
        dimensions: int = EMBEDDING_DIMENSIONS
    ):
        """
        Args:
            client: Cohere async client, or None to always use the local fallback
            model: Cohere embedding model name
            dimensions: Vector size expected by the index
        """
        self._client = client
        self.model = model
        self.dimensions = dimensions

    @property
    def has_provider(self) -> bool:
        return self._client is not None

    async def _embed_remote(self, texts: List[str], input_type: str) -> List[List[float]]:
        if self._client is None:
            raise EmbeddingProviderError("Cohere API key not configured")

        start_time = time.time()
        try:
            response = await self._client.embed(
                texts=texts,
                model=self.model,
                input_type=input_type
            )
        except Exception as e:
            raise EmbeddingProviderError(f"{type(e).__name__}: {e}") from e

        embeddings = getattr(response, "embeddings", None)
        if not embeddings or len(embeddings) != len(texts):
            raise EmbeddingProviderError("Embedding response is empty or incomplete")

        vectors = [[float(x) for x in vector] for vector in embeddings]
        if any(len(vector) != self.dimensions for vector in vectors):
            raise EmbeddingProviderError(
                f"Provider returned {len(vectors[0])}-dim vectors, index expects {self.dimensions}"
            )

        logger.debug(
            "Embeddings generated",
            count=len(vectors),
            duration_ms=round((time.time() - start_time) * 1000, 2)
        )
        return vectors

    async def embed(self, text: str) -> List[float]:
        """Embed a search query; never raises."""
        try:
            return (await self._embed_remote([text], "search_query"))[0]
        except EmbeddingProviderError as e:
            logger.warning(f"Falling back to local embedding: {e}")
            return generate_simple_embedding(text, self.dimensions)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed documents for indexing; falls back per batch like embed()."""
        if not texts:
            return []
        try:
            return await self._embed_remote(texts, "search_document")
        except EmbeddingProviderError as e:
            logger.warning(f"Falling back to local batch embeddings: {e}")
            return [generate_simple_embedding(text, self.dimensions) for text in texts]
