"""
Vector retrieval of news articles from Qdrant.

Turns a query into an embedding (EmbeddingService) and fetches the nearest
documents from the collection filled by the ingestion job. Payload fields
written by that job: content (or text), title, url, published_date, source,
category and an optional doc_id.
"""

import time
from typing import Any, Dict, List, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, VectorParams

from logger import get_logger
from models import Document, RetrievalResult
from .embeddings import EmbeddingService

logger = get_logger(__name__)

DEFAULT_COLLECTION = "news_articles"


class RetrievalError(Exception):
    """The vector index could not be queried."""
    pass


class VectorRetriever:
    """Nearest-neighbour search over the news collection."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        embeddings: EmbeddingService,
        collection_name: str = DEFAULT_COLLECTION
    ):
        """
        Initialize the retriever.

        Args:
            client: Async Qdrant client
            embeddings: Embedding service used for queries
            collection_name: Name of the Qdrant collection
        """
        self.client = client
        self.embeddings = embeddings
        self.collection_name = collection_name

    async def open(self) -> None:
        """
        Make sure the collection exists, creating an empty one if needed.

        Raises:
            RetrievalError: If Qdrant cannot be reached
        """
        try:
            if await self.client.collection_exists(self.collection_name):
                logger.info("Collection ready", collection=self.collection_name)
                return

            logger.warning(f"Collection '{self.collection_name}' not found, creating it")
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self.embeddings.dimensions, distance=Distance.COSINE),
            )
        except Exception as e:
            raise RetrievalError(f"Qdrant collection check failed: {type(e).__name__}: {e}") from e

    async def close(self) -> None:
        await self.client.close()

    async def embed(self, text: str) -> List[float]:
        """Embed a query; falls back to the local embedding on provider failure."""
        return await self.embeddings.embed(text)

    async def query(self, embedding: List[float], k: int = 5) -> RetrievalResult:
        """
        Return up to k nearest documents, most relevant first.

        An empty collection yields an empty result, not an error.

        Raises:
            RetrievalError: On transport or server errors
        """
        start_time = time.time()
        try:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=embedding,
                limit=k,
                with_payload=True,
            )
        except Exception as e:
            logger.error(f"Vector search failed: {type(e).__name__}: {e}")
            raise RetrievalError(f"Vector search failed: {type(e).__name__}: {e}") from e

        documents = self._process_points(response.points or [])
        logger.vector_query(
            collection=self.collection_name,
            results_count=len(documents),
            duration_ms=(time.time() - start_time) * 1000
        )
        return RetrievalResult(documents=documents)

    async def retrieve(self, text: str, k: int = 5) -> RetrievalResult:
        """Embed text and query the index."""
        return await self.query(await self.embed(text), k)

    async def count(self) -> int:
        """Number of indexed documents, 0 when the index is unreachable."""
        try:
            result = await self.client.count(collection_name=self.collection_name, exact=True)
            return result.count
        except Exception as e:
            logger.error(f"Error getting collection count: {type(e).__name__}: {e}")
            return 0

    def _process_points(self, points: List[Any]) -> List[Document]:
        """Convert scored points into Documents, skipping unusable ones."""
        documents = []
        for point in points:
            if point is None:
                continue
            payload: Dict[str, Any] = getattr(point, "payload", None) or {}
            score = getattr(point, "score", None) or 0.0

            documents.append(Document(
                id=str(payload.get("doc_id") or getattr(point, "id", "")),
                title=payload.get("title"),
                content=payload.get("content") or payload.get("text") or "",
                url=payload.get("url"),
                published_date=_as_optional_str(payload.get("published_date")),
                source=payload.get("source"),
                category=payload.get("category"),
                score=float(score),
            ))
        return documents


def _as_optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
