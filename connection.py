"""
Connection utilities for Redis, Qdrant, Cohere and Gemini, and the
container that wires them into the chat services.

Clients are built from AppConfig. A missing credential never fails startup:
the matching component runs in its degraded mode (local embeddings, apology
answers) and /health reports it.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import cohere
from qdrant_client import AsyncQdrantClient

from cache import CacheStore, CacheUnavailableError, MemoryCache, RedisCache
from config import AppConfig
from generator import ResponseGenerator
from logger import get_logger
from rag_service import RAGService
from realtime import ChannelManager, RealtimeGateway
from retrieval import EmbeddingService, RetrievalError, VectorRetriever
from session_store import SessionStore

logger = get_logger(__name__)


class Connections:
    """Builds the external service clients described by a config."""

    def __init__(self, config: AppConfig):
        self.config = config

    def build_cache(self) -> CacheStore:
        if self.config.cache_backend == "memory":
            logger.info("Using in-memory cache backend")
            return MemoryCache()

        cache = RedisCache(self.config.redis_url, password=self.config.redis_password or None)
        logger.info("Using Redis cache backend", url=cache.display_url)
        return cache

    def build_qdrant_client(self) -> AsyncQdrantClient:
        logger.info(
            "Creating Qdrant client",
            url=self.config.qdrant_url[:50],
            api_key_present=bool(self.config.qdrant_api_key)
        )
        return AsyncQdrantClient(
            url=self.config.qdrant_url,
            api_key=self.config.qdrant_api_key or None,
            timeout=self.config.qdrant_timeout
        )

    def build_cohere_client(self) -> Optional[cohere.AsyncClient]:
        if not self.config.cohere_api_key:
            logger.warning("COHERE_API_KEY not set, using local embeddings")
            return None
        return cohere.AsyncClient(api_key=self.config.cohere_api_key)

    def build_embeddings(self) -> EmbeddingService:
        return EmbeddingService(
            client=self.build_cohere_client(),
            model=self.config.embedding_model,
            dimensions=self.config.embedding_dimensions
        )

    def build_retriever(self) -> VectorRetriever:
        return VectorRetriever(
            client=self.build_qdrant_client(),
            embeddings=self.build_embeddings(),
            collection_name=self.config.qdrant_collection_name
        )

    def build_generator(self) -> ResponseGenerator:
        if not self.config.gemini_api_key:
            logger.warning("GEMINI_API_KEY not set, answers will degrade to an apology")
            return ResponseGenerator(None, self.config.gemini_model_name)
        generator = ResponseGenerator.from_api_key(self.config.gemini_api_key, self.config.gemini_model_name)
        logger.info("Gemini configured", model=self.config.gemini_model_name)
        return generator


class ServiceContainer:
    """
    Owns every long-lived service of the application.

    open() and close() are driven by the FastAPI lifespan. Tests build one
    directly around fakes and pass it to create_app().
    """

    def __init__(
        self,
        cache: CacheStore,
        retriever: VectorRetriever,
        generator: ResponseGenerator,
        session_ttl: int = 3600,
        cache_ttl: int = 1800,
        top_k: int = 5
    ):
        self.cache = cache
        self.retriever = retriever
        self.generator = generator
        self.session_store = SessionStore(cache, session_ttl=session_ttl)
        self.rag_service = RAGService(
            cache=cache,
            retriever=retriever,
            generator=generator,
            session_store=self.session_store,
            cache_ttl=cache_ttl,
            top_k=top_k
        )
        self.channels = ChannelManager()
        self.gateway = RealtimeGateway(self.rag_service, self.channels)
        self.status: Dict[str, Dict[str, Any]] = {
            "cache": {"healthy": False, "error": "Not opened"},
            "vector_store": {"healthy": False, "error": "Not opened"},
        }

    @classmethod
    def from_config(cls, config: AppConfig) -> "ServiceContainer":
        connections = Connections(config)
        return cls(
            cache=connections.build_cache(),
            retriever=connections.build_retriever(),
            generator=connections.build_generator(),
            session_ttl=config.session_ttl,
            cache_ttl=config.cache_ttl,
            top_k=config.top_k_results
        )

    async def open(self) -> None:
        """Connect to the cache and the vector index; failures leave the service degraded."""
        try:
            await self.cache.open()
            self.status["cache"] = {"healthy": True, "error": None}
        except CacheUnavailableError as e:
            logger.error(f"Cache unavailable at startup: {e}")
            self.status["cache"] = {"healthy": False, "error": str(e)}

        try:
            await self.retriever.open()
            self.status["vector_store"] = {"healthy": True, "error": None}
        except RetrievalError as e:
            logger.error(f"Vector store unavailable at startup: {e}")
            self.status["vector_store"] = {"healthy": False, "error": str(e)}

        if not all(s["healthy"] for s in self.status.values()):
            logger.warning("Starting in DEGRADED MODE")

    async def close(self) -> None:
        await self.cache.close()
        try:
            await self.retriever.close()
        except Exception as e:
            logger.warning(f"Error closing vector store client: {type(e).__name__}: {e}")

    async def health_check(self) -> Dict[str, Any]:
        """Live status of the cache, the vector index and the generator."""
        try:
            cache_healthy = await self.cache.ping()
            cache_status = {"healthy": cache_healthy}
        except CacheUnavailableError as e:
            cache_status = {"healthy": False, "error": str(e)}

        vector_status = dict(self.status["vector_store"])
        vector_status["count"] = await self.retriever.count()

        generator_status = {
            "healthy": self.generator.is_configured,
            "model": self.generator.model_name,
        }

        services = {
            "cache": cache_status,
            "vector_store": vector_status,
            "generator": generator_status,
        }
        all_healthy = all(s.get("healthy", False) for s in services.values())
        return {
            "status": "healthy" if all_healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": services,
        }
