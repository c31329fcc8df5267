"""
RAG query orchestration.

process_query runs: cache check -> (miss) embed -> retrieve -> assemble ->
generate -> cache write. Cache failures are treated as misses, retrieval and
generation failures end in an apology answer that is never cached, so a
caller always gets text back.

chat adds the exchange to the session history after answering; both request
gateways go through it.
"""

import base64
import json
from typing import Any, Dict, Optional

from cache import CacheStore, CacheUnavailableError
from generator import GenerationError, ResponseGenerator
from logger import get_logger, log_async_function_call
from models import HistoryEntry
from retrieval import RetrievalError, VectorRetriever
from session_store import SessionStore

logger = get_logger(__name__)

CACHE_PREFIX = "rag_cache:"
DEFAULT_CACHE_TTL = 1800

ERROR_RESPONSE = "I'm sorry, I encountered an error while processing your question. Please try again."


def build_cache_key(query: str) -> str:
    """
    Namespaced, reversible key for a query.

    Exact text: no case folding or whitespace normalization, and no
    session component, so every session asking the same text shares one entry.
    """
    return CACHE_PREFIX + base64.b64encode(query.encode("utf-8")).decode("ascii")


class RAGService:
    """Retrieval-augmented answering with a shared answer cache."""

    def __init__(
        self,
        cache: CacheStore,
        retriever: VectorRetriever,
        generator: ResponseGenerator,
        session_store: SessionStore,
        cache_ttl: int = DEFAULT_CACHE_TTL,
        top_k: int = 5
    ):
        self.cache = cache
        self.retriever = retriever
        self.generator = generator
        self.session_store = session_store
        self.cache_ttl = cache_ttl
        self.top_k = top_k

    async def _cache_get(self, key: str) -> Optional[str]:
        try:
            raw = await self.cache.get(key)
        except CacheUnavailableError as e:
            logger.warning(f"Cache read skipped: {e}")
            return None
        if raw is None:
            logger.cache_op("get", key, hit=False)
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring undecodable cache entry", key=key[:60])
            return None
        logger.cache_op("get", key, hit=True)
        return value if isinstance(value, str) else None

    async def _cache_set(self, key: str, response: str) -> None:
        try:
            await self.cache.set(key, json.dumps(response), self.cache_ttl)
            logger.cache_op("set", key, ttl=self.cache_ttl)
        except CacheUnavailableError as e:
            logger.warning(f"Cache write skipped: {e}")

    async def process_query(self, query: str, session_id: Optional[str] = None) -> str:
        """
        Answer a query, serving identical queries from the cache.

        Args:
            query: The user's question, used verbatim
            session_id: Only used for log context

        Returns:
            Answer text; never raises for downstream failures
        """
        key = build_cache_key(query)
        cached = await self._cache_get(key)
        if cached is not None:
            logger.info("Returning cached result", session_id=session_id)
            return cached

        try:
            result = await self.retriever.retrieve(query, self.top_k)
            response = await self.generator.generate(query, result)
        except RetrievalError as e:
            logger.error(f"Retrieval failed: {e}", session_id=session_id, operation="retrieve")
            return ERROR_RESPONSE
        except GenerationError as e:
            logger.error(f"Generation failed: {e}", session_id=session_id, operation="generate")
            return ERROR_RESPONSE
        except Exception as e:
            logger.error(
                f"Error in RAG processing: {type(e).__name__}",
                exc_info=True,
                session_id=session_id,
                operation="process_query"
            )
            return ERROR_RESPONSE

        await self._cache_set(key, response)
        return response

    async def chat(self, message: str, session_id: str) -> HistoryEntry:
        """
        Answer a message and record the exchange in the session history.

        Raises:
            SessionStoreError: When the history cannot be written
        """
        response = await self.process_query(message, session_id)
        return await self.session_store.add_to_history(session_id, user=message, bot=response)

    @log_async_function_call(logger)
    async def clear_cache(self) -> int:
        """
        Remove every cached answer.

        Raises:
            CacheUnavailableError: When the cache cannot be reached
        """
        keys = await self.cache.keys(f"{CACHE_PREFIX}*")
        if keys:
            await self.cache.delete(*keys)
            logger.info(f"Cleared {len(keys)} cached responses")
        return len(keys)

    async def get_cache_stats(self) -> Dict[str, Any]:
        """
        Raises:
            CacheUnavailableError: When the cache cannot be reached
        """
        keys = await self.cache.keys(f"{CACHE_PREFIX}*")
        return {
            "totalCachedQueries": len(keys),
            "cachePrefix": CACHE_PREFIX,
            "cacheTTL": self.cache_ttl,
        }
