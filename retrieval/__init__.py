"""Embedding, vector search and context assembly for the RAG pipeline."""

from .embeddings import EmbeddingService, EmbeddingProviderError, generate_simple_embedding
from .vector_retriever import VectorRetriever, RetrievalError
from .context import assemble_context

__all__ = [
    "EmbeddingService", "EmbeddingProviderError", "generate_simple_embedding",
    "VectorRetriever", "RetrievalError",
    "assemble_context"
]
