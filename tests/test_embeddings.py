"""
Tests for retrieval/embeddings.py - local fallback embedding and provider use.
"""

import math
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

from retrieval.embeddings import EMBEDDING_DIMENSIONS, EmbeddingService, generate_simple_embedding
from tests.fakes import run
from tests.test_logger import test_logger


def _norm(vector):
    return math.sqrt(sum(v * v for v in vector))


class TestSimpleEmbedding:
    """Test generate_simple_embedding()."""

    def setup_method(self):
        test_logger.log_section("TESTING: retrieval/embeddings.py - Local Embedding")

    def test_deterministic_and_unit_norm(self):
        with test_logger.case("embeddings.py", "generate_simple_embedding()", "unit_norm"):
            first = generate_simple_embedding("What happened in the markets today?")
            second = generate_simple_embedding("What happened in the markets today?")
            assert first == second
            assert len(first) == EMBEDDING_DIMENSIONS
            assert abs(_norm(first) - 1.0) < 1e-9

    def test_case_insensitive(self):
        with test_logger.case("embeddings.py", "generate_simple_embedding()", "lowercases"):
            assert generate_simple_embedding("Hello World") == generate_simple_embedding("hello world")

    def test_blank_input_gives_zero_vector(self):
        with test_logger.case("embeddings.py", "generate_simple_embedding()", "blank_input"):
            for text in ("", "   ", "\n\t"):
                vector = generate_simple_embedding(text)
                assert len(vector) == EMBEDDING_DIMENSIONS
                assert all(v == 0.0 for v in vector)

    def test_single_character_position(self):
        with test_logger.case("embeddings.py", "generate_simple_embedding()", "index_formula"):
            # 'a' is code 97: one contribution at index 97, normalized to 1.0
            vector = generate_simple_embedding("a")
            assert abs(abs(vector[97]) - 1.0) < 1e-12
            assert sum(1 for v in vector if v != 0.0) == 1

    def test_leading_whitespace_shifts_tokens(self):
        with test_logger.case("embeddings.py", "generate_simple_embedding()", "leading_blank"):
            plain = generate_simple_embedding("a")
            shifted = generate_simple_embedding(" a")
            assert plain[97] != 0.0
            assert shifted[98] != 0.0 and shifted[97] == 0.0

    def test_custom_dimensions(self):
        with test_logger.case("embeddings.py", "generate_simple_embedding()", "dimensions"):
            assert len(generate_simple_embedding("news", dimensions=16)) == 16


class TestEmbeddingService:
    """Test provider use and fallback."""

    def setup_method(self):
        test_logger.log_section("TESTING: retrieval/embeddings.py - EmbeddingService")

    def _client(self, embeddings=None, error=None):
        client = Mock()
        client.embed = AsyncMock(
            return_value=SimpleNamespace(embeddings=embeddings),
            side_effect=error
        )
        return client

    def test_no_client_uses_fallback(self):
        with test_logger.case("embeddings.py", "EmbeddingService.embed()", "no_provider"):
            service = EmbeddingService(client=None)
            assert not service.has_provider
            assert run(service.embed("markets")) == generate_simple_embedding("markets")

    def test_provider_vector_returned(self):
        with test_logger.case("embeddings.py", "EmbeddingService.embed()", "provider"):
            client = self._client(embeddings=[[0.5] * 384])
            service = EmbeddingService(client=client, model="embed-english-light-v3.0")
            assert run(service.embed("markets")) == [0.5] * 384
            client.embed.assert_awaited_once_with(
                texts=["markets"], model="embed-english-light-v3.0", input_type="search_query"
            )

    def test_provider_error_falls_back(self):
        with test_logger.case("embeddings.py", "EmbeddingService.embed()", "provider_error"):
            service = EmbeddingService(client=self._client(error=RuntimeError("quota")))
            assert run(service.embed("markets")) == generate_simple_embedding("markets")

    def test_wrong_dimension_falls_back(self):
        with test_logger.case("embeddings.py", "EmbeddingService.embed()", "dimension_mismatch"):
            service = EmbeddingService(client=self._client(embeddings=[[0.1] * 1024]))
            assert run(service.embed("markets")) == generate_simple_embedding("markets")

    def test_embed_batch(self):
        with test_logger.case("embeddings.py", "EmbeddingService.embed_batch()", "documents"):
            client = self._client(embeddings=[[0.1] * 384, [0.2] * 384])
            service = EmbeddingService(client=client)
            vectors = run(service.embed_batch(["one", "two"]))
            assert vectors == [[0.1] * 384, [0.2] * 384]
            assert client.embed.await_args.kwargs["input_type"] == "search_document"
            assert run(service.embed_batch([])) == []
