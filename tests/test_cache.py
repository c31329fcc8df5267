"""
Tests for cache.py - MemoryCache semantics and RedisCache error mapping.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError

from cache import CacheUnavailableError, MemoryCache, RedisCache
from tests.fakes import FakeMonotonic, run
from tests.test_logger import test_logger


class TestMemoryCache:
    """Test the in-process backend."""

    def setup_method(self):
        test_logger.log_section("TESTING: cache.py - MemoryCache")
        self.clock = FakeMonotonic()
        self.cache = MemoryCache(clock=self.clock)

    def test_set_then_get(self):
        with test_logger.case("cache.py", "MemoryCache.get()", "round_trip"):
            run(self.cache.set("k", "v", 60))
            assert run(self.cache.get("k")) == "v"
            assert run(self.cache.get("missing")) is None

    def test_value_expires_after_ttl(self):
        with test_logger.case("cache.py", "MemoryCache.get()", "ttl_expiry"):
            run(self.cache.set("k", "v", 10))
            self.clock.advance(9)
            assert run(self.cache.get("k")) == "v"
            self.clock.advance(1)
            assert run(self.cache.get("k")) is None
            assert run(self.cache.keys("*")) == []

    def test_set_overwrites(self):
        with test_logger.case("cache.py", "MemoryCache.set()", "last_write_wins"):
            run(self.cache.set("k", "first", 60))
            run(self.cache.set("k", "second", 60))
            assert run(self.cache.get("k")) == "second"

    def test_delete_counts_live_keys(self):
        with test_logger.case("cache.py", "MemoryCache.delete()", "count"):
            run(self.cache.set("a", "1", 60))
            run(self.cache.set("b", "2", 60))
            assert run(self.cache.delete("a", "b", "c")) == 2
            assert run(self.cache.get("a")) is None
            assert run(self.cache.delete()) == 0

    def test_keys_glob(self):
        with test_logger.case("cache.py", "MemoryCache.keys()", "glob_pattern"):
            run(self.cache.set("rag_cache:abc", "1", 60))
            run(self.cache.set("rag_cache:def", "2", 60))
            run(self.cache.set("session:1", "3", 60))
            assert sorted(run(self.cache.keys("rag_cache:*"))) == ["rag_cache:abc", "rag_cache:def"]

    def test_list_operations(self):
        with test_logger.case("cache.py", "MemoryCache.lpush()", "newest_first_and_trim"):
            for value in ("a", "b", "c", "d"):
                run(self.cache.lpush("list", value))
            assert run(self.cache.lrange("list", 0, -1)) == ["d", "c", "b", "a"]

            run(self.cache.ltrim("list", 0, 1))
            assert run(self.cache.lrange("list", 0, -1)) == ["d", "c"]
            assert run(self.cache.lrange("list", 5, 10)) == []
            assert run(self.cache.lrange("absent", 0, -1)) == []

    def test_expire_applies_to_lists(self):
        with test_logger.case("cache.py", "MemoryCache.expire()", "list_ttl"):
            run(self.cache.lpush("list", "a"))
            assert run(self.cache.expire("list", 5)) is True
            run(self.cache.ltrim("list", 0, 49))
            self.clock.advance(5)
            assert run(self.cache.lrange("list", 0, -1)) == []
            assert run(self.cache.expire("list", 5)) is False

    def test_type_mismatch_raises(self):
        with test_logger.case("cache.py", "MemoryCache.get()", "wrong_type"):
            run(self.cache.lpush("list", "a"))
            with pytest.raises(CacheUnavailableError):
                run(self.cache.get("list"))
            run(self.cache.set("scalar", "v", 60))
            with pytest.raises(CacheUnavailableError):
                run(self.cache.lpush("scalar", "x"))


class TestRedisCache:
    """Test the Redis wrapper against a mocked client."""

    def setup_method(self):
        test_logger.log_section("TESTING: cache.py - RedisCache")
        self.client = MagicMock()
        self.cache = RedisCache("redis://:secret@cache.internal:6379", client=self.client)

    def test_display_url_hides_credentials(self):
        with test_logger.case("cache.py", "RedisCache.display_url", "strip_credentials"):
            assert self.cache.display_url == "cache.internal:6379"
            assert "secret" not in self.cache.display_url

    def test_set_uses_expiry(self):
        with test_logger.case("cache.py", "RedisCache.set()", "ex_argument"):
            self.client.set = AsyncMock(return_value=True)
            run(self.cache.set("k", "v", 30))
            self.client.set.assert_awaited_once_with("k", "v", ex=30)

    def test_errors_become_cache_unavailable(self):
        with test_logger.case("cache.py", "RedisCache.get()", "error_mapping"):
            self.client.get = AsyncMock(side_effect=RedisConnectionError("refused"))
            with pytest.raises(CacheUnavailableError):
                run(self.cache.get("k"))

            self.client.ping = AsyncMock(side_effect=OSError("unreachable"))
            with pytest.raises(CacheUnavailableError):
                run(self.cache.open())

    def test_keys_uses_scan(self):
        with test_logger.case("cache.py", "RedisCache.keys()", "scan_iter"):
            async def scan_iter(match=None, count=None):
                for key in ("rag_cache:a", "rag_cache:b"):
                    yield key

            self.client.scan_iter = scan_iter
            assert run(self.cache.keys("rag_cache:*")) == ["rag_cache:a", "rag_cache:b"]
