"""
Tests for the Redis query-embedding cache.

Tests cover:
- Cache hit/miss scenarios
- TTL on writes
- Fail-open behaviour on Redis errors
- Pattern invalidation
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from semantic_memory.cache.redis_cache import EmbeddingCache, generate_cache_key


def _mock_redis(**methods):
    mock_pool = MagicMock()
    mock_pool.aclose = AsyncMock()

    mock_redis = AsyncMock()
    mock_redis.ping = AsyncMock()
    mock_redis.aclose = AsyncMock()
    for name, value in methods.items():
        setattr(mock_redis, name, value)
    return mock_pool, mock_redis


class TestCacheKeys:
    def test_key_is_deterministic(self):
        assert generate_cache_key("model", "hello") == generate_cache_key("model", "hello")

    def test_key_depends_on_model_and_purpose(self):
        base = generate_cache_key("model-a", "hello", "query")
        assert generate_cache_key("model-b", "hello", "query") != base
        assert generate_cache_key("model-a", "hello", "passage") != base

    def test_key_format(self):
        key = generate_cache_key("all-MiniLM-L6-v2", "hello", "query")
        model, purpose, digest = key.split(":")
        assert model == "all-MiniLM-L6-v2"
        assert purpose == "query"
        assert len(digest) == 32


class TestEmbeddingCacheBasics:
    @pytest.mark.asyncio
    async def test_cache_miss_returns_none(self):
        """Cache miss should return None when key doesn't exist."""
        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis(get=AsyncMock(return_value=None))
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache(url="redis://localhost:6379", ttl_seconds=300, key_prefix="test:")
            await cache.initialize()

            try:
                assert await cache.get("nonexistent_key") is None
                mock_redis.get.assert_called_once_with("test:nonexistent_key")
                assert cache.get_stats()["misses"] == 1
            finally:
                await cache.close()

    @pytest.mark.asyncio
    async def test_cache_hit_returns_vector(self):
        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis(get=AsyncMock(return_value=json.dumps([0.25, 0.5])))
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache(url="redis://localhost:6379")
            await cache.initialize()

            try:
                assert await cache.get("k") == [0.25, 0.5]
                assert cache.get_stats()["hits"] == 1
            finally:
                await cache.close()

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self):
        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis(setex=AsyncMock())
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache(url="redis://localhost:6379", ttl_seconds=120, key_prefix="test:")
            await cache.initialize()

            try:
                assert await cache.set("k", [1.0, 2.0]) is True
                mock_redis.setex.assert_called_once_with("test:k", 120, json.dumps([1.0, 2.0]))
            finally:
                await cache.close()

    @pytest.mark.asyncio
    async def test_password_passed_to_pool(self):
        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis()
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache(url="redis://localhost:6379", password="secret", max_connections=3)
            await cache.initialize()
            await cache.close()

            _, kwargs = mock_pool_cls.from_url.call_args
            assert kwargs["password"] == "secret"
            assert kwargs["max_connections"] == 3


class TestFailOpen:
    @pytest.mark.asyncio
    async def test_uninitialized_cache_is_a_miss(self):
        cache = EmbeddingCache()
        assert await cache.get("k") is None
        assert await cache.set("k", [1.0]) is False
        assert await cache.invalidate_pattern("*") == 0

    @pytest.mark.asyncio
    async def test_redis_error_on_get_is_a_miss(self):
        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis(get=AsyncMock(side_effect=ConnectionError("down")))
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache()
            await cache.initialize()

            try:
                assert await cache.get("k") is None
                assert cache.get_stats()["errors"] == 1
            finally:
                await cache.close()

    @pytest.mark.asyncio
    async def test_malformed_entry_is_a_miss(self):
        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis(get=AsyncMock(return_value="{not json"))
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache()
            await cache.initialize()

            try:
                assert await cache.get("k") is None
            finally:
                await cache.close()

    @pytest.mark.asyncio
    async def test_failed_ping_raises_and_cleans_up(self):
        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis(ping=AsyncMock(side_effect=ConnectionError("refused")))
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache()
            with pytest.raises(ConnectionError):
                await cache.initialize()

            mock_redis.aclose.assert_awaited_once()
            mock_pool.aclose.assert_awaited_once()
            assert cache.get_stats()["initialized"] is False


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_pattern_deletes_matching_keys(self):
        async def scan_iter(match):
            for key in ("p:model:query:a", "p:model:query:b"):
                yield key

        with patch("semantic_memory.cache.redis_cache.ConnectionPool") as mock_pool_cls, patch(
            "semantic_memory.cache.redis_cache.Redis"
        ) as mock_redis_cls:
            mock_pool, mock_redis = _mock_redis(delete=AsyncMock(return_value=2))
            mock_redis.scan_iter = MagicMock(side_effect=scan_iter)
            mock_pool_cls.from_url.return_value = mock_pool
            mock_redis_cls.return_value = mock_redis

            cache = EmbeddingCache(key_prefix="p:")
            await cache.initialize()

            try:
                assert await cache.invalidate_pattern("model:*") == 2
                mock_redis.scan_iter.assert_called_once_with(match="p:model:*")
                mock_redis.delete.assert_awaited_once_with("p:model:query:a", "p:model:query:b")
            finally:
                await cache.close()
