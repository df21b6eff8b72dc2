"""
Redis cache for query embeddings.

Embedding calls dominate search latency, and the same query text is often
searched repeatedly. This cache stores query vectors with:
- Configurable TTL (default 1 hour)
- Keys derived from model name + text hash
- JSON serialization of the vector
- Fail-open semantics: any Redis error behaves like a cache miss
"""

import hashlib
import json
import logging
from typing import Any

from redis.asyncio import ConnectionPool, Redis

logger = logging.getLogger(__name__)


def generate_cache_key(model_name: str, text: str, purpose: str = "query") -> str:
    """
    Generate a consistent cache key for an embedding.

    Args:
        model_name: Embedding model identifier (vectors differ per model)
        text: Text being embedded
        purpose: Prompt purpose ("query" or "passage")

    Returns:
        Cache key string in format: model:purpose:sha256(text)[:32]
    """
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]
    return f"{model_name}:{purpose}:{digest}"


class EmbeddingCache:
    """
    Redis-based cache for embedding vectors.

    Provides get/set operations with TTL and pattern-based invalidation.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        ttl_seconds: int = 3600,
        key_prefix: str = "semantic_memory:embedding:",
        max_connections: int = 10,
        password: str | None = None,
    ):
        """
        Initialize Redis cache.

        Args:
            url: Redis connection URL
            ttl_seconds: Default TTL for cache entries
            key_prefix: Prefix for all cache keys
            max_connections: Maximum Redis connections in pool
            password: Optional Redis password (overrides URL credentials)
        """
        self.url = url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.max_connections = max_connections
        self.password = password

        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = None
        self._initialized = False
        self._stats = {"hits": 0, "misses": 0, "errors": 0}

    async def initialize(self) -> None:
        """Initialize Redis connection pool and verify connectivity."""
        if self._initialized:
            return

        pool_kwargs: dict[str, Any] = {"max_connections": self.max_connections, "decode_responses": True}
        if self.password:
            pool_kwargs["password"] = self.password
        self._pool = ConnectionPool.from_url(self.url, **pool_kwargs)
        self._redis = Redis(connection_pool=self._pool)

        try:
            await self._redis.ping()
            self._initialized = True
            logger.info(f"EmbeddingCache initialized: {self.url} (TTL={self.ttl_seconds}s)")
        except Exception as e:
            logger.error(f"EmbeddingCache initialization failed: {e}")
            await self.close()
            raise

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

        if self._pool:
            await self._pool.aclose()
            self._pool = None

        self._initialized = False

    def _make_key(self, key: str) -> str:
        """Add prefix to key."""
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> list[float] | None:
        """
        Get a cached vector by key.

        Returns:
            Cached vector, or None if not found, malformed, or on error
        """
        if not self._initialized or not self._redis:
            return None

        try:
            value = await self._redis.get(self._make_key(key))
        except Exception as e:
            self._stats["errors"] += 1
            logger.warning(f"Cache get failed for key {key}: {e}")
            return None

        if value is None:
            self._stats["misses"] += 1
            return None

        try:
            vector = json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Discarding malformed cache entry {key}")
            self._stats["misses"] += 1
            return None
        if not isinstance(vector, list) or not vector:
            self._stats["misses"] += 1
            return None

        self._stats["hits"] += 1
        return [float(x) for x in vector]

    async def set(self, key: str, vector: list[float]) -> bool:
        """
        Cache a vector with TTL.

        Returns:
            True if successful, False otherwise
        """
        if not self._initialized or not self._redis:
            return False

        try:
            await self._redis.setex(self._make_key(key), self.ttl_seconds, json.dumps(vector))
            return True
        except Exception as e:
            self._stats["errors"] += 1
            logger.warning(f"Cache set failed for key {key}: {e}")
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys matching a pattern (e.g. after a model change).

        Args:
            pattern: Redis pattern relative to the prefix (e.g., "all-MiniLM-L6-v2:*")

        Returns:
            Number of keys deleted
        """
        if not self._initialized or not self._redis:
            return 0

        try:
            keys = [key async for key in self._redis.scan_iter(match=self._make_key(pattern))]
            if not keys:
                return 0
            deleted = await self._redis.delete(*keys)
            logger.debug(f"Cache invalidated {deleted} keys matching pattern: {pattern}")
            return deleted
        except Exception as e:
            logger.warning(f"Cache invalidation failed for pattern {pattern}: {e}")
            return 0

    def get_stats(self) -> dict[str, Any]:
        return {"initialized": self._initialized, **self._stats}
