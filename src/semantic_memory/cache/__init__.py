"""Redis cache for query embeddings."""

from .redis_cache import EmbeddingCache, generate_cache_key

__all__ = ["EmbeddingCache", "generate_cache_key"]
