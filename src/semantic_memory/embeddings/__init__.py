"""Embedding provider boundary and the bounded retrying pool in front of it."""

from .pool import EmbeddingPool
from .provider import EmbeddingProvider, SentenceTransformerProvider

__all__ = ["EmbeddingPool", "EmbeddingProvider", "SentenceTransformerProvider"]
