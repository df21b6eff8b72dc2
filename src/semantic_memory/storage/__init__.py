"""Storage backends: abstract boundary, in-process and Qdrant implementations."""

from .base import MemoryStorage
from .factory import create_storage_instance
from .in_memory import InMemoryStorage
from .qdrant_storage import QdrantStorage

__all__ = ["InMemoryStorage", "MemoryStorage", "QdrantStorage", "create_storage_instance"]
