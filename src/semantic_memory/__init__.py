"""
Semantic memory engine.

Stores short pieces of knowledge with vector embeddings, retrieves them by
similarity, links them in a weighted relationship graph, and learns an
importance score per memory from how it is used.
"""

__version__ = "0.1.0"

from .errors import (
    ConflictError,
    DeadlineExceededError,
    DependencyError,
    MemoryEngineError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .models import AccessEvent, AccessType, Memory, MemoryState, Relationship, SearchFilters, SearchResult
from .services import MemoryEngine, create_memory_engine

__all__ = [
    "AccessEvent",
    "AccessType",
    "ConflictError",
    "DeadlineExceededError",
    "DependencyError",
    "Memory",
    "MemoryEngine",
    "MemoryEngineError",
    "MemoryState",
    "NotFoundError",
    "Relationship",
    "SearchFilters",
    "SearchResult",
    "StorageError",
    "ValidationError",
    "create_memory_engine",
]
