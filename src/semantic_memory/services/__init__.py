"""Engine services: store, search, access tracking, importance and the facade."""

from .access_tracker import AccessTracker
from .factory import create_memory_engine
from .importance_engine import ImportanceEngine, ImportanceUpdate, SweepReport
from .memory_service import MemoryEngine
from .memory_store import MemoryStore
from .search_engine import SimilaritySearchEngine
from .sweeper import ImportanceSweeper

__all__ = [
    "AccessTracker",
    "ImportanceEngine",
    "ImportanceSweeper",
    "ImportanceUpdate",
    "MemoryEngine",
    "MemoryStore",
    "SimilaritySearchEngine",
    "SweepReport",
    "create_memory_engine",
]
