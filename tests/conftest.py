import hashlib
import math
import os
import sys

import pytest

# Force CPU-only mode for tests (avoids CUDA compatibility issues)
os.environ["CUDA_VISIBLE_DEVICES"] = ""

# Keep any Qdrant-backed test in-process; never touch a developer's server or data directory
if "MEMORY_QDRANT_URL" not in os.environ and "MEMORY_QDRANT_STORAGE_PATH" not in os.environ:
    os.environ["MEMORY_QDRANT_STORAGE_PATH"] = ":memory:"

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

from semantic_memory.config import CacheSettings, EmbeddingSettings, Settings, SweepSettings  # noqa: E402
from semantic_memory.embeddings.pool import EmbeddingPool  # noqa: E402
from semantic_memory.graph.relationship_graph import RelationshipGraph  # noqa: E402
from semantic_memory.services.access_tracker import AccessTracker  # noqa: E402
from semantic_memory.services.importance_engine import ImportanceEngine  # noqa: E402
from semantic_memory.services.memory_service import MemoryEngine  # noqa: E402
from semantic_memory.services.memory_store import MemoryStore  # noqa: E402
from semantic_memory.services.search_engine import SimilaritySearchEngine  # noqa: E402
from semantic_memory.storage.in_memory import InMemoryStorage  # noqa: E402
from semantic_memory.utils.locks import KeyedLock  # noqa: E402

TEST_DIMENSION = 256
START_TIME = 1_700_000_000.0


class TrigramEmbeddingProvider:
    """Deterministic embedding: hashed character trigrams, L2-normalized.

    Texts sharing many trigrams ("morning call" / "morning calls") get a
    high cosine similarity, which is enough to make ranking tests meaningful
    without a real model.
    """

    model_name = "test-trigram"

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.calls = 0

    def encode(self, text: str) -> list[float]:
        padded = f"  {text.lower()} "
        vector = [0.0] * self.dimension
        for i in range(len(padded) - 2):
            digest = hashlib.md5(padded[i : i + 3].encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "little") % self.dimension] += 1.0
        norm = math.sqrt(sum(x * x for x in vector))
        return [x / norm for x in vector]

    async def embed(self, text: str, purpose: str = "passage") -> list[float]:
        self.calls += 1
        return self.encode(text)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_test_settings(**overrides) -> Settings:
    """Settings tuned for tests: fixed dimension, no backoff, no sweeper, no cache."""
    values = {
        "storage_backend": "memory",
        "embedding": EmbeddingSettings(
            dimension=TEST_DIMENSION,
            timeout_seconds=1.0,
            backoff_min_seconds=0.0,
            backoff_max_seconds=0.0,
        ),
        "cache": CacheSettings(enabled=False),
        "sweep": SweepSettings(enabled=False),
    }
    values.update(overrides)
    return Settings(**values)


def build_engine(provider=None, clock=None, storage=None, config: Settings | None = None) -> MemoryEngine:
    """Wire a MemoryEngine over in-process storage without touching the network."""
    config = config or make_test_settings()
    provider = provider or TrigramEmbeddingProvider()
    clock = clock or FakeClock()
    storage = storage or InMemoryStorage()

    embedder = EmbeddingPool.from_settings(provider, config.embedding)
    graph = RelationshipGraph(
        storage,
        default_max_depth=config.graph.default_max_depth,
        max_depth_cap=config.graph.max_depth_cap,
        clock=clock,
    )
    store = MemoryStore(storage, embedder, graph, locks=KeyedLock(), clock=clock)
    search_engine = SimilaritySearchEngine(
        storage,
        embedder,
        graph,
        default_max_results=config.search.default_max_results,
        max_results_cap=config.search.max_results_cap,
        overfetch_factor=config.search.overfetch_factor,
    )
    tracker = AccessTracker(store, clock=clock)
    importance = ImportanceEngine(store, graph, config.importance, config.sweep, clock=clock)
    return MemoryEngine(
        storage=storage,
        embedder=embedder,
        store=store,
        search_engine=search_engine,
        graph=graph,
        tracker=tracker,
        importance=importance,
    )


@pytest.fixture
def provider():
    return TrigramEmbeddingProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def engine(provider, clock, storage):
    """MemoryEngine over InMemoryStorage with the trigram provider and a fake clock."""
    return build_engine(provider=provider, clock=clock, storage=storage)
