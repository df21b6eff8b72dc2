"""
Engine wiring.

Builds a fully connected MemoryEngine from settings: embedding provider
and pool (with the optional Redis query cache), storage backend, graph,
store, search, access tracking, importance and the sweep scheduler.
"""

import logging
import time
from collections.abc import Callable

from ..cache.redis_cache import EmbeddingCache
from ..config import Settings, settings as default_settings
from ..embeddings.pool import EmbeddingPool
from ..embeddings.provider import EmbeddingProvider, SentenceTransformerProvider
from ..graph.relationship_graph import RelationshipGraph
from ..storage.base import MemoryStorage
from ..storage.factory import create_storage_instance
from ..utils.locks import KeyedLock
from .access_tracker import AccessTracker
from .importance_engine import ImportanceEngine
from .memory_service import MemoryEngine
from .memory_store import MemoryStore
from .search_engine import SimilaritySearchEngine
from .sweeper import ImportanceSweeper

logger = logging.getLogger(__name__)

# Text embedded once to learn the model's dimension when none is configured
_DIMENSION_SAMPLE = "dimension sample"


async def _create_cache(config: Settings) -> EmbeddingCache | None:
    if not config.cache.enabled:
        return None
    cache = EmbeddingCache(
        url=config.cache.url,
        ttl_seconds=config.cache.ttl_seconds,
        key_prefix=config.cache.key_prefix,
        max_connections=config.cache.max_connections,
        password=config.cache.password.get_secret_value() if config.cache.password else None,
    )
    try:
        await cache.initialize()
    except Exception as e:
        # Caching is an optimisation; run without it
        logger.warning(f"Embedding cache unavailable, continuing without it: {e}")
        return None
    return cache


async def create_memory_engine(
    config: Settings | None = None,
    provider: EmbeddingProvider | None = None,
    storage: MemoryStorage | None = None,
    clock: Callable[[], float] = time.time,
) -> MemoryEngine:
    """
    Build and initialize a MemoryEngine.

    Args:
        config: Settings (defaults to the module-level ``settings``)
        provider: Embedding provider (defaults to a local sentence-transformers model)
        storage: Pre-built storage backend; initialized here if given
        clock: Time source shared by every component

    Returns:
        Ready-to-use engine. Call ``start()`` to launch the scheduled sweep.
    """
    config = config or default_settings
    provider = provider or SentenceTransformerProvider(config.embedding.model_name)
    cache = await _create_cache(config)
    embedder = EmbeddingPool.from_settings(provider, config.embedding, cache=cache)

    if storage is None:
        vector_size = config.embedding.dimension
        if config.storage_backend == "qdrant" and vector_size is None:
            vector_size = len(await embedder.embed(_DIMENSION_SAMPLE, "passage"))
            logger.info(f"Detected vector dimensions: {vector_size}")
        storage = await create_storage_instance(config, vector_size)
    else:
        await storage.initialize()

    locks = KeyedLock()
    graph = RelationshipGraph(
        storage,
        default_max_depth=config.graph.default_max_depth,
        max_depth_cap=config.graph.max_depth_cap,
        clock=clock,
    )
    store = MemoryStore(storage, embedder, graph, locks=locks, clock=clock)
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
    sweeper = ImportanceSweeper(importance, config.sweep.interval_seconds) if config.sweep.enabled else None

    logger.info(f"MemoryEngine ready (storage={type(storage).__name__}, model={provider.model_name})")
    return MemoryEngine(
        storage=storage,
        embedder=embedder,
        store=store,
        search_engine=search_engine,
        graph=graph,
        tracker=tracker,
        importance=importance,
        sweeper=sweeper,
        cache=cache,
    )
