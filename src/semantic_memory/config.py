"""
Configuration for the semantic memory engine.

Every settings group is a pydantic-settings model with its own environment
prefix, so a deployment can override any value without code changes::

    MEMORY_EMBEDDING_MAX_CONCURRENCY=8
    MEMORY_IMPORTANCE_PROPAGATION_FACTOR=0.25
    MEMORY_STORAGE_BACKEND=qdrant
    MEMORY_QDRANT_URL=http://localhost:6333
"""

import logging
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EmbeddingSettings(BaseSettings):
    """Embedding provider pool: concurrency bound, timeout and retry policy."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_EMBEDDING_", extra="ignore")

    model_name: str = "all-MiniLM-L6-v2"
    # None = learn the dimension from the first vector the provider returns
    dimension: int | None = Field(default=None, ge=1)
    max_concurrency: int = Field(default=4, ge=1, le=256)
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_min_seconds: float = Field(default=0.5, ge=0.0)
    backoff_max_seconds: float = Field(default=4.0, ge=0.0)

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "EmbeddingSettings":
        if self.backoff_max_seconds < self.backoff_min_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_min_seconds")
        return self


class QdrantSettings(BaseSettings):
    """Qdrant storage backend (server URL, embedded path, or ':memory:')."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_QDRANT_", extra="ignore")

    url: str | None = None
    storage_path: str | None = None
    collection_prefix: str = "semantic_memory"
    # Exact (brute force) scoring over the filtered candidate set instead of HNSW
    exact_search: bool = True
    scroll_batch_size: int = Field(default=256, ge=1, le=10_000)


class CacheSettings(BaseSettings):
    """Optional Redis cache for query embeddings."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_CACHE_", extra="ignore")

    enabled: bool = False
    url: str = "redis://localhost:6379"
    password: SecretStr | None = None
    ttl_seconds: int = Field(default=3600, ge=1)
    key_prefix: str = "semantic_memory:embedding:"
    max_connections: int = Field(default=10, ge=1, le=512)


class SearchSettings(BaseSettings):
    """Similarity search limits."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_SEARCH_", extra="ignore")

    default_max_results: int = Field(default=10, ge=1)
    max_results_cap: int = Field(default=100, ge=1, le=10_000)
    # Candidates fetched per requested result, so tie-breaks near the cut are stable
    overfetch_factor: int = Field(default=2, ge=1, le=10)


class GraphSettings(BaseSettings):
    """Relationship graph traversal limits."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_GRAPH_", extra="ignore")

    default_max_depth: int = Field(default=1, ge=1)
    max_depth_cap: int = Field(default=5, ge=1, le=20)


class ImportanceSettings(BaseSettings):
    """Importance scoring weights, decay constants and propagation factor."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_IMPORTANCE_", extra="ignore")

    baseline: float = Field(default=0.5, ge=0.0, le=1.0)
    frequency_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    recency_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    outcome_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    frequency_window_days: float = Field(default=30.0, gt=0.0)
    frequency_saturation: int = Field(default=10, ge=1)
    recency_half_life_days: float = Field(default=7.0, gt=0.0)
    # Outcome term used while no access event has been finalized yet
    neutral_outcome: float = Field(default=0.5, ge=0.0, le=1.0)
    propagation_factor: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_weights(self) -> "ImportanceSettings":
        total = self.frequency_weight + self.recency_weight + self.outcome_weight
        if total <= 0.0 or total > 1.0 + 1e-9:
            raise ValueError(f"importance weights must sum to (0, 1], got {total:.3f}")
        return self


class SweepSettings(BaseSettings):
    """Scheduled importance recompute and staleness sweep."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_SWEEP_", extra="ignore")

    enabled: bool = True
    interval_seconds: float = Field(default=3600.0, gt=0.0)
    recompute_after_seconds: float = Field(default=86400.0, ge=0.0)
    stale_after_days: float = Field(default=30.0, gt=0.0)


class Settings(BaseSettings):
    """Top-level settings aggregating every group."""

    model_config = SettingsConfigDict(env_prefix="MEMORY_", extra="ignore")

    storage_backend: Literal["memory", "qdrant"] = "memory"
    log_level: str = "INFO"

    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    importance: ImportanceSettings = Field(default_factory=ImportanceSettings)
    sweep: SweepSettings = Field(default_factory=SweepSettings)


settings = Settings()
