"""Tests for pydantic-settings configuration groups and environment overrides."""

import pytest
from pydantic import ValidationError

from semantic_memory.config import (
    CacheSettings,
    EmbeddingSettings,
    ImportanceSettings,
    Settings,
    SweepSettings,
)


class TestDefaults:
    def test_engine_defaults(self):
        config = Settings()
        assert config.storage_backend in ("memory", "qdrant")
        assert config.embedding.max_concurrency == 4
        assert config.embedding.max_attempts == 3
        assert config.search.default_max_results == 10
        assert config.search.max_results_cap == 100
        assert config.graph.default_max_depth == 1
        assert config.graph.max_depth_cap == 5

    def test_importance_defaults(self):
        importance = ImportanceSettings()
        assert importance.frequency_weight == 0.3
        assert importance.recency_weight == 0.2
        assert importance.outcome_weight == 0.5
        assert importance.propagation_factor == 0.2
        assert importance.baseline == 0.5

    def test_cache_disabled_by_default(self):
        assert CacheSettings().enabled is False


class TestEnvironmentOverrides:
    def test_embedding_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MEMORY_EMBEDDING_MAX_CONCURRENCY", "8")
        monkeypatch.setenv("MEMORY_EMBEDDING_TIMEOUT_SECONDS", "2.5")
        config = EmbeddingSettings()
        assert config.max_concurrency == 8
        assert config.timeout_seconds == 2.5

    def test_importance_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MEMORY_IMPORTANCE_PROPAGATION_FACTOR", "0.25")
        assert ImportanceSettings().propagation_factor == 0.25

    def test_storage_backend_env(self, monkeypatch):
        monkeypatch.setenv("MEMORY_STORAGE_BACKEND", "qdrant")
        assert Settings().storage_backend == "qdrant"

    def test_sweep_env(self, monkeypatch):
        monkeypatch.setenv("MEMORY_SWEEP_ENABLED", "false")
        monkeypatch.setenv("MEMORY_SWEEP_STALE_AFTER_DAYS", "14")
        sweep = SweepSettings()
        assert sweep.enabled is False
        assert sweep.stale_after_days == 14.0


class TestValidation:
    def test_weights_must_not_exceed_one(self):
        with pytest.raises(ValidationError, match="weights"):
            ImportanceSettings(frequency_weight=0.5, recency_weight=0.5, outcome_weight=0.5)

    def test_backoff_bounds_ordered(self):
        with pytest.raises(ValidationError, match="backoff_max_seconds"):
            EmbeddingSettings(backoff_min_seconds=2.0, backoff_max_seconds=1.0)

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            EmbeddingSettings(max_concurrency=0)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(storage_backend="sqlite")

    def test_cache_password_is_secret(self):
        cache = CacheSettings(password="hunter2")
        assert "hunter2" not in repr(cache)
        assert cache.password.get_secret_value() == "hunter2"
