"""
Bounded-concurrency embedding pool.

Wraps an ``EmbeddingProvider`` with the engine's backpressure and retry
policy:

- at most ``max_concurrency`` provider calls in flight (asyncio.Semaphore)
- each call bounded by ``timeout_seconds``; a timeout is a transient failure
- transient failures retried with exponential backoff (tenacity), up to
  ``max_attempts`` total attempts, then surfaced as DependencyError
- vectors validated for emptiness, finiteness and a fixed dimension
- optional Redis cache for query vectors
"""

import asyncio
import logging
import math
from typing import Any

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..cache.redis_cache import EmbeddingCache, generate_cache_key
from ..config import EmbeddingSettings
from ..errors import DependencyError
from .provider import EmbeddingProvider, EmbeddingPurpose

logger = logging.getLogger(__name__)


class TransientEmbeddingError(Exception):
    """A single provider attempt failed in a way worth retrying."""


class EmbeddingPool:
    """Retrying, time-bounded, concurrency-limited access to an embedding provider."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        max_concurrency: int = 4,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        backoff_min_seconds: float = 0.5,
        backoff_max_seconds: float = 4.0,
        dimension: int | None = None,
        cache: EmbeddingCache | None = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.provider = provider
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_min_seconds = backoff_min_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._dimension = dimension
        self._cache = cache

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight = 0
        self._stats = {"calls": 0, "retries": 0, "timeouts": 0, "failures": 0, "cache_hits": 0}

    @classmethod
    def from_settings(
        cls,
        provider: EmbeddingProvider,
        config: EmbeddingSettings,
        cache: EmbeddingCache | None = None,
    ) -> "EmbeddingPool":
        return cls(
            provider=provider,
            max_concurrency=config.max_concurrency,
            timeout_seconds=config.timeout_seconds,
            max_attempts=config.max_attempts,
            backoff_min_seconds=config.backoff_min_seconds,
            backoff_max_seconds=config.backoff_max_seconds,
            dimension=config.dimension,
            cache=cache,
        )

    @property
    def dimension(self) -> int | None:
        """Fixed vector dimension (None until the first vector is seen)."""
        return self._dimension

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def embed(self, text: str, purpose: EmbeddingPurpose = "passage") -> list[float]:
        """
        Embed *text*, retrying transient provider failures.

        Raises:
            DependencyError: provider failed on every attempt, or returned a
                malformed vector
        """
        cache_key = None
        if purpose == "query" and self._cache is not None:
            cache_key = generate_cache_key(getattr(self.provider, "model_name", "unknown"), text, purpose)
            cached = await self._cache.get(cache_key)
            if cached is not None and self._dimension in (None, len(cached)):
                self._stats["cache_hits"] += 1
                return cached

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(
                    multiplier=self.backoff_min_seconds,
                    min=self.backoff_min_seconds,
                    max=self.backoff_max_seconds,
                ),
                retry=retry_if_exception_type(TransientEmbeddingError),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    vector = await self._attempt(text, purpose)
        except TransientEmbeddingError as e:
            self._stats["failures"] += 1
            logger.error(f"Embedding failed after {self.max_attempts} attempts: {e}")
            raise DependencyError(f"Embedding provider unavailable after {self.max_attempts} attempts: {e}") from e

        if cache_key is not None:
            await self._cache.set(cache_key, vector)
        return vector

    async def _attempt(self, text: str, purpose: EmbeddingPurpose) -> list[float]:
        async with self._semaphore:
            self._in_flight += 1
            self._stats["calls"] += 1
            try:
                raw = await asyncio.wait_for(self.provider.embed(text, purpose), timeout=self.timeout_seconds)
            except TimeoutError as e:
                self._stats["timeouts"] += 1
                raise TransientEmbeddingError(f"embedding timed out after {self.timeout_seconds}s") from e
            except Exception as e:
                raise TransientEmbeddingError(f"{e.__class__.__name__}: {e}") from e
            finally:
                self._in_flight -= 1
        return self._validate(raw)

    def _validate(self, raw: Any) -> list[float]:
        """Check the vector is non-empty, finite and of the deployment's dimension."""
        try:
            vector = [float(x) for x in raw]
        except (TypeError, ValueError) as e:
            raise DependencyError(f"Embedding provider returned a non-numeric vector: {e}") from e
        if not vector:
            raise DependencyError("Embedding provider returned an empty vector")
        if not all(math.isfinite(x) for x in vector):
            raise DependencyError("Embedding provider returned non-finite values")

        if self._dimension is None:
            self._dimension = len(vector)
            logger.info(f"Detected embedding dimension: {self._dimension}")
        elif len(vector) != self._dimension:
            raise DependencyError(
                f"Embedding dimension mismatch: expected {self._dimension}, got {len(vector)}. "
                f"This indicates a configuration error or model version change."
            )
        return vector

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self._stats["retries"] += 1
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(f"Embedding attempt {retry_state.attempt_number}/{self.max_attempts} failed, retrying: {exc}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "max_concurrency": self.max_concurrency,
            "in_flight": self._in_flight,
            "dimension": self._dimension,
            **self._stats,
        }
