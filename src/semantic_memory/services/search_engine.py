"""
Similarity Search Engine.

Ranks the memories of one scope against a text or vector query. Filters
(scope, state, type, importance, creation date, metadata) are pushed down
to storage so similarity is only computed for eligible candidates.

Ranking: similarity descending, then importance descending, then most
recently updated first. Ties at the cut-off are resolved over an
over-fetched candidate set so the order does not depend on storage order.
"""

import logging
import math
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..embeddings.pool import EmbeddingPool
from ..errors import ValidationError
from ..graph.relationship_graph import RelationshipGraph
from ..models.memory import Memory, MemoryState
from ..models.search import MemoryFilter, SearchFilters, SearchResult
from ..storage.base import MemoryStorage
from ..utils.deadline import run_with_deadline

logger = logging.getLogger(__name__)

Query = str | Sequence[float]


def _ranking_key(pair: tuple[Memory, float]) -> tuple[float, float, float, str]:
    memory, similarity = pair
    return (-similarity, -memory.importance_score, -(memory.updated_at or 0.0), memory.id)


class SimilaritySearchEngine:
    """Filtered, ranked cosine similarity search."""

    def __init__(
        self,
        storage: MemoryStorage,
        embedder: EmbeddingPool,
        graph: RelationshipGraph | None = None,
        default_max_results: int = 10,
        max_results_cap: int = 100,
        overfetch_factor: int = 2,
    ):
        self.storage = storage
        self.embedder = embedder
        self.graph = graph
        self.default_max_results = default_max_results
        self.max_results_cap = max_results_cap
        self.overfetch_factor = overfetch_factor

    @staticmethod
    def _coerce_filters(filters: SearchFilters | dict[str, Any] | None) -> SearchFilters:
        if isinstance(filters, SearchFilters):
            return filters
        try:
            return SearchFilters.model_validate(filters or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid search filters: {e}") from e

    def _validate_vector(self, query: Sequence[float]) -> list[float]:
        try:
            vector = [float(x) for x in query]
        except (TypeError, ValueError) as e:
            raise ValidationError("query vector must contain only numbers") from e
        if not vector:
            raise ValidationError("query vector must not be empty")
        if not all(math.isfinite(x) for x in vector):
            raise ValidationError("query vector must contain only finite values")
        dimension = self.embedder.dimension
        if dimension is not None and len(vector) != dimension:
            raise ValidationError(f"query vector has dimension {len(vector)}, expected {dimension}")
        return vector

    async def search(
        self,
        query: Query,
        filters: SearchFilters | dict[str, Any] | None = None,
        max_results: int | None = None,
        min_similarity: float = 0.0,
        deadline: float | None = None,
        include_related: bool = False,
    ) -> list[SearchResult]:
        """
        Rank the memories of a scope against *query*.

        Args:
            query: Text (embedded as a query) or a precomputed vector
            filters: Search restrictions; ``scope`` is required
            max_results: Result count, clamped to the configured cap
            min_similarity: Drop results below this cosine similarity
            deadline: Seconds before DeadlineExceededError is raised
            include_related: Attach each hit's one-hop outgoing neighbours

        Returns:
            Results in ranking order; empty when nothing matches

        Raises:
            ValidationError: Missing scope, bad limits, or malformed query
            DependencyError: Query embedding failed after retries
            DeadlineExceededError: *deadline* elapsed (no partial results)
        """
        search_filters = self._coerce_filters(filters)
        if not search_filters.scope or not search_filters.scope.strip():
            raise ValidationError("search requires a scope filter")

        limit = self.default_max_results if max_results is None else max_results
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"max_results must be a positive integer, got {max_results!r}")
        limit = min(limit, self.max_results_cap)

        if (
            isinstance(min_similarity, bool)
            or not isinstance(min_similarity, int | float)
            or not math.isfinite(min_similarity)
            or not -1.0 <= min_similarity <= 1.0
        ):
            raise ValidationError(f"min_similarity must be in [-1, 1], got {min_similarity!r}")

        if isinstance(query, str):
            if not query.strip():
                raise ValidationError("query text must not be empty")
        else:
            query = self._validate_vector(query)

        return await run_with_deadline(
            self._search(query, search_filters, limit, float(min_similarity), include_related),
            deadline,
            "search",
        )

    async def _fetch_ranked(
        self,
        vector: list[float],
        memory_filter: MemoryFilter,
        limit: int,
        min_similarity: float,
    ) -> list[tuple[Memory, float]]:
        """
        Fetch candidates and rank them with the full tie-break.

        Storage cuts its window by similarity alone. While the window is full
        and the last kept result ties with the weakest fetched similarity,
        memories outside the window could outrank it, so the window doubles.
        """
        window = limit * self.overfetch_factor
        while True:
            try:
                candidates = await self.storage.search_similar(vector, memory_filter, window, min_similarity)
            except ValueError as e:
                # Backend rejected the vector shape before the pool learned the dimension
                raise ValidationError(str(e)) from e

            candidates.sort(key=_ranking_key)
            if len(candidates) < window:
                return candidates
            boundary = min(similarity for _, similarity in candidates)
            if candidates[limit - 1][1] > boundary:
                return candidates
            logger.debug(f"Similarity tie at the cut-off ({boundary:.6f}); widening window from {window}")
            window *= 2

    async def _search(
        self,
        query: str | list[float],
        filters: SearchFilters,
        limit: int,
        min_similarity: float,
        include_related: bool,
    ) -> list[SearchResult]:
        vector = await self.embedder.embed(query, "query") if isinstance(query, str) else query

        states = {MemoryState.ACTIVE, MemoryState.STALE} if filters.include_stale else {MemoryState.ACTIVE}
        memory_filter = MemoryFilter(
            scope=filters.scope,
            states=frozenset(states),
            memory_types=frozenset(filters.memory_types) if filters.memory_types is not None else None,
            min_importance=filters.min_importance,
            metadata=filters.metadata,
            created_after=filters.created_after,
            created_before=filters.created_before,
        )

        candidates = await self._fetch_ranked(vector, memory_filter, limit, min_similarity)
        results = [SearchResult(memory=m, similarity=s) for m, s in candidates[:limit]]

        if include_related and self.graph is not None:
            for result in results:
                result.related = await self.graph.get_related(result.memory.id, filters.scope, max_depth=1)

        logger.debug(f"Search in scope {filters.scope}: {len(candidates)} candidates, {len(results)} results")
        return results
