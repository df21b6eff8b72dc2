# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Qdrant storage backend for the semantic memory engine.

Three collections share a prefix:
- ``{prefix}_memories``: one point per memory, named vector ``content``
  (cosine). FAILED memories are stored without a vector.
- ``{prefix}_relationships``: vector-less points, one per edge.
- ``{prefix}_access_events``: vector-less points, one per access event.

Every call runs the synchronous client in the default executor behind a
circuit breaker, with tenacity retries on transient 5xx responses.
"""

import asyncio
import hashlib
import logging
import re
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    Range,
    SearchParams,
    VectorParams,
)
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import ConflictError, NotFoundError, StorageError
from ..models.access_event import AccessEvent
from ..models.memory import Memory, MemoryState
from ..models.relationship import Relationship
from ..models.search import MemoryFilter
from ..utils.similarity import cosine_similarities
from .base import MemoryStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

VECTOR_NAME = "content"

# Metadata values Qdrant can match exactly; anything else is post-filtered
_MATCHABLE_TYPES = (str, int, bool)


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception is retryable (transient 5xx server errors only).

    Notes:
        - 5xx server errors are transient and retryable
        - 4xx client errors are permanent (configuration/validation) and NOT retryable
    """
    if isinstance(exception, qdrant_exceptions.UnexpectedResponse):
        return hasattr(exception, "status_code") and 500 <= exception.status_code < 600
    return False


def to_point_id(record_id: str) -> str:
    """
    Map a record id onto a Qdrant point id.

    UUID ids are used as-is; any other identifier is hashed to a
    deterministic UUID. The original id is always kept in the payload.
    """
    try:
        return str(uuid.UUID(record_id))
    except ValueError:
        pass
    if len(record_id) >= 32 and re.fullmatch(r"[0-9a-fA-F]+", record_id[:32]):
        uuid_hex = record_id[:32]
    else:
        uuid_hex = hashlib.sha256(record_id.encode()).hexdigest()[:32]
    return str(uuid.UUID(uuid_hex))


class QdrantStorage(MemoryStorage):
    """
    Qdrant storage in server, embedded or in-process (``:memory:``) mode.

    Provides filtered vector search, versioned writes and atomic access
    event finalization with circuit breaker fault tolerance.

    Note:
        Version checks and finalization are read-check-write sequences
        serialized by an in-process lock. They are atomic for one engine
        process per collection prefix; several processes writing the same
        collections through one server can both pass the check.
    """

    def __init__(
        self,
        vector_size: int,
        collection_prefix: str = "semantic_memory",
        storage_path: str | None = None,
        url: str | None = None,
        exact_search: bool = True,
        scroll_batch_size: int = 256,
    ):
        """
        Initialize Qdrant storage backend.

        Args:
            vector_size: Embedding dimension of the memories collection
            collection_prefix: Prefix for the three collection names
            storage_path: Path to Qdrant storage directory (embedded mode),
                or ":memory:" for a throwaway in-process instance
            url: Qdrant server URL (server mode, e.g., "http://localhost:6333")
            exact_search: Score every filtered candidate instead of using HNSW
            scroll_batch_size: Page size for scroll-based listing

        Note:
            If url is provided, uses network client mode. Several processes can
            read through one server, but writes assume a single engine process.
            Otherwise uses embedded mode (single-process only, file locking).
        """
        if url and storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose embedded OR server mode.")
        if not url and not storage_path:
            raise ValueError("Must specify either url (server mode) or storage_path (embedded mode).")
        if vector_size < 1:
            raise ValueError(f"vector_size must be positive, got {vector_size}")

        self.url = url
        self.storage_path = storage_path
        self.vector_size = vector_size
        self.exact_search = exact_search
        self.scroll_batch_size = scroll_batch_size

        self.memories_collection = f"{collection_prefix}_memories"
        self.relationships_collection = f"{collection_prefix}_relationships"
        self.events_collection = f"{collection_prefix}_access_events"

        # Circuit breaker state
        self._failure_count = 0
        self._circuit_open_until: datetime | None = None
        self._failure_threshold = 5  # Open circuit after 5 consecutive failures
        self._circuit_timeout = 60  # Reclose circuit after 60 seconds

        # Serializes read-check-write sequences (version check, finalization)
        self._write_lock = asyncio.Lock()

        self.client: QdrantClient | None = None
        self._initialized = False

        mode = "server" if self.url else "embedded"
        location = self.url if self.url else self.storage_path
        logger.info(
            f"Initializing QdrantStorage: mode={mode}, location={location}, "
            f"vector_size={vector_size}, prefix={collection_prefix}"
        )

    async def initialize(self) -> None:
        """
        Open the client and ensure collections and payload indexes exist.

        Raises:
            StorageError: An existing memories collection has a different
                vector size (embedding model changed without migration)
        """
        if self._initialized:
            logger.debug("QdrantStorage already initialized")
            return

        loop = asyncio.get_running_loop()
        if self.url:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(url=self.url))
            logger.info(f"Connected to Qdrant server at {self.url}")
        elif self.storage_path == ":memory:":
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(location=":memory:"))
            logger.info("Initialized in-process Qdrant storage")
        else:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(path=self.storage_path))
            logger.info(f"Initialized Qdrant embedded storage at {self.storage_path}")

        existing = await self._collection_names()

        if self.memories_collection in existing:
            await self._verify_vector_size()
        else:
            await self._execute(
                lambda: self.client.create_collection(
                    collection_name=self.memories_collection,
                    vectors_config={VECTOR_NAME: VectorParams(size=self.vector_size, distance=Distance.COSINE)},
                )
            )
            logger.info(f"Created collection '{self.memories_collection}' with vector size {self.vector_size}")

        for name in (self.relationships_collection, self.events_collection):
            if name not in existing:
                await self._execute(lambda n=name: self.client.create_collection(collection_name=n, vectors_config={}))
                logger.info(f"Created collection '{name}'")

        await self._ensure_payload_indexes()

        self._initialized = True
        logger.info("QdrantStorage initialization complete")

    async def _collection_names(self) -> set[str]:
        collections = await self._execute(self.client.get_collections)
        return {col.name for col in collections.collections}

    async def _verify_vector_size(self) -> None:
        info = await self._execute(lambda: self.client.get_collection(self.memories_collection))
        vectors = info.config.params.vectors
        params = vectors.get(VECTOR_NAME) if isinstance(vectors, dict) else None
        if params is None:
            raise StorageError(f"Collection '{self.memories_collection}' has no '{VECTOR_NAME}' vector")
        if params.size != self.vector_size:
            raise StorageError(
                f"Collection vector size ({params.size}) doesn't match "
                f"current model dimensions ({self.vector_size}). "
                f"This indicates a configuration error or model version change."
            )
        logger.info("Model compatibility verified")

    async def _ensure_payload_indexes(self) -> None:
        """
        Ensure payload indexes for every filtered field.

        Idempotent: Qdrant ignores create_payload_index if the index already
        exists with the same schema.
        """
        indexes = [
            (self.memories_collection, "scope", PayloadSchemaType.KEYWORD),
            (self.memories_collection, "state", PayloadSchemaType.KEYWORD),
            (self.memories_collection, "memory_type", PayloadSchemaType.KEYWORD),
            (self.memories_collection, "importance_score", PayloadSchemaType.FLOAT),
            (self.memories_collection, "created_at", PayloadSchemaType.FLOAT),
            (self.relationships_collection, "scope", PayloadSchemaType.KEYWORD),
            (self.relationships_collection, "source_memory_id", PayloadSchemaType.KEYWORD),
            (self.relationships_collection, "target_memory_id", PayloadSchemaType.KEYWORD),
            (self.events_collection, "scope", PayloadSchemaType.KEYWORD),
            (self.events_collection, "memory_id", PayloadSchemaType.KEYWORD),
        ]
        for collection, field, schema in indexes:
            await self._execute(
                lambda c=collection, f=field, s=schema: self.client.create_payload_index(
                    collection_name=c, field_name=f, field_schema=s
                )
            )
        logger.info(f"Ensured {len(indexes)} payload indexes")

    # ── Circuit breaker ──────────────────────────────────────────────────

    def _check_circuit_breaker(self) -> None:
        """
        Check if circuit breaker is open and fail fast if so.

        Raises:
            StorageError: If circuit breaker is open with retry timestamp
        """
        if self._circuit_open_until is not None:
            if datetime.now() < self._circuit_open_until:
                retry_time = self._circuit_open_until.strftime("%Y-%m-%d %H:%M:%S")
                raise StorageError(f"Circuit breaker is open until {retry_time}. Service temporarily unavailable.")
            logger.info("Circuit breaker timeout expired, resetting to closed state")
            self._circuit_open_until = None
            self._failure_count = 0

    def _record_failure(self) -> None:
        """Record a failure and open circuit breaker if threshold reached."""
        self._failure_count += 1
        logger.warning(f"Recorded failure #{self._failure_count}")

        if self._failure_count >= self._failure_threshold:
            self._circuit_open_until = datetime.now() + timedelta(seconds=self._circuit_timeout)
            logger.error(
                f"Circuit breaker opened after {self._failure_count} consecutive failures. "
                f"Will retry at {self._circuit_open_until.strftime('%Y-%m-%d %H:%M:%S')}"
            )

    def _record_success(self) -> None:
        if self._failure_count > 0:
            logger.info(f"Operation successful, resetting circuit breaker (was at {self._failure_count} failures)")
            self._failure_count = 0
            self._circuit_open_until = None

    @retry(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _execute_with_retry(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _execute(self, fn: Callable[[], T]) -> T:
        """
        Run a blocking client call with circuit breaker protection.

        Retries up to 3 times for transient 5xx server errors with exponential
        backoff (1-5s). Anything that still fails is raised as StorageError.
        """
        self._check_circuit_breaker()
        try:
            result = await self._execute_with_retry(fn)
        except Exception as e:
            self._record_failure()
            logger.error(f"Qdrant operation failed: {e}")
            raise StorageError(f"Qdrant operation failed: {e}") from e
        self._record_success()
        return result

    async def _scroll_all(self, collection: str, scroll_filter: Filter, with_vectors: Any = False) -> list[Any]:
        """Page through every point matching *scroll_filter*."""
        points: list[Any] = []
        offset = None
        while True:
            batch, offset = await self._execute(
                lambda o=offset: self.client.scroll(
                    collection_name=collection,
                    scroll_filter=scroll_filter,
                    limit=self.scroll_batch_size,
                    offset=o,
                    with_payload=True,
                    with_vectors=with_vectors,
                )
            )
            points.extend(batch)
            if offset is None:
                return points

    async def _retrieve(self, collection: str, record_ids: list[str], with_vectors: Any = False) -> list[Any]:
        if not record_ids:
            return []
        return await self._execute(
            lambda: self.client.retrieve(
                collection_name=collection,
                ids=[to_point_id(r) for r in record_ids],
                with_payload=True,
                with_vectors=with_vectors,
            )
        )

    @staticmethod
    def _scope_condition(scope: str) -> FieldCondition:
        return FieldCondition(key="scope", match=MatchValue(value=scope))

    @staticmethod
    def _point_vector(point: Any) -> list[float] | None:
        vector = getattr(point, "vector", None)
        if isinstance(vector, dict):
            return vector.get(VECTOR_NAME)
        return vector

    def _point_to_memory(self, point: Any) -> Memory:
        return Memory.from_payload(point.payload, embedding=self._point_vector(point))

    # ── Memories ─────────────────────────────────────────────────────────

    async def store_memory(self, memory: Memory) -> None:
        if memory.embedding is not None and len(memory.embedding) != self.vector_size:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.vector_size}, got {len(memory.embedding)}. "
                f"This indicates a configuration error or model version change."
            )
        async with self._write_lock:
            existing = await self._retrieve(self.memories_collection, [memory.id])
            if existing:
                raise ConflictError(f"Memory already exists: {memory.id}")
            vector = {VECTOR_NAME: memory.embedding} if memory.embedding is not None else {}
            point = PointStruct(id=to_point_id(memory.id), vector=vector, payload=memory.to_payload())
            await self._execute(lambda: self.client.upsert(collection_name=self.memories_collection, points=[point]))
        logger.debug(f"Stored memory {memory.id} in Qdrant")

    async def get_memory(self, scope: str, memory_id: str) -> Memory | None:
        points = await self._retrieve(self.memories_collection, [memory_id], with_vectors=[VECTOR_NAME])
        for point in points:
            if point.payload.get("scope") == scope and point.payload.get("id") == memory_id:
                return self._point_to_memory(point)
        return None

    async def get_memories(self, scope: str, memory_ids: Iterable[str]) -> dict[str, Memory]:
        wanted = list(dict.fromkeys(memory_ids))
        points = await self._retrieve(self.memories_collection, wanted)
        found = {}
        for point in points:
            if point.payload.get("scope") == scope and point.payload.get("id") in wanted:
                memory = self._point_to_memory(point)
                found[memory.id] = memory
        return found

    async def update_memory(self, memory: Memory, expected_version: int) -> Memory:
        if memory.embedding is not None and len(memory.embedding) != self.vector_size:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.vector_size}, got {len(memory.embedding)}"
            )
        async with self._write_lock:
            points = await self._retrieve(self.memories_collection, [memory.id], with_vectors=[VECTOR_NAME])
            stored = next((p for p in points if p.payload.get("scope") == memory.scope), None)
            if stored is None:
                raise NotFoundError("memory", memory.id)
            stored_version = int(stored.payload.get("version") or 0)
            if stored_version != expected_version:
                raise ConflictError(
                    f"Memory {memory.id} was modified concurrently "
                    f"(expected version {expected_version}, found {stored_version})"
                )

            updated = memory.model_copy(update={"version": expected_version + 1})
            point_id = to_point_id(memory.id)
            if updated.embedding is None:
                # Payload-only write; report the vector that stays in place
                updated = updated.model_copy(update={"embedding": self._point_vector(stored)})
                await self._execute(
                    lambda: self.client.overwrite_payload(
                        collection_name=self.memories_collection, payload=updated.to_payload(), points=[point_id]
                    )
                )
            else:
                point = PointStruct(id=point_id, vector={VECTOR_NAME: updated.embedding}, payload=updated.to_payload())
                await self._execute(
                    lambda: self.client.upsert(collection_name=self.memories_collection, points=[point])
                )
        return updated

    def _build_memory_filter(self, memory_filter: MemoryFilter) -> tuple[Filter, bool]:
        """
        Translate a MemoryFilter into a Qdrant payload filter.

        Returns:
            (filter, needs_post_filter): the second element is True when some
            metadata value cannot be matched server-side
        """
        must: list[FieldCondition] = [
            self._scope_condition(memory_filter.scope),
            FieldCondition(key="state", match=MatchAny(any=sorted(s.value for s in memory_filter.states))),
        ]
        if memory_filter.memory_types is not None:
            must.append(FieldCondition(key="memory_type", match=MatchAny(any=sorted(memory_filter.memory_types))))
        if memory_filter.min_importance is not None:
            must.append(FieldCondition(key="importance_score", range=Range(gte=memory_filter.min_importance)))
        if memory_filter.created_after is not None or memory_filter.created_before is not None:
            must.append(
                FieldCondition(
                    key="created_at",
                    range=Range(gte=memory_filter.created_after, lte=memory_filter.created_before),
                )
            )

        needs_post_filter = False
        for key, value in memory_filter.metadata.items():
            # bool is an int subclass; float/None/containers are not matchable
            if isinstance(value, _MATCHABLE_TYPES):
                must.append(FieldCondition(key=f"metadata.{key}", match=MatchValue(value=value)))
            else:
                needs_post_filter = True
        return Filter(must=must), needs_post_filter

    async def search_similar(
        self,
        query_vector: list[float],
        memory_filter: MemoryFilter,
        limit: int,
        min_similarity: float | None = None,
    ) -> list[tuple[Memory, float]]:
        if limit <= 0:
            return []
        if len(query_vector) != self.vector_size:
            raise ValueError(f"Query dimension mismatch: expected {self.vector_size}, got {len(query_vector)}")

        query_filter, needs_post_filter = self._build_memory_filter(memory_filter)

        if needs_post_filter:
            return await self._search_by_scan(query_vector, memory_filter, query_filter, limit, min_similarity)

        response = await self._execute(
            lambda: self.client.query_points(
                collection_name=self.memories_collection,
                query=query_vector,
                using=VECTOR_NAME,
                query_filter=query_filter,
                limit=limit,
                score_threshold=min_similarity,
                search_params=SearchParams(exact=self.exact_search),
                with_payload=True,
                with_vectors=False,
            )
        )

        results = []
        for scored_point in response.points:
            similarity = float(scored_point.score)
            if min_similarity is not None and similarity < min_similarity:
                continue
            results.append((self._point_to_memory(scored_point), similarity))
        return results

    async def _search_by_scan(
        self,
        query_vector: list[float],
        memory_filter: MemoryFilter,
        query_filter: Filter,
        limit: int,
        min_similarity: float | None,
    ) -> list[tuple[Memory, float]]:
        """Exact search over the server-filtered set when metadata needs a Python-side match."""
        points = await self._scroll_all(self.memories_collection, query_filter, with_vectors=[VECTOR_NAME])
        candidates = []
        for point in points:
            memory = self._point_to_memory(point)
            if memory.embedding is not None and memory_filter.matches(memory):
                candidates.append(memory)
        if not candidates:
            return []

        sims = cosine_similarities(query_vector, [m.embedding for m in candidates])
        scored = [
            (m.model_copy(update={"embedding": None}), float(s))
            for m, s in zip(candidates, sims, strict=True)
            if min_similarity is None or s >= min_similarity
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    async def list_memories(
        self,
        scope: str | None = None,
        states: Iterable[MemoryState] | None = None,
    ) -> list[Memory]:
        must = []
        if scope is not None:
            must.append(self._scope_condition(scope))
        if states is not None:
            must.append(FieldCondition(key="state", match=MatchAny(any=sorted(s.value for s in states))))
        points = await self._scroll_all(self.memories_collection, Filter(must=must))
        return [self._point_to_memory(p) for p in points]

    # ── Relationships ────────────────────────────────────────────────────

    async def store_relationship(self, relationship: Relationship) -> None:
        point = PointStruct(id=to_point_id(relationship.id), vector={}, payload=relationship.to_payload())
        await self._execute(lambda: self.client.upsert(collection_name=self.relationships_collection, points=[point]))

    async def get_relationship(self, scope: str, relationship_id: str) -> Relationship | None:
        points = await self._retrieve(self.relationships_collection, [relationship_id])
        for point in points:
            if point.payload.get("scope") == scope and point.payload.get("id") == relationship_id:
                return Relationship.from_payload(point.payload)
        return None

    async def delete_relationship(self, scope: str, relationship_id: str) -> bool:
        if await self.get_relationship(scope, relationship_id) is None:
            return False
        await self._execute(
            lambda: self.client.delete(
                collection_name=self.relationships_collection,
                points_selector=PointIdsList(points=[to_point_id(relationship_id)]),
            )
        )
        return True

    async def list_relationships(self, scope: str) -> list[Relationship]:
        points = await self._scroll_all(self.relationships_collection, Filter(must=[self._scope_condition(scope)]))
        return [Relationship.from_payload(p.payload) for p in points]

    async def delete_relationships_for_memory(self, scope: str, memory_id: str) -> int:
        edge_filter = Filter(
            must=[self._scope_condition(scope)],
            should=[
                FieldCondition(key="source_memory_id", match=MatchValue(value=memory_id)),
                FieldCondition(key="target_memory_id", match=MatchValue(value=memory_id)),
            ],
        )
        points = await self._scroll_all(self.relationships_collection, edge_filter)
        if not points:
            return 0
        await self._execute(
            lambda: self.client.delete(
                collection_name=self.relationships_collection,
                points_selector=FilterSelector(filter=edge_filter),
            )
        )
        return len(points)

    # ── Access events ────────────────────────────────────────────────────

    async def store_access_event(self, event: AccessEvent) -> None:
        point = PointStruct(id=to_point_id(event.id), vector={}, payload=event.to_payload())
        async with self._write_lock:
            if await self._retrieve(self.events_collection, [event.id]):
                raise ConflictError(f"Access event already exists: {event.id}")
            await self._execute(lambda: self.client.upsert(collection_name=self.events_collection, points=[point]))

    async def get_access_event(self, scope: str, event_id: str) -> AccessEvent | None:
        points = await self._retrieve(self.events_collection, [event_id])
        for point in points:
            if point.payload.get("scope") == scope and point.payload.get("id") == event_id:
                return AccessEvent.from_payload(point.payload)
        return None

    async def list_access_events(self, scope: str, memory_id: str) -> list[AccessEvent]:
        event_filter = Filter(
            must=[
                self._scope_condition(scope),
                FieldCondition(key="memory_id", match=MatchValue(value=memory_id)),
            ]
        )
        points = await self._scroll_all(self.events_collection, event_filter)
        events = [AccessEvent.from_payload(p.payload) for p in points]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def finalize_access_event(
        self,
        scope: str,
        event_id: str,
        outcome_score: float,
        outcome_notes: str | None,
        finalized_at: float,
    ) -> AccessEvent:
        async with self._write_lock:
            event = await self.get_access_event(scope, event_id)
            if event is None:
                raise NotFoundError("access event", event_id)
            if event.finalized:
                raise ConflictError(f"Access event {event_id} is already finalized")
            finalized = event.model_copy(
                update={
                    "outcome_score": outcome_score,
                    "outcome_notes": outcome_notes,
                    "finalized": True,
                    "finalized_at": finalized_at,
                }
            )
            await self._execute(
                lambda: self.client.set_payload(
                    collection_name=self.events_collection,
                    payload={
                        "outcome_score": outcome_score,
                        "outcome_notes": outcome_notes,
                        "finalized": True,
                        "finalized_at": finalized_at,
                    },
                    points=[to_point_id(event_id)],
                )
            )
        return finalized

    async def close(self) -> None:
        """
        Close the Qdrant client connection.

        Safe to call multiple times. Idempotent operation.
        """
        if self.client is not None:
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self.client.close)
                logger.info("Qdrant client closed successfully")
            except Exception as e:
                logger.warning(f"Error closing Qdrant client: {e}")
            finally:
                self.client = None
                self._initialized = False
