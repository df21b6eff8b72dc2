"""
In-process storage backend.

Keeps every record in dictionaries guarded by a single asyncio.Lock and
scores candidates with an exact numpy cosine scan. Intended for tests,
local development and small single-process deployments.
"""

import asyncio
import logging
from collections.abc import Iterable

from ..errors import ConflictError, NotFoundError
from ..models.access_event import AccessEvent
from ..models.memory import Memory, MemoryState
from ..models.relationship import Relationship
from ..models.search import MemoryFilter
from ..utils.similarity import cosine_similarities
from .base import MemoryStorage

logger = logging.getLogger(__name__)


class InMemoryStorage(MemoryStorage):
    """Dictionary-backed MemoryStorage with exact cosine search."""

    def __init__(self):
        self._memories: dict[str, Memory] = {}
        self._relationships: dict[str, Relationship] = {}
        self._events: dict[str, AccessEvent] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True
        logger.info("InMemoryStorage initialized")

    async def close(self) -> None:
        self._initialized = False

    # Records are copied on the way in and out so callers never alias stored state

    async def store_memory(self, memory: Memory) -> None:
        async with self._lock:
            if memory.id in self._memories:
                raise ConflictError(f"Memory already exists: {memory.id}")
            self._memories[memory.id] = memory.model_copy(deep=True)

    async def get_memory(self, scope: str, memory_id: str) -> Memory | None:
        stored = self._memories.get(memory_id)
        if stored is None or stored.scope != scope:
            return None
        return stored.model_copy(deep=True)

    async def get_memories(self, scope: str, memory_ids: Iterable[str]) -> dict[str, Memory]:
        found = {}
        for memory_id in memory_ids:
            stored = self._memories.get(memory_id)
            if stored is not None and stored.scope == scope:
                found[memory_id] = stored.model_copy(deep=True)
        return found

    async def update_memory(self, memory: Memory, expected_version: int) -> Memory:
        async with self._lock:
            stored = self._memories.get(memory.id)
            if stored is None or stored.scope != memory.scope:
                raise NotFoundError("memory", memory.id)
            if stored.version != expected_version:
                raise ConflictError(
                    f"Memory {memory.id} was modified concurrently "
                    f"(expected version {expected_version}, found {stored.version})"
                )
            updated = memory.model_copy(deep=True)
            updated.version = expected_version + 1
            if updated.embedding is None:
                updated.embedding = stored.embedding
            self._memories[memory.id] = updated
            return updated.model_copy(deep=True)

    async def search_similar(
        self,
        query_vector: list[float],
        memory_filter: MemoryFilter,
        limit: int,
        min_similarity: float | None = None,
    ) -> list[tuple[Memory, float]]:
        candidates = [
            m for m in self._memories.values() if m.embedding is not None and memory_filter.matches(m)
        ]
        if not candidates or limit <= 0:
            return []

        sims = cosine_similarities(query_vector, [m.embedding for m in candidates])
        scored = [
            (memory, float(sim))
            for memory, sim in zip(candidates, sims, strict=True)
            if min_similarity is None or sim >= min_similarity
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [(m.model_copy(update={"embedding": None}, deep=True), s) for m, s in scored[:limit]]

    async def list_memories(
        self,
        scope: str | None = None,
        states: Iterable[MemoryState] | None = None,
    ) -> list[Memory]:
        wanted = set(states) if states is not None else None
        return [
            m.model_copy(update={"embedding": None}, deep=True)
            for m in self._memories.values()
            if (scope is None or m.scope == scope) and (wanted is None or m.state in wanted)
        ]

    async def store_relationship(self, relationship: Relationship) -> None:
        async with self._lock:
            self._relationships[relationship.id] = relationship.model_copy(deep=True)

    async def get_relationship(self, scope: str, relationship_id: str) -> Relationship | None:
        stored = self._relationships.get(relationship_id)
        if stored is None or stored.scope != scope:
            return None
        return stored.model_copy(deep=True)

    async def delete_relationship(self, scope: str, relationship_id: str) -> bool:
        async with self._lock:
            stored = self._relationships.get(relationship_id)
            if stored is None or stored.scope != scope:
                return False
            del self._relationships[relationship_id]
            return True

    async def list_relationships(self, scope: str) -> list[Relationship]:
        return [r.model_copy(deep=True) for r in self._relationships.values() if r.scope == scope]

    async def delete_relationships_for_memory(self, scope: str, memory_id: str) -> int:
        async with self._lock:
            doomed = [
                rid
                for rid, r in self._relationships.items()
                if r.scope == scope and memory_id in (r.source_memory_id, r.target_memory_id)
            ]
            for rid in doomed:
                del self._relationships[rid]
            return len(doomed)

    async def store_access_event(self, event: AccessEvent) -> None:
        async with self._lock:
            if event.id in self._events:
                raise ConflictError(f"Access event already exists: {event.id}")
            self._events[event.id] = event.model_copy(deep=True)

    async def get_access_event(self, scope: str, event_id: str) -> AccessEvent | None:
        stored = self._events.get(event_id)
        if stored is None or stored.scope != scope:
            return None
        return stored.model_copy(deep=True)

    async def list_access_events(self, scope: str, memory_id: str) -> list[AccessEvent]:
        events = [e.model_copy(deep=True) for e in self._events.values() if e.scope == scope and e.memory_id == memory_id]
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
        async with self._lock:
            stored = self._events.get(event_id)
            if stored is None or stored.scope != scope:
                raise NotFoundError("access event", event_id)
            if stored.finalized:
                raise ConflictError(f"Access event {event_id} is already finalized")
            finalized = stored.model_copy(
                update={
                    "outcome_score": outcome_score,
                    "outcome_notes": outcome_notes,
                    "finalized": True,
                    "finalized_at": finalized_at,
                }
            )
            self._events[event_id] = finalized
            return finalized.model_copy(deep=True)
