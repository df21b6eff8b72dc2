"""
Directed, weighted relationship graph between memories.

Edges live in the storage backend; this module keeps an in-process
adjacency index per scope (memory id -> outgoing / incoming edge ids) so
traversal never scans the edge table. A scope's index is loaded lazily on
first use and maintained on every mutation made through this class.
"""

import logging
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from pydantic import ValidationError as PydanticValidationError

from ..errors import NotFoundError, ValidationError
from ..models.memory import USABLE_STATES
from ..models.relationship import RelatedMemory, Relationship
from ..storage.base import MemoryStorage
from ..utils.deadline import run_with_deadline
from ..utils.locks import KeyedLock
from .schema import normalize_relation_type, normalize_relation_types

logger = logging.getLogger(__name__)


@dataclass
class _ScopeIndex:
    """Adjacency index for one scope."""

    edges: dict[str, Relationship] = field(default_factory=dict)
    outgoing: dict[str, set[str]] = field(default_factory=dict)
    incoming: dict[str, set[str]] = field(default_factory=dict)
    by_key: dict[tuple[str, str, str], str] = field(default_factory=dict)

    def add(self, edge: Relationship) -> None:
        self.edges[edge.id] = edge
        self.outgoing.setdefault(edge.source_memory_id, set()).add(edge.id)
        self.incoming.setdefault(edge.target_memory_id, set()).add(edge.id)
        self.by_key[edge.key] = edge.id

    def remove(self, edge_id: str) -> Relationship | None:
        edge = self.edges.pop(edge_id, None)
        if edge is None:
            return None
        self.outgoing.get(edge.source_memory_id, set()).discard(edge_id)
        self.incoming.get(edge.target_memory_id, set()).discard(edge_id)
        self.by_key.pop(edge.key, None)
        return edge

    def edge_ids_for(self, memory_id: str) -> set[str]:
        return self.outgoing.get(memory_id, set()) | self.incoming.get(memory_id, set())


class RelationshipGraph:
    """Typed, weighted edges with bounded-depth strongest-path traversal."""

    def __init__(
        self,
        storage: MemoryStorage,
        default_max_depth: int = 1,
        max_depth_cap: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.default_max_depth = default_max_depth
        self.max_depth_cap = max_depth_cap
        self._clock = clock
        self._indexes: dict[str, _ScopeIndex] = {}
        self._load_locks = KeyedLock()
        self._scope_locks = KeyedLock()

    async def _index(self, scope: str) -> _ScopeIndex:
        index = self._indexes.get(scope)
        if index is not None:
            return index
        async with self._load_locks.acquire(scope):
            index = self._indexes.get(scope)
            if index is None:
                index = _ScopeIndex()
                for edge in await self.storage.list_relationships(scope):
                    index.add(edge)
                self._indexes[scope] = index
                logger.debug(f"Loaded {len(index.edges)} relationships for scope {scope}")
        return index

    async def _require_usable(self, scope: str, *memory_ids: str) -> None:
        found = await self.storage.get_memories(scope, memory_ids)
        for memory_id in memory_ids:
            memory = found.get(memory_id)
            if memory is None or memory.state not in USABLE_STATES:
                raise NotFoundError("memory", memory_id)

    async def connect(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str,
        strength: float,
        scope: str,
    ) -> Relationship:
        """
        Create a directed edge, or update the strength of an existing one.

        At most one edge exists per (source, target, type); reconnecting
        replaces its strength in place and keeps its id.

        Raises:
            ValidationError: Self-loop, bad type tag, or strength outside (0, 1]
            NotFoundError: Either memory is absent, deleted, failed, or in another scope
        """
        if source_id == target_id:
            raise ValidationError("Cannot create a relationship from a memory to itself")
        rel_type = normalize_relation_type(relationship_type)
        if not isinstance(strength, int | float) or not math.isfinite(strength) or not 0.0 < strength <= 1.0:
            raise ValidationError(f"strength must be in (0, 1], got {strength!r}")

        index = await self._index(scope)

        # Checked under the scope lock so a concurrent delete cannot leave a dangling edge
        async with self._scope_locks.acquire(scope):
            await self._require_usable(scope, source_id, target_id)
            now = self._clock()
            existing_id = index.by_key.get((source_id, target_id, rel_type))
            if existing_id is not None:
                edge = index.edges[existing_id].model_copy(update={"strength": float(strength), "updated_at": now})
            else:
                try:
                    edge = Relationship(
                        scope=scope,
                        source_memory_id=source_id,
                        target_memory_id=target_id,
                        relationship_type=rel_type,
                        strength=strength,
                        created_at=now,
                    )
                except PydanticValidationError as e:
                    raise ValidationError(str(e)) from e

            await self.storage.store_relationship(edge)
            index.add(edge)

        action = "Updated" if existing_id else "Created"
        logger.info(f"{action} relationship {edge.id}: {source_id} -[{rel_type} {edge.strength}]-> {target_id}")
        return edge

    async def disconnect(self, relationship_id: str, scope: str) -> None:
        """
        Remove an edge.

        Raises:
            NotFoundError: Edge absent or in another scope
        """
        index = await self._index(scope)
        async with self._scope_locks.acquire(scope):
            if not await self.storage.delete_relationship(scope, relationship_id):
                raise NotFoundError("relationship", relationship_id)
            index.remove(relationship_id)
        logger.info(f"Deleted relationship {relationship_id}")

    async def remove_memory(self, memory_id: str, scope: str) -> int:
        """Cascade-delete every edge referencing *memory_id*. Returns the count removed."""
        index = await self._index(scope)
        async with self._scope_locks.acquire(scope):
            removed = await self.storage.delete_relationships_for_memory(scope, memory_id)
            for edge_id in list(index.edge_ids_for(memory_id)):
                index.remove(edge_id)
            index.outgoing.pop(memory_id, None)
            index.incoming.pop(memory_id, None)
        if removed:
            logger.info(f"Removed {removed} relationships of deleted memory {memory_id}")
        return removed

    async def get_related(
        self,
        memory_id: str,
        scope: str,
        max_depth: int | None = None,
        relationship_types: list[str] | None = None,
        deadline: float | None = None,
    ) -> list[RelatedMemory]:
        """
        Memories reachable from *memory_id* along outgoing edges.

        Breadth-first up to ``max_depth`` hops (clamped to the configured
        cap). Each reachable memory is reported once with its strongest path,
        where path strength is the product of edge strengths. The start
        memory is never reported.

        Returns:
            RelatedMemory list ordered by effective strength descending, then hops

        Raises:
            ValidationError: max_depth < 1 or a bad relationship type
            NotFoundError: Start memory absent, unusable, or in another scope
            DeadlineExceededError: *deadline* seconds elapsed
        """
        depth = self.default_max_depth if max_depth is None else max_depth
        if depth < 1:
            raise ValidationError(f"max_depth must be >= 1, got {depth}")
        depth = min(depth, self.max_depth_cap)
        types = normalize_relation_types(relationship_types)

        return await run_with_deadline(self._traverse(memory_id, scope, depth, types), deadline, "get_related")

    async def _traverse(
        self,
        start_id: str,
        scope: str,
        max_depth: int,
        types: frozenset[str] | None,
    ) -> list[RelatedMemory]:
        await self._require_usable(scope, start_id)
        index = await self._index(scope)

        # Best path strength per node doubles as the visited set: a node is
        # expanded again only when a strictly stronger path reaches it
        best: dict[str, tuple[float, list[str]]] = {}
        queue: deque[tuple[str, float, list[str]]] = deque([(start_id, 1.0, [start_id])])

        while queue:
            node, strength, path = queue.popleft()
            if len(path) - 1 >= max_depth:
                continue
            for edge_id in sorted(index.outgoing.get(node, ())):
                edge = index.edges[edge_id]
                if types is not None and edge.relationship_type not in types:
                    continue
                nxt = edge.target_memory_id
                if nxt in path:
                    continue
                candidate = strength * edge.strength
                if nxt in best and candidate <= best[nxt][0]:
                    continue
                new_path = path + [nxt]
                best[nxt] = (candidate, new_path)
                queue.append((nxt, candidate, new_path))

        if not best:
            return []

        memories = await self.storage.get_memories(scope, best.keys())
        related = [
            RelatedMemory(memory=memories[node], effective_strength=strength, path=path)
            for node, (strength, path) in best.items()
            if node in memories and memories[node].state in USABLE_STATES
        ]
        related.sort(key=lambda r: (-r.effective_strength, r.hops, r.memory.id))
        return related

    async def neighbors(self, memory_id: str, scope: str) -> dict[str, float]:
        """Direct neighbours in either direction, with the strongest connecting edge's strength."""
        index = await self._index(scope)
        result: dict[str, float] = {}
        for edge_id in index.edge_ids_for(memory_id):
            edge = index.edges[edge_id]
            other = edge.target_memory_id if edge.source_memory_id == memory_id else edge.source_memory_id
            result[other] = max(result.get(other, 0.0), edge.strength)
        return result

    async def edges_for(self, memory_id: str, scope: str) -> list[Relationship]:
        index = await self._index(scope)
        edges = [index.edges[eid] for eid in index.edge_ids_for(memory_id)]
        edges.sort(key=lambda e: (e.created_at, e.id))
        return edges

    def get_stats(self) -> dict[str, int]:
        return {
            "scopes_loaded": len(self._indexes),
            "relationships": sum(len(i.edges) for i in self._indexes.values()),
        }
