"""
Memory Engine - the caller-facing operation set.

Composes the memory store, similarity search, relationship graph, access
tracker and importance engine behind one async API. Every operation returns
a typed value or raises an error from ``semantic_memory.errors``; every
mutating operation is recorded in an in-process audit trail.
"""

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from ..cache.redis_cache import EmbeddingCache
from ..embeddings.pool import EmbeddingPool
from ..errors import ConflictError, DependencyError, MemoryEngineError, NotFoundError
from ..graph.relationship_graph import RelationshipGraph
from ..models.access_event import AccessEvent, AccessType
from ..models.audit_log import AuditLog, AuditOperation
from ..models.memory import USABLE_STATES, Memory, MemoryState, MemoryType
from ..models.relationship import RelatedMemory, Relationship
from ..models.search import SearchFilters, SearchResult
from ..storage.base import MemoryStorage
from .access_tracker import AccessTracker
from .importance_engine import ImportanceEngine, ImportanceUpdate, SweepReport
from .memory_store import MemoryStore, require_scope
from .search_engine import SimilaritySearchEngine
from .sweeper import ImportanceSweeper

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MemoryEngine:
    """
    Semantic memory engine facade.

    Components are injected so each can be tested alone; use
    ``services.factory.create_memory_engine`` to build one from settings.
    """

    # Maximum audit logs to keep in memory (circular buffer)
    _MAX_AUDIT_LOGS = 10000

    def __init__(
        self,
        storage: MemoryStorage,
        embedder: EmbeddingPool,
        store: MemoryStore,
        search_engine: SimilaritySearchEngine,
        graph: RelationshipGraph,
        tracker: AccessTracker,
        importance: ImportanceEngine,
        sweeper: ImportanceSweeper | None = None,
        cache: EmbeddingCache | None = None,
    ):
        self.storage = storage
        self.embedder = embedder
        self.store = store
        self.search_engine = search_engine
        self.graph = graph
        self.tracker = tracker
        self.importance = importance
        self.sweeper = sweeper
        self.cache = cache
        self._audit_logs: deque[AuditLog] = deque(maxlen=self._MAX_AUDIT_LOGS)

    # ── Audit trail ──────────────────────────────────────────────────────

    def _log_audit(
        self,
        operation: str,
        scope: str,
        target_id: str,
        actor: str | None = None,
        success: bool = True,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Log an engine operation for audit trail tracking.

        Non-blocking, stores in circular buffer (last 10K operations).

        Args:
            operation: CREATE, UPDATE, DELETE, CONNECT, DISCONNECT,
                RECORD_ACCESS, RECORD_OUTCOME or RECOMPUTE
            scope: Scope the operation ran in
            target_id: Id of the affected memory, relationship or access event
            actor: Caller identifier if known
            success: Whether operation succeeded
            error: Error message if operation failed
            metadata: Additional operation metadata
        """
        self._audit_logs.append(
            AuditLog(
                operation=AuditOperation(operation).value,
                scope=scope,
                target_id=target_id,
                timestamp=time.time(),
                actor=actor,
                success=success,
                error=error,
                metadata=metadata or {},
            )
        )

    async def _audited(
        self,
        operation: str,
        scope: str,
        target_id: str,
        call: Awaitable[T],
        actor: str | None = None,
        describe: Callable[[T], dict[str, Any]] | None = None,
    ) -> T:
        try:
            result = await call
        except MemoryEngineError as e:
            self._log_audit(operation, scope, target_id, actor, success=False, error=str(e))
            raise
        self._log_audit(operation, scope, target_id, actor, metadata=describe(result) if describe else None)
        return result

    def get_audit_trail(
        self,
        scope: str | None = None,
        limit: int = 100,
        operation: str | None = None,
        actor: str | None = None,
        target_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Get audit trail of engine operations, newest first.

        Args:
            scope: Only entries from this scope
            limit: Maximum number of log entries to return
            operation: Filter by operation type
            actor: Filter by actor
            target_id: Filter by affected record id

        Returns:
            Dictionary with audit log entries and statistics
        """
        filtered_logs = [log for log in self._audit_logs if log.matches(scope, operation, actor, target_id)]
        filtered_logs.sort(key=lambda x: x.timestamp, reverse=True)

        operations_by_type: dict[str, int] = {}
        success_count = 0
        for log in filtered_logs:
            operations_by_type[log.operation] = operations_by_type.get(log.operation, 0) + 1
            if log.success:
                success_count += 1

        total_ops = len(filtered_logs)
        return {
            "total_operations": total_ops,
            "operations": [log.to_dict() for log in filtered_logs[:limit]],
            "operations_by_type": operations_by_type,
            "success_rate": success_count / total_ops if total_ops > 0 else 1.0,
        }

    # ── Memories ─────────────────────────────────────────────────────────

    async def create_memory(
        self,
        content: str,
        scope: str,
        memory_type: str = MemoryType.OBSERVATION.value,
        metadata: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> Memory:
        """Embed and store a new memory (ACTIVE, importance 0.5)."""
        try:
            memory = await self.store.create(content, scope, memory_type, metadata, created_by)
        except MemoryEngineError as e:
            target = getattr(e, "memory_id", None) or ""
            self._log_audit("CREATE", str(scope), target, created_by, success=False, error=str(e))
            raise
        self._log_audit("CREATE", scope, memory.id, created_by, metadata={"memory_type": memory.memory_type})
        return memory

    async def get_memory(self, memory_id: str, scope: str) -> Memory:
        return await self.store.get(memory_id, scope)

    async def update_memory(
        self,
        memory_id: str,
        scope: str,
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
        memory_type: str | None = None,
    ) -> Memory:
        return await self._audited(
            "UPDATE", scope, memory_id, self.store.update(memory_id, scope, content, metadata, memory_type)
        )

    async def delete_memory(self, memory_id: str, scope: str) -> None:
        """Tombstone a memory and remove every edge referencing it."""
        await self._audited(
            "DELETE",
            scope,
            memory_id,
            self.store.delete(memory_id, scope),
            describe=lambda removed: {"relationships_removed": removed},
        )

    # ── Search ───────────────────────────────────────────────────────────

    async def search_memories(
        self,
        query: str | Sequence[float],
        filters: SearchFilters | dict[str, Any] | None = None,
        max_results: int | None = None,
        min_similarity: float = 0.0,
        deadline: float | None = None,
        include_related: bool = False,
    ) -> list[SearchResult]:
        return await self.search_engine.search(
            query,
            filters=filters,
            max_results=max_results,
            min_similarity=min_similarity,
            deadline=deadline,
            include_related=include_related,
        )

    # ── Relationships ────────────────────────────────────────────────────

    async def connect_memories(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str,
        strength: float,
        scope: str,
    ) -> Relationship:
        require_scope(scope)
        return await self._audited(
            "CONNECT",
            scope,
            source_id,
            self.graph.connect(source_id, target_id, relationship_type, strength, scope),
        )

    async def disconnect_memories(self, relationship_id: str, scope: str) -> None:
        require_scope(scope)
        await self._audited("DISCONNECT", scope, relationship_id, self.graph.disconnect(relationship_id, scope))

    async def get_related_memories(
        self,
        memory_id: str,
        scope: str,
        max_depth: int | None = None,
        relationship_types: list[str] | None = None,
        deadline: float | None = None,
    ) -> list[RelatedMemory]:
        require_scope(scope)
        return await self.graph.get_related(memory_id, scope, max_depth, relationship_types, deadline)

    # ── Access tracking & importance ─────────────────────────────────────

    async def record_access(
        self,
        memory_id: str,
        scope: str,
        accessor_id: str | None = None,
        access_type: AccessType | str = AccessType.RETRIEVE,
        context: str | None = None,
    ) -> str:
        """
        Record that a retrieved memory was used.

        Returns:
            The access id to pass to ``record_outcome``
        """
        require_scope(scope)
        event = await self._audited(
            "RECORD_ACCESS",
            scope,
            memory_id,
            self.tracker.record_access(memory_id, scope, accessor_id, access_type, context),
            actor=accessor_id,
        )

        # Non-fatal: the event is already persisted
        try:
            await self.store.mark_accessed(memory_id, scope, event.timestamp)
        except (NotFoundError, ConflictError, DependencyError) as e:
            logger.warning(f"Could not mark memory {memory_id} accessed (non-fatal): {e}")
        return event.id

    async def record_outcome(
        self,
        access_id: str,
        scope: str,
        outcome_score: float,
        outcome_notes: str | None = None,
    ) -> AccessEvent:
        """Finalize an access with its outcome, then recompute the memory's importance."""
        event = await self._audited(
            "RECORD_OUTCOME",
            scope,
            access_id,
            self.tracker.record_outcome(access_id, scope, outcome_score, outcome_notes),
        )

        try:
            await self.recompute_importance(event.memory_id, scope)
        except (NotFoundError, ConflictError, DependencyError) as e:
            logger.warning(f"Importance recompute after outcome on {event.memory_id} failed (non-fatal): {e}")
        return event

    async def recompute_importance(self, memory_id: str, scope: str) -> ImportanceUpdate:
        return await self._audited(
            "RECOMPUTE",
            scope,
            memory_id,
            self.importance.recompute_importance(memory_id, scope),
            describe=lambda u: {"old_score": u.old_score, "new_score": u.new_score},
        )

    async def get_access_history(self, memory_id: str, scope: str) -> list[AccessEvent]:
        return await self.tracker.list_events(memory_id, scope)

    # ── Analytics & maintenance ──────────────────────────────────────────

    async def get_memory_stats(self, scope: str) -> dict[str, Any]:
        """
        Counts by state and type, plus importance statistics over usable memories.

        Deleted memories are counted by state only.
        """
        require_scope(scope)
        memories = await self.storage.list_memories(scope)

        by_state = {state.value: 0 for state in MemoryState if state != MemoryState.CREATED}
        by_type: dict[str, int] = {}
        scores: list[float] = []
        for memory in memories:
            by_state[memory.state.value] = by_state.get(memory.state.value, 0) + 1
            if memory.state == MemoryState.DELETED:
                continue
            by_type[memory.memory_type] = by_type.get(memory.memory_type, 0) + 1
            if memory.state in USABLE_STATES:
                scores.append(memory.importance_score)

        relationships = await self.storage.list_relationships(scope)
        return {
            "scope": scope,
            "total_memories": sum(count for state, count in by_state.items() if state != MemoryState.DELETED.value),
            "by_state": by_state,
            "by_type": by_type,
            "average_importance": sum(scores) / len(scores) if scores else None,
            "max_importance": max(scores) if scores else None,
            "relationships": len(relationships),
        }

    async def run_sweep(self, scope: str | None = None) -> SweepReport:
        if self.sweeper is not None and scope is None:
            return await self.sweeper.run_once()
        return await self.importance.sweep(scope)

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "embedding": self.embedder.get_stats(),
            "graph": self.graph.get_stats(),
            "audit_entries": len(self._audit_logs),
        }
        if self.sweeper is not None:
            stats["sweeper"] = self.sweeper.get_stats()
        if self.cache is not None:
            stats["cache"] = self.cache.get_stats()
        return stats

    async def start(self) -> None:
        """Start background maintenance (the scheduled sweep) if configured."""
        if self.sweeper is not None:
            await self.sweeper.start()

    async def close(self) -> None:
        """Stop background work and release storage and cache connections."""
        if self.sweeper is not None:
            await self.sweeper.stop()
        if self.cache is not None:
            await self.cache.close()
        await self.storage.close()
        logger.info("MemoryEngine closed")
