"""
Memory Store: create, read, update and delete memories.

Creation embeds the content before anything is persisted, so a stored
memory is either ACTIVE with an embedding or FAILED with a reason; the
transient CREATED state never reaches storage. Update, delete and state
transitions are serialized per memory id and carry an optimistic version
check against concurrent writers.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..embeddings.pool import EmbeddingPool
from ..errors import ConflictError, DependencyError, NotFoundError, ValidationError
from ..graph.relationship_graph import RelationshipGraph
from ..models.memory import BASELINE_IMPORTANCE, USABLE_STATES, Memory, MemoryState, MemoryType
from ..models.validators import normalize_tag
from ..storage.base import MemoryStorage
from ..utils.locks import KeyedLock

logger = logging.getLogger(__name__)


def require_scope(scope: Any) -> str:
    """Reject a missing or blank scope."""
    if not isinstance(scope, str) or not scope.strip():
        raise ValidationError("scope is required")
    return scope


def _require_content(content: Any) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content must be a non-empty string")
    return content


def _normalize_memory_type(memory_type: Any) -> str:
    if isinstance(memory_type, MemoryType):
        return memory_type.value
    try:
        return normalize_tag(memory_type)
    except ValueError as e:
        raise ValidationError(f"Invalid memory type: {memory_type!r}") from e


def _require_metadata(metadata: Any) -> dict[str, Any]:
    if metadata is None:
        return {}
    if not isinstance(metadata, dict) or not all(isinstance(k, str) for k in metadata):
        raise ValidationError("metadata must be a mapping with string keys")
    return dict(metadata)


class MemoryStore:
    """Lifecycle management for memory records."""

    def __init__(
        self,
        storage: MemoryStorage,
        embedder: EmbeddingPool,
        graph: RelationshipGraph,
        locks: KeyedLock | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.embedder = embedder
        self.graph = graph
        self.locks = locks or KeyedLock()
        self._clock = clock

    async def create(
        self,
        content: str,
        scope: str,
        memory_type: str = MemoryType.OBSERVATION.value,
        metadata: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> Memory:
        """
        Embed and persist a new memory.

        Returns:
            The ACTIVE memory with baseline importance

        Raises:
            ValidationError: Blank content, missing scope, bad type or metadata
            DependencyError: Embedding failed after retries. A FAILED record
                is persisted and its id is available as ``error.memory_id``
        """
        require_scope(scope)
        _require_content(content)
        now = self._clock()
        try:
            draft = Memory(
                scope=scope,
                content=content,
                memory_type=_normalize_memory_type(memory_type),
                metadata=_require_metadata(metadata),
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e

        try:
            vector = await self.embedder.embed(content, "passage")
        except DependencyError as e:
            failed = draft.model_copy(update={"state": MemoryState.FAILED, "failure_reason": str(e)})
            try:
                await self.storage.store_memory(failed)
            except DependencyError as store_err:
                logger.error(f"Could not persist FAILED memory {failed.id}: {store_err}")
                raise DependencyError(str(e)) from e
            logger.error(f"Memory {failed.id} FAILED: {e}")
            raise DependencyError(f"Embedding failed for memory {failed.id}: {e}", memory_id=failed.id) from e

        memory = draft.model_copy(
            update={"embedding": vector, "state": MemoryState.ACTIVE, "importance_score": BASELINE_IMPORTANCE}
        )
        await self.storage.store_memory(memory)
        logger.info(f"Created memory {memory.id} in scope {scope} ({memory.memory_type})")
        return memory

    async def get(self, memory_id: str, scope: str) -> Memory:
        """
        Fetch a memory in any state except DELETED.

        FAILED memories are returned so callers can inspect ``failure_reason``.

        Raises:
            NotFoundError: Absent, deleted, or in another scope
        """
        require_scope(scope)
        memory = await self.storage.get_memory(scope, memory_id)
        if memory is None or memory.state == MemoryState.DELETED:
            raise NotFoundError("memory", memory_id)
        return memory

    async def get_usable(self, memory_id: str, scope: str) -> Memory:
        """Fetch a memory that can be searched, connected or accessed (ACTIVE or STALE)."""
        memory = await self.get(memory_id, scope)
        if memory.state not in USABLE_STATES:
            raise NotFoundError("memory", memory_id)
        return memory

    async def update(
        self,
        memory_id: str,
        scope: str,
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
        memory_type: str | None = None,
    ) -> Memory:
        """
        Change content, metadata or type. A content change re-embeds.

        If re-embedding fails the stored record is left as it was.

        Raises:
            ValidationError: Nothing to change, or an invalid new value
            NotFoundError: Absent, deleted, or in another scope
            ConflictError: The memory is FAILED, or a concurrent write won
            DependencyError: Re-embedding failed after retries
        """
        if content is None and metadata is None and memory_type is None:
            raise ValidationError("update requires content, metadata or memory_type")

        changes: dict[str, Any] = {}
        if content is not None:
            changes["content"] = _require_content(content)
        if metadata is not None:
            changes["metadata"] = _require_metadata(metadata)
        if memory_type is not None:
            changes["memory_type"] = _normalize_memory_type(memory_type)

        async with self.locks.acquire(memory_id):
            current = await self.get(memory_id, scope)
            if current.state == MemoryState.FAILED:
                raise ConflictError(f"Memory {memory_id} is FAILED and cannot be updated")

            # None keeps the stored vector
            changes["embedding"] = None
            if "content" in changes and changes["content"] != current.content:
                changes["embedding"] = await self.embedder.embed(changes["content"], "passage")

            updated = current.model_copy(update=changes)
            updated.touch(self._clock())
            saved = await self.storage.update_memory(updated, current.version)

        logger.info(f"Updated memory {memory_id} (fields: {', '.join(k for k in changes if k != 'embedding')})")
        return saved

    async def delete(self, memory_id: str, scope: str) -> int:
        """
        Mark a memory DELETED and remove every edge that references it.

        Returns:
            Number of relationships removed

        Raises:
            NotFoundError: Absent or in another scope
            ConflictError: Already deleted
        """
        require_scope(scope)
        async with self.locks.acquire(memory_id):
            current = await self.storage.get_memory(scope, memory_id)
            if current is None:
                raise NotFoundError("memory", memory_id)
            if current.state == MemoryState.DELETED:
                # Finish a cascade interrupted after the tombstone was written
                leftover = await self.graph.remove_memory(memory_id, scope)
                if leftover:
                    logger.warning(f"Removed {leftover} leftover relationships of deleted memory {memory_id}")
                raise ConflictError(f"Memory {memory_id} is already deleted")

            # Edges go first: a failed cascade leaves the memory live, so delete can be retried
            removed = await self.graph.remove_memory(memory_id, scope)
            tombstone = current.model_copy(update={"state": MemoryState.DELETED, "embedding": None})
            tombstone.touch(self._clock())
            await self.storage.update_memory(tombstone, current.version)
            # Edges connected while the tombstone was being written
            removed += await self.graph.remove_memory(memory_id, scope)

        logger.info(f"Deleted memory {memory_id} ({current.state.value} -> DELETED, {removed} edges removed)")
        return removed

    async def mark_accessed(self, memory_id: str, scope: str, at: float) -> Memory:
        """Record an access time and reactivate a STALE memory."""
        async with self.locks.acquire(memory_id):
            current = await self.get_usable(memory_id, scope)
            last = current.last_accessed_at
            changes: dict[str, Any] = {"embedding": None, "last_accessed_at": at if last is None else max(last, at)}
            if current.state == MemoryState.STALE:
                changes["state"] = MemoryState.ACTIVE
            saved = await self.storage.update_memory(current.model_copy(update=changes), current.version)

        if current.state == MemoryState.STALE:
            logger.info(f"Memory {memory_id} reactivated (STALE -> ACTIVE)")
        return saved

    async def mark_stale(self, memory_id: str, scope: str, inactive_since: float) -> bool:
        """
        Demote an ACTIVE memory not accessed since *inactive_since*.

        Re-checks under the memory lock, so an access that raced the sweep
        keeps the memory ACTIVE.

        Returns:
            True if the memory was demoted
        """
        async with self.locks.acquire(memory_id):
            current = await self.storage.get_memory(scope, memory_id)
            if current is None or current.state != MemoryState.ACTIVE:
                return False
            last_seen = current.last_accessed_at if current.last_accessed_at is not None else current.created_at
            if last_seen >= inactive_since:
                return False
            await self.storage.update_memory(
                current.model_copy(update={"state": MemoryState.STALE, "embedding": None}), current.version
            )

        logger.info(f"Memory {memory_id} marked STALE (ACTIVE -> STALE)")
        return True
