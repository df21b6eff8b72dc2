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
Abstract storage boundary for the semantic memory engine.

Every record is addressed by ``(scope, id)``. A lookup with the right id
but the wrong scope behaves exactly like a missing record, so callers can
never read another tenant's data.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from ..models.access_event import AccessEvent
from ..models.memory import Memory, MemoryState
from ..models.relationship import Relationship
from ..models.search import MemoryFilter


class MemoryStorage(ABC):
    """Repository for memories, relationships and access events."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create collections, open connections)."""

    async def close(self) -> None:
        """Release backend resources. Safe to call more than once."""

    # ── Memories ─────────────────────────────────────────────────────────

    @abstractmethod
    async def store_memory(self, memory: Memory) -> None:
        """
        Persist a new memory.

        Raises:
            ConflictError: A memory with this id already exists
            StorageError: Backend failure
        """

    @abstractmethod
    async def get_memory(self, scope: str, memory_id: str) -> Memory | None:
        """Fetch a memory in any state, or None if absent from *scope*."""

    @abstractmethod
    async def get_memories(self, scope: str, memory_ids: Iterable[str]) -> dict[str, Memory]:
        """Batch fetch; ids absent from *scope* are omitted from the result."""

    @abstractmethod
    async def update_memory(self, memory: Memory, expected_version: int) -> Memory:
        """
        Replace a stored memory if its version still matches.

        The stored version becomes ``expected_version + 1``. When
        ``memory.embedding`` is None the stored vector is kept.

        Raises:
            NotFoundError: The memory is absent from its scope
            ConflictError: Stored version differs from *expected_version*
        """

    @abstractmethod
    async def search_similar(
        self,
        query_vector: list[float],
        memory_filter: MemoryFilter,
        limit: int,
        min_similarity: float | None = None,
    ) -> list[tuple[Memory, float]]:
        """
        Filtered cosine similarity search.

        Filters are applied before similarity so only matching candidates
        are scored. Returns up to *limit* (memory, similarity) pairs, highest
        similarity first. Returned memories carry no embedding.
        """

    @abstractmethod
    async def list_memories(
        self,
        scope: str | None = None,
        states: Iterable[MemoryState] | None = None,
    ) -> list[Memory]:
        """List memories (without embeddings), optionally by scope and state."""

    # ── Relationships ────────────────────────────────────────────────────

    @abstractmethod
    async def store_relationship(self, relationship: Relationship) -> None:
        """Insert or replace a relationship by id."""

    @abstractmethod
    async def get_relationship(self, scope: str, relationship_id: str) -> Relationship | None:
        """Fetch a relationship, or None if absent from *scope*."""

    @abstractmethod
    async def delete_relationship(self, scope: str, relationship_id: str) -> bool:
        """Delete a relationship. Returns False if it was absent."""

    @abstractmethod
    async def list_relationships(self, scope: str) -> list[Relationship]:
        """All relationships in *scope*."""

    @abstractmethod
    async def delete_relationships_for_memory(self, scope: str, memory_id: str) -> int:
        """Delete every edge with *memory_id* as source or target. Returns the count."""

    # ── Access events ────────────────────────────────────────────────────

    @abstractmethod
    async def store_access_event(self, event: AccessEvent) -> None:
        """Append an access event."""

    @abstractmethod
    async def get_access_event(self, scope: str, event_id: str) -> AccessEvent | None:
        """Fetch an access event, or None if absent from *scope*."""

    @abstractmethod
    async def list_access_events(self, scope: str, memory_id: str) -> list[AccessEvent]:
        """All access events for a memory, oldest first."""

    @abstractmethod
    async def finalize_access_event(
        self,
        scope: str,
        event_id: str,
        outcome_score: float,
        outcome_notes: str | None,
        finalized_at: float,
    ) -> AccessEvent:
        """
        Atomically set the outcome on an unfinalized event.

        Exactly one concurrent caller succeeds for a given event.

        Raises:
            NotFoundError: The event is absent from *scope*
            ConflictError: The event is already finalized
        """
