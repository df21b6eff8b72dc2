"""Search filter and result models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .memory import Memory, MemoryState
from .relationship import RelatedMemory
from .validators import UnitFloat, normalize_tag


class SearchFilters(BaseModel):
    """Caller-facing search restrictions.

    ``scope`` is optional at the model level so that a missing scope can be
    reported as an engine ValidationError rather than a pydantic one.
    """

    model_config = ConfigDict(populate_by_name=True)

    scope: str | None = None
    memory_types: list[str] | None = None
    min_importance: UnitFloat | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_after: float | None = None
    created_before: float | None = None
    include_stale: bool = False

    @field_validator("memory_types", mode="before")
    @classmethod
    def normalize_types(cls, v: Any) -> list[str] | None:
        if v is None:
            return None
        if isinstance(v, str):
            v = [v]
        return [normalize_tag(t) for t in v]


class MemoryFilter(BaseModel):
    """Storage-level candidate filter, derived from SearchFilters."""

    scope: str
    states: frozenset[MemoryState] = frozenset({MemoryState.ACTIVE})
    memory_types: frozenset[str] | None = None
    min_importance: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_after: float | None = None
    created_before: float | None = None

    def matches(self, memory: Memory) -> bool:
        """Evaluate the filter in-process (used by the in-memory backend and as a post-filter)."""
        if memory.scope != self.scope or memory.state not in self.states:
            return False
        if self.memory_types is not None and memory.memory_type not in self.memory_types:
            return False
        if self.min_importance is not None and memory.importance_score < self.min_importance:
            return False
        if self.created_after is not None and memory.created_at < self.created_after:
            return False
        if self.created_before is not None and memory.created_at > self.created_before:
            return False
        for key, value in self.metadata.items():
            if key not in memory.metadata or memory.metadata[key] != value:
                return False
        return True


class SearchResult(BaseModel):
    """A ranked search hit."""

    memory: Memory
    similarity: float
    related: list[RelatedMemory] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory": self.memory.model_dump(exclude={"embedding"}, mode="json"),
            "similarity": self.similarity,
            "related": [
                {
                    "memory_id": r.memory.id,
                    "content": r.memory.content,
                    "effective_strength": r.effective_strength,
                    "path": r.path,
                }
                for r in self.related
            ],
        }
