"""Relationship (graph edge) models."""

import time
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .memory import Memory, new_id
from .validators import Identifier, Scope, Strength, TypeTag


class RelationshipType(str, Enum):
    """Built-in relationship types. Callers may use any other upper-case tag."""

    RELATED_TO = "RELATED_TO"
    SUPPORTS = "SUPPORTS"
    CONTRADICTS = "CONTRADICTS"
    CAUSES = "CAUSES"
    FOLLOWS = "FOLLOWS"


class Relationship(BaseModel):
    """A directed, typed, weighted edge between two memories of one scope."""

    model_config = ConfigDict(populate_by_name=True)

    id: Identifier = Field(default_factory=new_id)
    scope: Scope
    source_memory_id: Identifier
    target_memory_id: Identifier
    relationship_type: TypeTag
    strength: Strength
    created_at: float = Field(default_factory=time.time)
    updated_at: float | None = None

    @model_validator(mode="after")
    def reject_self_loop(self) -> Self:
        if self.source_memory_id == self.target_memory_id:
            raise ValueError("Cannot create a relationship from a memory to itself")
        if self.updated_at is None:
            self.updated_at = self.created_at
        return self

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness key: at most one edge per (source, target, type)."""
        return (self.source_memory_id, self.target_memory_id, self.relationship_type)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Relationship":
        return cls.model_validate(data)


class RelatedMemory(BaseModel):
    """A memory reached by graph traversal.

    ``path`` lists memory ids from the traversal start to this memory,
    inclusive; ``effective_strength`` is the product of edge strengths on it.
    """

    memory: Memory
    effective_strength: float
    path: list[str]

    @property
    def hops(self) -> int:
        return len(self.path) - 1
