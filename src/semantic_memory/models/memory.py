"""Memory-related data models.

Pydantic v2 models for the stored memory record, its lifecycle states and
the storage payload round-trip, with float/ISO timestamp synchronisation.
"""

import logging
import math
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .validators import Content, Identifier, NonNegativeInt, Scope, SignedUnitFloat, TypeTag, UnitFloat

logger = logging.getLogger(__name__)

BASELINE_IMPORTANCE = 0.5


class MemoryState(str, Enum):
    """Lifecycle states of a memory record."""

    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    STALE = "STALE"
    DELETED = "DELETED"


# States a caller can search, connect, or record accesses against
USABLE_STATES: frozenset[MemoryState] = frozenset({MemoryState.ACTIVE, MemoryState.STALE})


class MemoryType(str, Enum):
    """Built-in memory types. Callers may use any other upper-case tag."""

    OBSERVATION = "OBSERVATION"
    DECISION = "DECISION"
    OUTCOME = "OUTCOME"
    FACT = "FACT"


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def _float_to_iso(ts: float) -> str:
    """Convert float timestamp to ISO string (UTC, Z-suffix)."""
    return datetime.fromtimestamp(ts, timezone.utc).isoformat().replace("+00:00", "Z")


def _safe_float(v: Any, default: float | None = 0.0) -> float | None:
    """Convert *v* to float, returning *default* on failure or non-finite values."""
    if v is None:
        return default
    try:
        result = float(v)
        return result if math.isfinite(result) else default
    except (TypeError, ValueError):
        return default


def new_id() -> str:
    """Generate an opaque record id (UUID4; also a valid Qdrant point id)."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Memory model
# ---------------------------------------------------------------------------


class Memory(BaseModel):
    """A stored unit of knowledge with its embedding and scoring state."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    id: Identifier = Field(default_factory=new_id)
    scope: Scope
    content: Content
    embedding: list[float] | None = None
    memory_type: TypeTag = MemoryType.OBSERVATION.value
    importance_score: UnitFloat = BASELINE_IMPORTANCE
    metadata: dict[str, Any] = Field(default_factory=dict)
    state: MemoryState = MemoryState.CREATED
    created_by: str | None = None

    # Timestamps: model_validator derives the ISO strings from the floats
    created_at: float | None = None
    created_at_iso: str | None = None
    updated_at: float | None = None
    updated_at_iso: str | None = None

    last_accessed_at: float | None = None
    importance_computed_at: float | None = None
    # Credit received from neighbours via one-hop propagation
    propagated_importance: SignedUnitFloat = 0.0
    version: NonNegativeInt = 0
    failure_reason: str | None = None

    @model_validator(mode="after")
    def sync_timestamps(self) -> Self:
        """Fill in missing timestamps and keep the ISO strings consistent."""
        now = time.time()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = self.created_at
        self.created_at_iso = _float_to_iso(self.created_at)
        self.updated_at_iso = _float_to_iso(self.updated_at)
        return self

    @property
    def is_searchable(self) -> bool:
        return self.state in USABLE_STATES

    def touch(self, now: float | None = None) -> None:
        """Update the updated_at timestamps to *now* (default: current time)."""
        ts = time.time() if now is None else now
        self.updated_at = ts
        self.updated_at_iso = _float_to_iso(ts)

    def to_payload(self) -> dict[str, Any]:
        """Convert to a storage payload (everything except the embedding)."""
        return {
            "id": self.id,
            "scope": self.scope,
            "content": self.content,
            "memory_type": self.memory_type,
            "importance_score": self.importance_score,
            "metadata": dict(self.metadata),
            "state": self.state.value,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_accessed_at": self.last_accessed_at,
            "importance_computed_at": self.importance_computed_at,
            "propagated_importance": self.propagated_importance,
            "version": self.version,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any], embedding: list[float] | None = None) -> "Memory":
        """Create a Memory from a storage payload.

        Numeric fields are parsed defensively so a malformed legacy record
        degrades to defaults instead of failing the whole read.
        """
        return cls(
            id=data["id"],
            scope=data["scope"],
            content=data["content"],
            embedding=embedding,
            memory_type=data.get("memory_type") or MemoryType.OBSERVATION.value,
            importance_score=min(1.0, max(0.0, _safe_float(data.get("importance_score"), BASELINE_IMPORTANCE))),
            metadata=data.get("metadata") or {},
            state=MemoryState(data.get("state", MemoryState.ACTIVE.value)),
            created_by=data.get("created_by"),
            created_at=_safe_float(data.get("created_at"), None),
            updated_at=_safe_float(data.get("updated_at"), None),
            last_accessed_at=_safe_float(data.get("last_accessed_at"), None),
            importance_computed_at=_safe_float(data.get("importance_computed_at"), None),
            propagated_importance=min(1.0, max(-1.0, _safe_float(data.get("propagated_importance"), 0.0))),
            version=int(data.get("version") or 0),
            failure_reason=data.get("failure_reason"),
        )
