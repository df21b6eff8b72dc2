"""Access event models: the append-only audit trail of memory usage."""

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .memory import new_id
from .validators import Identifier, Scope, SignedUnitFloat


class AccessType(str, Enum):
    """How a retrieved memory was used."""

    RETRIEVE = "RETRIEVE"
    REFERENCE = "REFERENCE"
    UPDATE = "UPDATE"


class AccessEvent(BaseModel):
    """A record that a memory was retrieved and used.

    Created unfinalized; ``outcome_score``, ``outcome_notes`` and
    ``finalized`` are set together exactly once and never change afterwards.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Identifier = Field(default_factory=new_id)
    scope: Scope
    memory_id: Identifier
    accessor_id: str | None = None
    access_type: AccessType = AccessType.RETRIEVE
    context: str | None = None
    timestamp: float = Field(default_factory=time.time)
    outcome_score: SignedUnitFloat | None = None
    outcome_notes: str | None = None
    finalized: bool = False
    finalized_at: float | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "AccessEvent":
        return cls.model_validate(data)
