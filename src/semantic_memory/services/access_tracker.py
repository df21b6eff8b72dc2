"""
Access Tracker: the append-only record of how memories are used.

An access event is written unfinalized when a caller uses a retrieved
memory. The caller later reports an outcome, which finalizes the event
exactly once; finalization is an atomic check-and-set in storage.
"""

import logging
import math
import time
from collections.abc import Callable

from ..errors import ValidationError
from ..models.access_event import AccessEvent, AccessType
from .memory_store import MemoryStore, require_scope

logger = logging.getLogger(__name__)


def _parse_access_type(access_type: AccessType | str) -> AccessType:
    if isinstance(access_type, AccessType):
        return access_type
    try:
        return AccessType(str(access_type).strip().upper())
    except ValueError as e:
        valid = ", ".join(t.value for t in AccessType)
        raise ValidationError(f"Invalid access type: {access_type!r}. Must be one of: {valid}") from e


class AccessTracker:
    def __init__(self, store: MemoryStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.storage = store.storage
        self._clock = clock

    async def record_access(
        self,
        memory_id: str,
        scope: str,
        accessor_id: str | None = None,
        access_type: AccessType | str = AccessType.RETRIEVE,
        context: str | None = None,
    ) -> AccessEvent:
        """
        Persist an unfinalized access event.

        Raises:
            ValidationError: Bad access type or missing scope
            NotFoundError: Memory absent, unusable, or in another scope
        """
        kind = _parse_access_type(access_type)
        await self.store.get_usable(memory_id, scope)

        event = AccessEvent(
            scope=scope,
            memory_id=memory_id,
            accessor_id=accessor_id,
            access_type=kind,
            context=context,
            timestamp=self._clock(),
        )
        await self.storage.store_access_event(event)
        logger.debug(f"Recorded {kind.value} access {event.id} on memory {memory_id}")
        return event

    async def record_outcome(
        self,
        access_id: str,
        scope: str,
        outcome_score: float,
        outcome_notes: str | None = None,
    ) -> AccessEvent:
        """
        Finalize an access event with its outcome.

        Raises:
            ValidationError: Score not a finite number in [-1, 1]
            NotFoundError: Event absent or in another scope
            ConflictError: Event already finalized (including a lost race)
        """
        require_scope(scope)
        if (
            isinstance(outcome_score, bool)
            or not isinstance(outcome_score, int | float)
            or not math.isfinite(outcome_score)
            or not -1.0 <= outcome_score <= 1.0
        ):
            raise ValidationError(f"outcome_score must be a finite number in [-1, 1], got {outcome_score!r}")

        event = await self.storage.finalize_access_event(
            scope, access_id, float(outcome_score), outcome_notes, self._clock()
        )
        logger.info(f"Finalized access {access_id} on memory {event.memory_id} with outcome {outcome_score}")
        return event

    async def list_events(self, memory_id: str, scope: str) -> list[AccessEvent]:
        """Access history of a memory, oldest first."""
        await self.store.get(memory_id, scope)
        return await self.storage.list_access_events(scope, memory_id)
