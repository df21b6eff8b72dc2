"""
Importance Engine.

Recomputes a memory's importance from its access history and passes part
of any change on to its direct graph neighbours:

    own        = w_f * frequency + w_r * recency + w_o * outcome
    importance = clamp(own + propagated_importance, 0, 1)
    neighbour.propagated_importance += factor * strength * delta

Propagation is a single hop. Each memory is recomputed under its own
keyed lock, and neighbours are only locked after the source's lock is
released, so two memories propagating into each other cannot deadlock.

The same engine drives the scheduled sweep, which refreshes old scores
and demotes memories nobody has accessed for a while.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..config import ImportanceSettings, SweepSettings
from ..errors import ConflictError, DependencyError, NotFoundError
from ..graph.relationship_graph import RelationshipGraph
from ..models.memory import USABLE_STATES, Memory
from ..utils.scoring import (
    SECONDS_PER_DAY,
    ScoreBreakdown,
    ScoringWeights,
    apply_propagation,
    compute_importance,
    propagation_delta,
)
from .memory_store import MemoryStore, require_scope

logger = logging.getLogger(__name__)


@dataclass
class ImportanceUpdate:
    """Result of one recompute: the score change and the credit passed on."""

    memory_id: str
    old_score: float
    new_score: float
    breakdown: ScoreBreakdown
    propagated_to: dict[str, float] = field(default_factory=dict)

    @property
    def delta(self) -> float:
        return self.new_score - self.old_score


@dataclass
class SweepReport:
    scanned: int = 0
    recomputed: int = 0
    demoted: int = 0
    errors: int = 0
    duration_seconds: float = 0.0


def weights_from_settings(config: ImportanceSettings) -> ScoringWeights:
    return ScoringWeights(
        frequency_weight=config.frequency_weight,
        recency_weight=config.recency_weight,
        outcome_weight=config.outcome_weight,
        frequency_window_days=config.frequency_window_days,
        frequency_saturation=config.frequency_saturation,
        recency_half_life_days=config.recency_half_life_days,
        neutral_outcome=config.neutral_outcome,
        baseline=config.baseline,
    )


class ImportanceEngine:
    def __init__(
        self,
        store: MemoryStore,
        graph: RelationshipGraph,
        importance: ImportanceSettings | None = None,
        sweep: SweepSettings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.storage = store.storage
        self.locks = store.locks
        self.graph = graph
        importance = importance or ImportanceSettings()
        sweep = sweep or SweepSettings()
        self.weights = weights_from_settings(importance)
        self.propagation_factor = importance.propagation_factor
        self.recompute_after_seconds = sweep.recompute_after_seconds
        self.stale_after_days = sweep.stale_after_days
        self._clock = clock

    async def _score(self, memory: Memory, now: float, propagated: float) -> ScoreBreakdown:
        events = await self.storage.list_access_events(memory.scope, memory.id)
        timestamps = [e.timestamp for e in events]
        outcomes = [e.outcome_score for e in events if e.finalized and e.outcome_score is not None]
        return compute_importance(timestamps, outcomes, propagated, now, self.weights)

    async def _load_usable(self, memory_id: str, scope: str) -> Memory:
        memory = await self.storage.get_memory(scope, memory_id)
        if memory is None or memory.state not in USABLE_STATES:
            raise NotFoundError("memory", memory_id)
        return memory

    async def recompute_importance(self, memory_id: str, scope: str) -> ImportanceUpdate:
        """
        Recompute a memory's importance and propagate the change one hop.

        With no new events and the same clock reading the score is
        unchanged and nothing propagates.

        Raises:
            NotFoundError: Memory absent, unusable, or in another scope
            ConflictError: Lost two optimistic writes in a row
        """
        require_scope(scope)
        old_score, breakdown = await self._recompute_own(memory_id, scope)
        update = ImportanceUpdate(memory_id=memory_id, old_score=old_score, new_score=breakdown.score, breakdown=breakdown)

        if update.delta == 0.0 or self.propagation_factor == 0.0:
            return update

        for neighbor_id, strength in (await self.graph.neighbors(memory_id, scope)).items():
            credit = propagation_delta(update.delta, strength, self.propagation_factor)
            if credit == 0.0:
                continue
            try:
                if await self._apply_credit(neighbor_id, scope, credit):
                    update.propagated_to[neighbor_id] = credit
            except (ConflictError, DependencyError) as e:
                logger.warning(f"Propagation from {memory_id} to {neighbor_id} failed (non-fatal): {e}")

        logger.info(
            f"Importance of {memory_id}: {old_score:.4f} -> {update.new_score:.4f}, "
            f"propagated to {len(update.propagated_to)} neighbours"
        )
        return update

    async def _rescore_locked(
        self,
        memory_id: str,
        scope: str,
        rescore: Callable[[Memory, float], Awaitable[dict[str, Any]]],
    ) -> tuple[Memory, dict[str, Any]]:
        """
        Apply *rescore* to a memory under its lock, retrying once on a lost write.

        Returns:
            (memory as read before the write, the changes written)
        """
        retries_left = 1
        while True:
            async with self.locks.acquire(memory_id):
                memory = await self._load_usable(memory_id, scope)
                changes = await rescore(memory, self._clock())
                try:
                    await self.storage.update_memory(memory.model_copy(update={"embedding": None, **changes}), memory.version)
                    return memory, changes
                except ConflictError:
                    if not retries_left:
                        raise
                    retries_left -= 1
                    logger.warning(f"Concurrent write on {memory_id} during rescore, retrying")

    async def _recompute_own(self, memory_id: str, scope: str) -> tuple[float, ScoreBreakdown]:
        breakdowns: list[ScoreBreakdown] = []

        async def rescore(memory: Memory, now: float) -> dict[str, Any]:
            breakdown = await self._score(memory, now, memory.propagated_importance)
            breakdowns.append(breakdown)
            return {"importance_score": breakdown.score, "importance_computed_at": now}

        memory, _ = await self._rescore_locked(memory_id, scope, rescore)
        return memory.importance_score, breakdowns[-1]

    async def _apply_credit(self, memory_id: str, scope: str, credit: float) -> bool:
        """Add propagated credit to a neighbour. Returns False if it is no longer usable."""

        async def rescore(memory: Memory, now: float) -> dict[str, Any]:
            own = (await self._score(memory, now, 0.0)).own
            propagated, score = apply_propagation(own, memory.propagated_importance, credit)
            return {"importance_score": score, "propagated_importance": propagated, "importance_computed_at": now}

        try:
            await self._rescore_locked(memory_id, scope, rescore)
        except NotFoundError:
            return False
        return True

    async def sweep(self, scope: str | None = None) -> SweepReport:
        """
        One maintenance pass over ACTIVE and STALE memories.

        - Demotes ACTIVE memories whose last access (or creation, if never
          accessed) is older than ``stale_after_days``
        - Recomputes scores older than ``recompute_after_seconds`` or never computed

        Per-memory failures are counted and logged; the pass continues.
        """
        started = time.monotonic()
        report = SweepReport()
        now = self._clock()
        inactive_since = now - self.stale_after_days * SECONDS_PER_DAY

        for memory in await self.storage.list_memories(scope, USABLE_STATES):
            report.scanned += 1
            try:
                if await self.store.mark_stale(memory.id, memory.scope, inactive_since):
                    report.demoted += 1
                computed_at = memory.importance_computed_at
                if computed_at is None or now - computed_at >= self.recompute_after_seconds:
                    await self.recompute_importance(memory.id, memory.scope)
                    report.recomputed += 1
            except NotFoundError:
                # Deleted since the listing
                continue
            except (ConflictError, DependencyError) as e:
                report.errors += 1
                logger.warning(f"Sweep failed for memory {memory.id}: {e}")

        report.duration_seconds = time.monotonic() - started
        logger.info(
            f"Sweep complete: scanned={report.scanned} recomputed={report.recomputed} "
            f"demoted={report.demoted} errors={report.errors} ({report.duration_seconds:.2f}s)"
        )
        return report
