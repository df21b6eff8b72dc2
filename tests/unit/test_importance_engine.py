"""
Tests for importance recomputation, propagation and the maintenance sweep.

Tests cover:
- Score from access frequency, recency and outcomes
- Idempotent recompute with an unchanged event set and clock
- One-hop propagation in both edge directions, positive and negative
- Neighbour credit survives the neighbour's own recompute
- Sweep: refresh of old scores and demotion of inactive memories
"""

import asyncio

import pytest

from semantic_memory.errors import NotFoundError
from semantic_memory.models.memory import MemoryState
from semantic_memory.utils.scoring import SECONDS_PER_DAY


async def used_memory(engine, content, outcome, scope="org1"):
    """Create a memory, access it once and finalize the access without recomputing."""
    memory = await engine.create_memory(content, scope)
    event = await engine.tracker.record_access(memory.id, scope)
    await engine.tracker.record_outcome(event.id, scope, outcome)
    return memory


class TestRecompute:
    @pytest.mark.asyncio
    async def test_positive_outcome_raises_score(self, engine):
        memory = await used_memory(engine, "customer prefers morning calls", 0.9)

        update = await engine.importance.recompute_importance(memory.id, "org1")

        assert update.old_score == 0.5
        assert update.new_score == pytest.approx(0.68)
        assert update.breakdown.frequency == pytest.approx(0.1)
        stored = await engine.get_memory(memory.id, "org1")
        assert stored.importance_score == pytest.approx(0.68)

    @pytest.mark.asyncio
    async def test_no_events_keeps_baseline(self, engine):
        memory = await engine.create_memory("never used", "org1")

        update = await engine.importance.recompute_importance(memory.id, "org1")

        assert update.new_score == 0.5
        assert update.delta == 0.0

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, engine):
        a = await used_memory(engine, "first", 0.9)
        b = await engine.create_memory("second", "org1")
        await engine.connect_memories(a.id, b.id, "SUPPORTS", 0.8, "org1")

        first = await engine.importance.recompute_importance(a.id, "org1")
        b_after_first = (await engine.get_memory(b.id, "org1")).importance_score
        second = await engine.importance.recompute_importance(a.id, "org1")

        assert second.new_score == first.new_score
        assert second.delta == 0.0
        assert second.propagated_to == {}
        assert (await engine.get_memory(b.id, "org1")).importance_score == b_after_first

    @pytest.mark.asyncio
    async def test_recency_decays_with_time(self, engine, clock):
        memory = await used_memory(engine, "content", 0.9)
        fresh = await engine.importance.recompute_importance(memory.id, "org1")
        clock.advance(7 * SECONDS_PER_DAY)

        decayed = await engine.importance.recompute_importance(memory.id, "org1")

        # Recency halves after one half-life: 0.2 * (1.0 - 0.5)
        assert fresh.new_score - decayed.new_score == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_unknown_memory(self, engine):
        with pytest.raises(NotFoundError):
            await engine.importance.recompute_importance("missing", "org1")

    @pytest.mark.asyncio
    async def test_deleted_memory(self, engine):
        memory = await engine.create_memory("content", "org1")
        await engine.delete_memory(memory.id, "org1")
        with pytest.raises(NotFoundError):
            await engine.importance.recompute_importance(memory.id, "org1")


class TestPropagation:
    @pytest.mark.asyncio
    async def test_credit_flows_along_outgoing_edge(self, engine):
        a = await used_memory(engine, "customer prefers morning calls", 0.9)
        b = await engine.create_memory("call scheduled 9am", "org1")
        await engine.connect_memories(a.id, b.id, "SUPPORTS", 0.8, "org1")

        update = await engine.importance.recompute_importance(a.id, "org1")

        expected_credit = 0.2 * 0.8 * update.delta
        assert update.propagated_to == {b.id: pytest.approx(expected_credit)}
        neighbour = await engine.get_memory(b.id, "org1")
        assert neighbour.propagated_importance == pytest.approx(expected_credit)
        assert neighbour.importance_score == pytest.approx(0.5 + expected_credit)

    @pytest.mark.asyncio
    async def test_credit_flows_along_incoming_edge(self, engine):
        a = await used_memory(engine, "first", 0.9)
        b = await engine.create_memory("second", "org1")
        await engine.connect_memories(b.id, a.id, "CAUSES", 0.5, "org1")

        update = await engine.importance.recompute_importance(a.id, "org1")

        assert update.propagated_to == {b.id: pytest.approx(0.2 * 0.5 * update.delta)}

    @pytest.mark.asyncio
    async def test_propagation_is_single_hop(self, engine):
        a = await used_memory(engine, "first", 0.9)
        b = await engine.create_memory("second", "org1")
        c = await engine.create_memory("third", "org1")
        await engine.connect_memories(a.id, b.id, "SUPPORTS", 1.0, "org1")
        await engine.connect_memories(b.id, c.id, "SUPPORTS", 1.0, "org1")

        await engine.importance.recompute_importance(a.id, "org1")

        assert (await engine.get_memory(c.id, "org1")).importance_score == 0.5

    @pytest.mark.asyncio
    async def test_negative_delta_propagates(self, engine, clock):
        a = await used_memory(engine, "first", 0.9)
        b = await engine.create_memory("second", "org1")
        await engine.connect_memories(a.id, b.id, "SUPPORTS", 1.0, "org1")
        await engine.importance.recompute_importance(a.id, "org1")
        credited = (await engine.get_memory(b.id, "org1")).importance_score
        clock.advance(14 * SECONDS_PER_DAY)

        update = await engine.importance.recompute_importance(a.id, "org1")

        assert update.delta < 0
        assert (await engine.get_memory(b.id, "org1")).importance_score < credited

    @pytest.mark.asyncio
    async def test_neighbour_recompute_keeps_credit(self, engine):
        a = await used_memory(engine, "first", 0.9)
        b = await engine.create_memory("second", "org1")
        await engine.connect_memories(a.id, b.id, "SUPPORTS", 0.8, "org1")
        await engine.importance.recompute_importance(a.id, "org1")
        credited = (await engine.get_memory(b.id, "org1")).importance_score

        update = await engine.importance.recompute_importance(b.id, "org1")

        assert update.new_score == pytest.approx(credited)

    @pytest.mark.asyncio
    async def test_mutual_edges_do_not_deadlock(self, engine):
        a = await used_memory(engine, "first", 0.9)
        b = await used_memory(engine, "second", -0.8)
        await engine.connect_memories(a.id, b.id, "SUPPORTS", 0.5, "org1")
        await engine.connect_memories(b.id, a.id, "CONTRADICTS", 0.5, "org1")

        updates = await asyncio.wait_for(
            asyncio.gather(
                engine.importance.recompute_importance(a.id, "org1"),
                engine.importance.recompute_importance(b.id, "org1"),
            ),
            timeout=5,
        )

        assert len(updates) == 2


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_computes_missing_scores(self, engine):
        await used_memory(engine, "first", 0.9)
        await engine.create_memory("second", "org1")

        report = await engine.importance.sweep("org1")

        assert report.scanned == 2
        assert report.recomputed == 2
        assert report.demoted == 0
        assert report.errors == 0

    @pytest.mark.asyncio
    async def test_fresh_scores_are_skipped(self, engine, clock):
        await engine.create_memory("content", "org1")
        await engine.importance.sweep("org1")
        clock.advance(60)

        report = await engine.importance.sweep("org1")

        assert report.recomputed == 0

    @pytest.mark.asyncio
    async def test_inactive_memories_demoted(self, engine, clock):
        idle = await engine.create_memory("nobody reads this", "org1")
        busy = await engine.create_memory("read every day", "org1")
        clock.advance(31 * SECONDS_PER_DAY)
        await engine.record_access(busy.id, "org1")

        report = await engine.importance.sweep("org1")

        assert report.demoted == 1
        assert (await engine.get_memory(idle.id, "org1")).state == MemoryState.STALE
        assert (await engine.get_memory(busy.id, "org1")).state == MemoryState.ACTIVE

    @pytest.mark.asyncio
    async def test_sweep_skips_failed_and_deleted(self, engine):
        memory = await engine.create_memory("content", "org1")
        await engine.delete_memory(memory.id, "org1")

        report = await engine.importance.sweep("org1")

        assert report.scanned == 0

    @pytest.mark.asyncio
    async def test_sweep_all_scopes(self, engine):
        await engine.create_memory("content", "org1")
        await engine.create_memory("content", "org2")

        report = await engine.importance.sweep()

        assert report.scanned == 2
