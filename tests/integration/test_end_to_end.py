"""
End-to-end scenario over both storage backends.

A support agent stores two related facts about a customer, finds the
right one by meaning, uses it, reports a good outcome and later deletes
it. Importance must rise on the used memory, flow one hop to its
neighbour, stay put on an idempotent recompute, and the deletion must
take the memory's edges with it.
"""

import pytest

from semantic_memory.errors import NotFoundError
from semantic_memory.models.memory import MemoryState
from semantic_memory.storage.in_memory import InMemoryStorage
from semantic_memory.storage.qdrant_storage import QdrantStorage

from conftest import TEST_DIMENSION, FakeClock, build_engine


@pytest.fixture(params=["memory", "qdrant"])
def backend(request):
    if request.param == "memory":
        return InMemoryStorage()
    return QdrantStorage(vector_size=TEST_DIMENSION, storage_path=":memory:", collection_prefix="e2e")


@pytest.mark.asyncio
async def test_customer_preference_lifecycle(backend):
    await backend.initialize()
    clock = FakeClock()
    engine = build_engine(clock=clock, storage=backend)
    try:
        m1 = await engine.create_memory("customer prefers morning calls", "org1", memory_type="preference")
        m2 = await engine.create_memory("call scheduled 9am", "org1", memory_type="fact")
        await engine.create_memory("customer prefers morning calls", "org2")
        assert m1.state == MemoryState.ACTIVE
        assert m1.importance_score == 0.5

        edge = await engine.connect_memories(m1.id, m2.id, "supports", 0.8, "org1")
        assert edge.relationship_type == "SUPPORTS"

        results = await engine.search_memories(
            "morning call preference", {"scope": "org1"}, max_results=5, include_related=True
        )
        assert [r.memory.id for r in results][:2] == [m1.id, m2.id]
        assert all(r.memory.scope == "org1" for r in results)
        assert results[0].similarity > results[1].similarity
        assert [rel.memory.id for rel in results[0].related] == [m2.id]
        assert results[0].related[0].effective_strength == pytest.approx(0.8)

        clock.advance(60)
        access_id = await engine.record_access(m1.id, "org1", accessor_id="agent-7", context="call planning")
        await engine.record_outcome(access_id, "org1", 0.9, "customer picked up")

        used = await engine.get_memory(m1.id, "org1")
        neighbour = await engine.get_memory(m2.id, "org1")
        delta = used.importance_score - 0.5
        assert used.importance_score == pytest.approx(0.68)
        assert used.last_accessed_at == clock.now
        assert neighbour.importance_score == pytest.approx(0.5 + 0.2 * 0.8 * delta)

        again = await engine.recompute_importance(m1.id, "org1")
        assert again.delta == pytest.approx(0.0)
        assert (await engine.get_memory(m2.id, "org1")).importance_score == pytest.approx(neighbour.importance_score)

        history = await engine.get_access_history(m1.id, "org1")
        assert [(e.id, e.finalized, e.outcome_score) for e in history] == [(access_id, True, 0.9)]

        await engine.delete_memory(m1.id, "org1")

        with pytest.raises(NotFoundError):
            await engine.get_memory(m1.id, "org1")
        assert await backend.list_relationships("org1") == []
        remaining = await engine.search_memories("morning call preference", {"scope": "org1"})
        assert m1.id not in [r.memory.id for r in remaining]

        stats = await engine.get_memory_stats("org1")
        assert stats["total_memories"] == 1
        assert stats["relationships"] == 0
    finally:
        await engine.close()
        await backend.close()
