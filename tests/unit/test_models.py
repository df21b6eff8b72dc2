"""
Tests for the pydantic data models.

Covers field validation, tag normalisation, timestamp synchronisation,
payload round-trips and the in-process search filter.
"""

import pytest
from pydantic import ValidationError

from semantic_memory.models import (
    AccessEvent,
    AccessType,
    Memory,
    MemoryFilter,
    MemoryState,
    Relationship,
    SearchFilters,
)
from semantic_memory.models.validators import normalize_tag


class TestTagNormalisation:
    def test_upper_cases_and_underscores(self):
        assert normalize_tag("supports") == "SUPPORTS"
        assert normalize_tag(" related-to ") == "RELATED_TO"
        assert normalize_tag("customer preference") == "CUSTOMER_PREFERENCE"

    @pytest.mark.parametrize("bad", ["", "9lives", "a!b", 42])
    def test_rejects_invalid_tags(self, bad):
        with pytest.raises(ValueError):
            normalize_tag(bad)


class TestMemory:
    def test_defaults(self):
        memory = Memory(scope="org1", content="customer prefers morning calls", created_at=100.0)
        assert memory.state == MemoryState.CREATED
        assert memory.importance_score == 0.5
        assert memory.memory_type == "OBSERVATION"
        assert memory.version == 0
        assert memory.updated_at == 100.0
        assert memory.created_at_iso == "1970-01-01T00:01:40Z"

    @pytest.mark.parametrize("content", ["", "   "])
    def test_blank_content_rejected(self, content):
        with pytest.raises(ValidationError):
            Memory(scope="org1", content=content)

    def test_blank_scope_rejected(self):
        with pytest.raises(ValidationError):
            Memory(scope=" ", content="x")

    def test_importance_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            Memory(scope="org1", content="x", importance_score=1.5)

    def test_custom_type_normalized(self):
        memory = Memory(scope="org1", content="x", memory_type="preference")
        assert memory.memory_type == "PREFERENCE"

    def test_payload_round_trip_keeps_everything_but_embedding(self):
        memory = Memory(
            scope="org1",
            content="call scheduled 9am",
            embedding=[0.1, 0.2],
            metadata={"customer": "acme"},
            state=MemoryState.ACTIVE,
            last_accessed_at=200.0,
            propagated_importance=-0.25,
            version=3,
        )
        payload = memory.to_payload()
        assert "embedding" not in payload

        restored = Memory.from_payload(payload, embedding=[0.1, 0.2])
        assert restored == memory

    def test_from_payload_tolerates_malformed_numbers(self):
        payload = {
            "id": "m1",
            "scope": "org1",
            "content": "x",
            "state": "ACTIVE",
            "importance_score": "not-a-number",
            "propagated_importance": float("nan"),
            "created_at": 10.0,
        }
        memory = Memory.from_payload(payload)
        assert memory.importance_score == 0.5
        assert memory.propagated_importance == 0.0

    def test_touch_updates_both_timestamps(self):
        memory = Memory(scope="org1", content="x", created_at=100.0)
        memory.touch(160.0)
        assert memory.updated_at == 160.0
        assert memory.updated_at_iso == "1970-01-01T00:02:40Z"


class TestRelationship:
    def test_self_loop_rejected(self):
        with pytest.raises(ValidationError, match="itself"):
            Relationship(
                scope="org1", source_memory_id="m1", target_memory_id="m1", relationship_type="SUPPORTS", strength=0.5
            )

    @pytest.mark.parametrize("strength", [0.0, -0.1, 1.01, float("nan")])
    def test_strength_range(self, strength):
        with pytest.raises(ValidationError):
            Relationship(
                scope="org1",
                source_memory_id="m1",
                target_memory_id="m2",
                relationship_type="SUPPORTS",
                strength=strength,
            )

    def test_key_uses_normalized_type(self):
        edge = Relationship(
            scope="org1", source_memory_id="m1", target_memory_id="m2", relationship_type="supports", strength=1.0
        )
        assert edge.key == ("m1", "m2", "SUPPORTS")
        assert edge.updated_at == edge.created_at


class TestAccessEvent:
    def test_created_unfinalized(self):
        event = AccessEvent(scope="org1", memory_id="m1")
        assert event.access_type == AccessType.RETRIEVE
        assert event.finalized is False
        assert event.outcome_score is None

    def test_outcome_range(self):
        with pytest.raises(ValidationError):
            AccessEvent(scope="org1", memory_id="m1", outcome_score=1.2)

    def test_payload_round_trip(self):
        event = AccessEvent(scope="org1", memory_id="m1", access_type=AccessType.REFERENCE, context="ticket 42")
        assert AccessEvent.from_payload(event.to_payload()) == event


class TestMemoryFilter:
    def _memory(self, **overrides):
        values = {
            "scope": "org1",
            "content": "x",
            "state": MemoryState.ACTIVE,
            "memory_type": "FACT",
            "importance_score": 0.6,
            "metadata": {"customer": "acme", "priority": 2},
            "created_at": 1000.0,
        }
        values.update(overrides)
        return Memory(**values)

    def test_scope_and_state(self):
        f = MemoryFilter(scope="org1")
        assert f.matches(self._memory())
        assert not f.matches(self._memory(scope="org2"))
        assert not f.matches(self._memory(state=MemoryState.STALE))
        assert not f.matches(self._memory(state=MemoryState.FAILED))

    def test_type_importance_and_dates(self):
        f = MemoryFilter(
            scope="org1",
            memory_types=frozenset({"FACT"}),
            min_importance=0.5,
            created_after=500.0,
            created_before=1500.0,
        )
        assert f.matches(self._memory())
        assert not f.matches(self._memory(memory_type="DECISION"))
        assert not f.matches(self._memory(importance_score=0.4))
        assert not f.matches(self._memory(created_at=2000.0))

    def test_metadata_equality(self):
        assert MemoryFilter(scope="org1", metadata={"customer": "acme"}).matches(self._memory())
        assert not MemoryFilter(scope="org1", metadata={"customer": "globex"}).matches(self._memory())
        assert not MemoryFilter(scope="org1", metadata={"region": "eu"}).matches(self._memory())


class TestSearchFilters:
    def test_scope_optional_at_model_level(self):
        assert SearchFilters().scope is None

    def test_memory_types_normalized(self):
        filters = SearchFilters(scope="org1", memory_types="decision")
        assert filters.memory_types == ["DECISION"]

    def test_min_importance_range(self):
        with pytest.raises(ValidationError):
            SearchFilters(scope="org1", min_importance=2.0)
