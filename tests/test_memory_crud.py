"""Memory store CRUD tests."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from sqlalchemy.exc import OperationalError

from memory.memory_store import MemoryNotFound, MemoryStore, merge_context
from memory.schemas import MemoryLinkRecord, MemoryVectorRecord
from memory.stores.sql_store import AlreadyExists, SchemaNotInitialized, SQLStore, normalize_store_error

DIM = 8


def build_memory(tmp_path: Path) -> MemoryStore:
    store = SQLStore(db_path=tmp_path / "agent.db")
    store.create_all()
    return MemoryStore(store, dim=DIM)


def unit(*values: float) -> np.ndarray:
    vec = np.zeros(DIM, dtype=np.float32)
    vec[: len(values)] = values
    return vec / np.linalg.norm(vec)


def test_create_all_is_idempotent(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    memory.initialize()
    memory.initialize()
    assert memory.sql_store.has_schema()


def test_querying_missing_schema_raises_typed_error(tmp_path: Path) -> None:
    memory = MemoryStore(SQLStore(db_path=tmp_path / "empty.db"), dim=DIM)
    with pytest.raises(SchemaNotInitialized):
        memory.get_recent_memories("agent")


@pytest.mark.parametrize(
    "message",
    [
        "table memories already exists",
        "index ix_memories_agent_tier already exists",
        "Duplicate key name",
        "stored_relation_conflict: relation memories",
        "index_already_exists",
    ],
)
def test_conflict_shapes_normalize_to_already_exists(message: str) -> None:
    exc = OperationalError("CREATE TABLE", {}, Exception(message))
    assert isinstance(normalize_store_error(exc), AlreadyExists)


def test_unrelated_errors_pass_through() -> None:
    exc = OperationalError("SELECT", {}, Exception("disk I/O error"))
    assert normalize_store_error(exc) is exc


def test_create_and_get_memory(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    created = memory.create_memory(
        agent_id="agent",
        category="pattern",
        content="Tests run before each commit",
        confidence=0.8,
        source_conversations=["a.jsonl", "a.jsonl"],
    )
    assert created.memory_id.startswith("mem-")
    assert created.tier == "warm"
    assert created.system == 2
    assert created.reinforcement_count == 1
    assert created.source_conversations == ["a.jsonl"]

    loaded = memory.get_memory(created.memory_id)
    assert loaded is not None
    assert loaded.content == "Tests run before each commit"
    assert loaded.created_at.tzinfo is not None


def test_create_rejects_unknown_category(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    with pytest.raises(ValueError):
        memory.create_memory(agent_id="agent", category="gossip", content="x", confidence=0.9)


def test_reinforce_increments_and_merges_context(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    created = memory.create_memory(
        agent_id="agent", category="fact", content="Uses PostgreSQL", confidence=0.9, context="setup call"
    )

    first = memory.reinforce_memory(created.memory_id, additional_context="migration review", source_conversation="b.jsonl")
    assert first.reinforcement_count == 2
    assert first.context == "setup call\n---\nmigration review"
    assert "b.jsonl" in first.source_conversations

    second = memory.reinforce_memory(created.memory_id, additional_context="migration review")
    assert second.reinforcement_count == 3
    assert second.context == "setup call\n---\nmigration review"
    assert second.last_reinforced_at >= created.last_reinforced_at


def test_reinforce_unknown_memory_raises(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    with pytest.raises(MemoryNotFound):
        memory.reinforce_memory("mem-missing")


def test_merge_context_rules() -> None:
    assert merge_context(None, "new") == "new"
    assert merge_context("old", None) == "old"
    assert merge_context("old", "old") == "old"
    assert merge_context("old", "new") == "old\n---\nnew"


def test_search_orders_by_distance_and_filters(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    near = memory.create_memory(agent_id="agent", category="fact", content="near", confidence=0.9)
    far = memory.create_memory(agent_id="agent", category="fact", content="far", confidence=0.9)
    other_cat = memory.create_memory(agent_id="agent", category="decision", content="decision", confidence=0.9)
    weak = memory.create_memory(agent_id="agent", category="fact", content="weak", confidence=0.2)
    foreign = memory.create_memory(agent_id="other", category="fact", content="foreign", confidence=0.9)
    memory.store_embedding(near.memory_id, unit(1.0, 0.1))
    memory.store_embedding(far.memory_id, unit(0.2, 1.0))
    memory.store_embedding(other_cat.memory_id, unit(1.0))
    memory.store_embedding(weak.memory_id, unit(1.0))
    memory.store_embedding(foreign.memory_id, unit(1.0))

    hits = memory.search_by_embedding("agent", unit(1.0), categories=["fact"], min_confidence=0.5)

    assert [h.memory_id for h in hits] == [near.memory_id, far.memory_id]
    assert hits[0].distance < hits[1].distance

    excluded = memory.search_by_embedding("agent", unit(1.0), categories=["fact"], exclude_ids=[near.memory_id])
    assert [h.memory_id for h in excluded] == [far.memory_id]


def test_search_touch_updates_access_counts_only_when_asked(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    created = memory.create_memory(agent_id="agent", category="fact", content="x", confidence=0.9)
    memory.store_embedding(created.memory_id, unit(1.0))

    memory.search_by_embedding("agent", unit(1.0))
    assert memory.get_memory(created.memory_id).access_count == 0  # type: ignore[union-attr]

    memory.search_by_embedding("agent", unit(1.0), touch=True)
    touched = memory.get_memory(created.memory_id)
    assert touched is not None
    assert touched.access_count == 1
    assert touched.last_accessed_at is not None


def test_store_embedding_rejects_wrong_dimension(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    created = memory.create_memory(agent_id="agent", category="fact", content="x", confidence=0.9)
    with pytest.raises(ValueError):
        memory.store_embedding(created.memory_id, np.ones(DIM + 1, dtype=np.float32))


def test_links_reject_self_loops_and_duplicates(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    a = memory.create_memory(agent_id="agent", category="decision", content="a", confidence=0.9)
    b = memory.create_memory(agent_id="agent", category="decision", content="b", confidence=0.9)

    assert memory.link_memories(a.memory_id, a.memory_id, "supports") is False
    assert memory.link_memories(a.memory_id, b.memory_id, "supersedes") is True
    assert memory.link_memories(a.memory_id, b.memory_id, "supersedes") is False
    assert memory.link_memories(a.memory_id, b.memory_id, "supports") is True
    with pytest.raises(ValueError):
        memory.link_memories(a.memory_id, b.memory_id, "likes")


def test_related_memories_within_depth(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    a, b, c, d = (
        memory.create_memory(agent_id="agent", category="insight", content=name, confidence=0.9) for name in "abcd"
    )
    memory.link_memories(a.memory_id, b.memory_id, "leads_to")
    memory.link_memories(b.memory_id, c.memory_id, "supports")
    memory.link_memories(c.memory_id, d.memory_id, "supports")

    related = memory.get_related(a.memory_id, depth=2)

    assert [(r.memory_id, r.relationship, r.distance) for r in related] == [
        (b.memory_id, "leads_to", 1),
        (c.memory_id, "supports", 2),
    ]
    assert related[0].content == "b"


def test_delete_removes_vector_and_links_both_ways(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    a = memory.create_memory(agent_id="agent", category="fact", content="a", confidence=0.9)
    b = memory.create_memory(agent_id="agent", category="fact", content="b", confidence=0.9)
    c = memory.create_memory(agent_id="agent", category="fact", content="c", confidence=0.9)
    memory.store_embedding(b.memory_id, unit(1.0))
    memory.link_memories(a.memory_id, b.memory_id, "supports")
    memory.link_memories(b.memory_id, c.memory_id, "leads_to")
    memory.link_memories(a.memory_id, c.memory_id, "supports")

    memory.delete_memory(b.memory_id, agent_id="agent")

    assert memory.get_memory(b.memory_id) is None
    with memory.sql_store.session() as sess:
        assert sess.get(MemoryVectorRecord, b.memory_id) is None
        remaining = sess.query(MemoryLinkRecord).all()
        assert [(l.from_memory_id, l.to_memory_id) for l in remaining] == [(a.memory_id, c.memory_id)]


def test_delete_refuses_other_agents_memory(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    created = memory.create_memory(agent_id="owner", category="fact", content="a", confidence=0.9)
    with pytest.raises(MemoryNotFound):
        memory.delete_memory(created.memory_id, agent_id="intruder")
    assert memory.get_memory(created.memory_id) is not None


def test_promote_is_one_way(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    created = memory.create_memory(agent_id="agent", category="fact", content="a", confidence=0.9)

    assert memory.promote_memory(created.memory_id) is True
    promoted = memory.get_memory(created.memory_id)
    assert promoted is not None and promoted.tier == "long" and promoted.promoted_at is not None
    assert memory.promote_memory(created.memory_id) is False


def test_memory_stats_aggregate(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    first = memory.create_memory(agent_id="agent", category="fact", content="a", confidence=0.8)
    memory.create_memory(agent_id="agent", category="insight", content="b", confidence=0.6)
    memory.reinforce_memory(first.memory_id)

    stats = memory.get_memory_stats("agent")

    assert stats.total_memories == 2
    assert stats.by_category == {"fact": 1, "insight": 1}
    assert stats.by_system == {1: 1, 2: 1}
    assert stats.total_reinforcements == 3
    assert stats.avg_confidence == pytest.approx(0.7)


def test_consolidation_run_bookkeeping(tmp_path: Path) -> None:
    memory = build_memory(tmp_path)
    memory.record_consolidation_run("run-1", "agent", "mock")
    memory.update_consolidation_run("run-1", conversations_processed=5)
    memory.update_consolidation_run("run-1", status="completed", memories_created=2)

    run = memory.get_consolidation_run("run-1")
    assert run is not None
    assert run.status == "completed"
    assert run.conversations_processed == 5
    assert run.memories_created == 2
    assert run.completed_at is not None

    memory.mark_conversation_consolidated("a.jsonl", "agent", "run-1", 12, 2)
    assert memory.is_conversation_consolidated("a.jsonl")
    assert memory.consolidated_files("agent") == {"a.jsonl"}
    assert memory.consolidated_files("other") == set()
