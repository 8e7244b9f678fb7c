"""Memory service, scheduler and CLI tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from typer.testing import CliRunner

from core.memory_service import MemoryService
from core.orchestrator import Orchestrator
from core.scheduler import MemoryScheduler, MemorySubsystem
from indexing.delta_index import SCHEMA_PENDING_MESSAGE
from memory.types.runs import ConsolidationOptions
from ui.cli.cli import app

AGENT = "agent-1"
PROJECT = "/work/shop"
TURNS = [
    ("user", "We decided to use PostgreSQL for the orders service because it handles concurrent writes well."),
    ("assistant", "Turns out the root cause was a missing index on the orders table, so I added one."),
    ("user", "Please keep the migration scripts in the db/migrations folder from now on."),
]


def write_config(root: Path, **memory: Any) -> None:
    config = {
        "paths": {"data_dir": "data", "transcripts_root": "projects"},
        "logging": {"level": "WARNING"},
        "memory": {"consolidation": {"provider": "mock"}, **memory},
        "agents": {AGENT: {"working_directories": [PROJECT]}},
    }
    (root / "config").mkdir(parents=True, exist_ok=True)
    (root / "config" / "default.yaml").write_text(yaml.safe_dump(config), encoding="utf-8")


def write_transcript(root: Path, name: str = "session.jsonl") -> Path:
    path = root / "projects" / "-work-shop" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        json.dumps(
            {
                "type": role,
                "sessionId": "sess-1",
                "cwd": PROJECT,
                "timestamp": f"2024-05-01T10:0{i}:00Z",
                "message": {"role": role, "content": [{"type": "text", "text": text}]},
            }
        )
        for i, (role, text) in enumerate(TURNS)
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def build_service(tmp_path: Path) -> MemoryService:
    write_config(tmp_path)
    return MemoryService(Orchestrator(root=tmp_path).build())


def test_initialize_is_idempotent(tmp_path: Path) -> None:
    service = build_service(tmp_path)

    assert service.initialize(AGENT) == {"success": True, "agent_id": AGENT, "created": True}
    assert service.initialize(AGENT)["created"] is False
    assert (tmp_path / "data" / f"{AGENT}.db").exists()


def test_invalid_agent_id_is_reported_not_raised(tmp_path: Path) -> None:
    service = build_service(tmp_path)

    result = service.initialize("../escape")

    assert result["success"] is False
    assert "Invalid agent id" in result["error"]


def test_index_before_init_is_benign(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    write_transcript(tmp_path)

    result = service.run_index_delta(AGENT)

    assert result.success is True
    assert result.message == SCHEMA_PENDING_MESSAGE


def test_queries_before_init_fail_softly(tmp_path: Path) -> None:
    service = build_service(tmp_path)

    result = service.query_memories(AGENT)

    assert result["success"] is False
    assert result["error"]


def test_full_cycle_index_consolidate_query(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    events: list[dict[str, Any]] = []
    service.runtime.event_bus.subscribe("consolidation.completed", events.append)
    service.initialize(AGENT)
    write_transcript(tmp_path)

    indexed = service.run_index_delta(AGENT)
    assert indexed.success
    assert indexed.total_messages_processed == 3

    result = service.consolidate(AGENT)
    assert result.status == "completed"
    assert result.provider_used == "mock"
    assert result.conversations_processed == 1
    assert result.memories_created >= 2
    assert events and events[0]["agent_id"] == AGENT

    again = service.consolidate(AGENT)
    assert again.conversations_processed == 0
    assert again.memories_created == 0

    found = service.query_memories(AGENT, query="PostgreSQL orders service")
    assert found["success"] and found["count"] >= 1
    assert "PostgreSQL" in found["memories"][0]["content"]

    status = service.consolidation_status(AGENT)
    assert status["memory_stats"]["total"] == result.memories_created
    assert len(status["recent_runs"]) == 1

    context = service.memory_context(AGENT, "PostgreSQL")
    assert context["context"].startswith("Relevant memories:")


def test_consolidate_dry_run_leaves_store_untouched(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    service.initialize(AGENT)
    write_transcript(tmp_path)
    service.run_index_delta(AGENT)

    result = service.consolidate(AGENT, ConsolidationOptions(dry_run=True, provider="mock"))

    assert result.dry_run and result.memories_created >= 1
    assert service.stats(AGENT)["stats"]["total_memories"] == 0
    assert service.consolidation_status(AGENT)["recent_runs"] == []


def test_consolidate_with_nothing_pending(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    service.initialize(AGENT)

    result = service.consolidate(AGENT)

    assert result.status == "completed"
    assert result.conversations_processed == 0


def test_update_and_delete_memory(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    service.initialize(AGENT)
    store = service.runtime.store_for(AGENT)
    created = store.create_memory(agent_id=AGENT, category="fact", content="Orders use MySQL", confidence=0.9)
    store.store_embedding(created.memory_id, service.runtime.embedder.embed_one("Orders use MySQL"))

    assert service.update_memory(AGENT, created.memory_id)["success"] is False
    updated = service.update_memory(AGENT, created.memory_id, content="Orders use PostgreSQL")
    assert updated["success"] and updated["memory"]["content"] == "Orders use PostgreSQL"
    hits = service.query_memories(AGENT, query="Orders use PostgreSQL")
    assert hits["memories"][0]["distance"] < 0.01

    assert service.delete_memory(AGENT, created.memory_id)["success"] is True
    missing = service.delete_memory(AGENT, created.memory_id)
    assert missing == {"success": False, "agent_id": AGENT, "error": "Memory not found"}


def test_prune_uses_configured_retention(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    service.initialize(AGENT)

    assert service.prune(AGENT).disabled is True
    assert service.prune(AGENT, retention_days=30).disabled is False


def test_scheduler_tick_indexes_and_consolidates_when_due(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    service.initialize(AGENT)
    write_transcript(tmp_path)
    now = [0.0]
    scheduler = MemoryScheduler(
        service, agents=lambda: [AGENT], index_interval=60, consolidation_interval=3600, clock=lambda: now[0]
    )

    scheduler.tick()
    assert scheduler.index_runs == 1
    assert scheduler.consolidation_runs == 1
    assert scheduler.last_consolidation[AGENT]["consolidation"]["status"] == "completed"

    now[0] = 100.0
    scheduler.tick()
    assert scheduler.index_runs == 2
    assert scheduler.consolidation_runs == 1

    now[0] = 3700.0
    scheduler.tick()
    assert scheduler.consolidation_runs == 2


def test_subsystem_lifecycle(tmp_path: Path) -> None:
    service = build_service(tmp_path)
    subsystem = MemorySubsystem.from_service(service)

    subsystem.start()
    assert subsystem.status()["running"] is True
    subsystem.stop()

    status = subsystem.status()
    assert status["running"] is False
    assert status["name"] == "memory"


def invoke(tmp_path: Path, *args: str) -> Any:
    return CliRunner().invoke(app, ["--root", str(tmp_path), *args])


def test_cli_end_to_end(tmp_path: Path) -> None:
    write_config(tmp_path)
    write_transcript(tmp_path)

    init = invoke(tmp_path, "init", AGENT)
    assert init.exit_code == 0, init.output
    assert json.loads(init.stdout)["created"] is True

    report = invoke(tmp_path, "index-delta", AGENT, "--dry-run")
    assert report.exit_code == 0, report.output
    assert json.loads(report.stdout)["report"][0]["delta_to_index"] == 3

    indexed = invoke(tmp_path, "index-delta", AGENT)
    assert json.loads(indexed.stdout)["total_messages_processed"] == 3

    consolidated = invoke(tmp_path, "consolidate", AGENT, "--provider", "mock")
    assert consolidated.exit_code == 0, consolidated.output
    assert json.loads(consolidated.stdout)["memories_created"] >= 1

    search = invoke(tmp_path, "memory", "search", AGENT, "PostgreSQL")
    assert json.loads(search.stdout)["count"] >= 1

    status = invoke(tmp_path, "status", AGENT)
    assert json.loads(status.stdout)["recent_runs"][0]["status"] == "completed"


def test_cli_failure_exits_non_zero(tmp_path: Path) -> None:
    write_config(tmp_path)
    invoke(tmp_path, "init", AGENT)

    result = invoke(tmp_path, "memory", "delete", AGENT, "mem-missing")

    assert result.exit_code == 1
    assert json.loads(result.stdout)["error"] == "Memory not found"


def test_cli_config_show(tmp_path: Path) -> None:
    write_config(tmp_path)

    result = invoke(tmp_path, "config", "show")

    assert result.exit_code == 0
    assert json.loads(result.stdout)["agents"][AGENT]["working_directories"] == [PROJECT]
